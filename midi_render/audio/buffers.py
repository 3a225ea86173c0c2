from __future__ import annotations

from array import array
from typing import Sequence


class AudioBlock:
    """Fixed-size planar stereo block, overwritten in place on every render call."""

    num_channels = 2

    def __init__(self, block_size: int) -> None:
        if block_size <= 0:
            raise ValueError(f"block_size must be > 0: {block_size}")
        self.block_size = int(block_size)
        self.channels = [array("f", bytes(4 * self.block_size)) for _ in range(self.num_channels)]

    @property
    def left(self) -> array:
        return self.channels[0]

    @property
    def right(self) -> array:
        return self.channels[1]

    def clear(self) -> None:
        for ch in self.channels:
            for i in range(len(ch)):
                ch[i] = 0.0


def make_interleaved_buffer(block_size: int, channels: int = 2) -> array:
    return array("f", bytes(4 * channels * int(block_size)))


def write_interleaved(left: Sequence[float], right: Sequence[float], dest: array | list[float]) -> int:
    """Interleave two planar channels into dest (L,R,L,R,...).

    Writes min(len(left), len(right), len(dest) // 2) frames and returns that
    count. Mismatched lengths truncate to the smallest compatible bound; the
    remainder of dest is left untouched. No allocation.
    """

    n = min(len(left), len(right), len(dest) // 2)
    for i in range(n):
        dest[2 * i] = left[i]
        dest[2 * i + 1] = right[i]
    return n


def deinterleave(src: Sequence[float]) -> tuple[list[float], list[float]]:
    n = len(src) // 2
    return [float(src[2 * i]) for i in range(n)], [float(src[2 * i + 1]) for i in range(n)]


def mean_squared(buf: Sequence[float]) -> float:
    """Mean squared amplitude of a buffer (0.0 when empty)."""
    n = len(buf)
    if n == 0:
        return 0.0
    acc = 0.0
    for x in buf:
        acc += float(x) * float(x)
    return acc / n
