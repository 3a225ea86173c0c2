from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from midi_render.audio.buffers import AudioBlock

logger = logging.getLogger(__name__)


class SynthEngine(Protocol):
    """Block-based synthesis engine driven by the render scheduler.

    Event calls take an intra-block frame offset (`delay`) in [0, block_size)
    relative to the next block produced by `render_block`.
    """

    id: str

    def set_samples_per_block(self, block_size: int) -> None:
        ...

    def set_sample_rate(self, sample_rate: int) -> None:
        ...

    def set_oversampling(self, factor: int) -> None:
        ...

    def load_instrument(self, path: str | Path) -> None:
        ...

    @property
    def num_regions(self) -> int:
        ...

    def render_block(self, block: AudioBlock) -> None:
        ...

    def note_on(self, delay: int, key: int, velocity: int) -> None:
        ...

    def note_off(self, delay: int, key: int, velocity: int) -> None:
        ...

    def pitch_wheel(self, delay: int, value: int) -> None:
        ...

    def cc(self, delay: int, number: int, value: int) -> None:
        ...


@dataclass(frozen=True)
class PendingEvent:
    delay: int
    seq: int
    kind: str
    a: int
    b: int = 0


class EngineBase:
    """Shared plumbing for engines: configuration and delayed event queueing.

    `render_block` zeroes the block, then renders the spans between queued
    events so each event takes effect at its exact frame. Subclasses implement
    `_render_span` (additive, [start, end) frames) and `_apply`.
    """

    id: str = ""

    def __init__(self) -> None:
        self.block_size = 1024
        self.sample_rate = 48000
        self.oversampling = 1
        self._pending: list[PendingEvent] = []
        self._seq = 0

    def set_samples_per_block(self, block_size: int) -> None:
        if block_size <= 0:
            raise ValueError(f"block_size must be > 0: {block_size}")
        self.block_size = int(block_size)

    def set_sample_rate(self, sample_rate: int) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0: {sample_rate}")
        self.sample_rate = int(sample_rate)

    def set_oversampling(self, factor: int) -> None:
        if factor not in (1, 2, 4, 8):
            raise ValueError(f"unsupported oversampling factor: {factor}")
        self.oversampling = int(factor)

    def load_instrument(self, path: str | Path) -> None:
        raise NotImplementedError

    @property
    def num_regions(self) -> int:
        return 0

    def _queue(self, delay: int, kind: str, a: int, b: int = 0) -> None:
        d = max(0, min(self.block_size - 1, int(delay)))
        if d != delay:
            logger.debug("engine clamped delay %d -> %d", delay, d)
        self._pending.append(PendingEvent(delay=d, seq=self._seq, kind=kind, a=int(a), b=int(b)))
        self._seq += 1

    def note_on(self, delay: int, key: int, velocity: int) -> None:
        self._queue(delay, "note_on", key, velocity)

    def note_off(self, delay: int, key: int, velocity: int) -> None:
        self._queue(delay, "note_off", key, velocity)

    def pitch_wheel(self, delay: int, value: int) -> None:
        self._queue(delay, "pitch_wheel", value)

    def cc(self, delay: int, number: int, value: int) -> None:
        self._queue(delay, "cc", number, value)

    def render_block(self, block: AudioBlock) -> None:
        block.clear()
        n = min(self.block_size, block.block_size)
        pending = sorted(self._pending, key=lambda e: (e.delay, e.seq))
        self._pending = []

        pos = 0
        for ev in pending:
            at = min(ev.delay, n)
            if at > pos:
                self._render_span(block, pos, at)
                pos = at
            self._apply(ev)
        if pos < n:
            self._render_span(block, pos, n)

    def _render_span(self, block: AudioBlock, start: int, end: int) -> None:
        raise NotImplementedError

    def _apply(self, ev: PendingEvent) -> None:
        raise NotImplementedError
