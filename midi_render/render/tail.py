from __future__ import annotations

from typing import Sequence

from midi_render.audio.buffers import mean_squared

# Tunable energy gate for the decaying tail, in mean squared amplitude.
POWER_THRESHOLD = 1e-12


class TailDetector:
    """Fixed-threshold energy gate over the most recently rendered block.

    Not an envelope follower: each block is judged on its own mean squared
    amplitude. Never signals a stop before at least one block was observed.
    """

    def __init__(self, threshold: float = POWER_THRESHOLD) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        self.threshold = float(threshold)
        self.blocks_observed = 0
        self.last_power = 0.0

    def observe(self, interleaved: Sequence[float]) -> float:
        self.last_power = mean_squared(interleaved)
        self.blocks_observed += 1
        return self.last_power

    @property
    def should_stop(self) -> bool:
        if self.blocks_observed == 0:
            return False
        return self.last_power <= self.threshold
