from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventKind(str, Enum):
    NOTE_ON = "note_on"
    NOTE_OFF = "note_off"
    CONTROL_CHANGE = "control_change"
    PITCH_BEND = "pitch_bend"
    OTHER = "other"


@dataclass(frozen=True)
class Event:
    """A single timeline event with an absolute timestamp in seconds.

    `key` is the note number (notes) or controller number (control changes).
    `value` is the velocity (notes) or controller value.
    `raw` holds the status byte followed by the data bytes; meta events start with 0xFF.
    """

    seconds: float
    kind: EventKind
    channel: int = 0
    key: int = 0
    value: int = 0
    raw: tuple[int, ...] = ()
    track: int = 0
    tick: int = 0

    @property
    def is_note_on(self) -> bool:
        return self.kind == EventKind.NOTE_ON and self.value > 0

    @property
    def is_note_off(self) -> bool:
        # zero-velocity note-on is a running-status note-off
        return self.kind == EventKind.NOTE_OFF or (self.kind == EventKind.NOTE_ON and self.value == 0)


@dataclass
class BlockBoundary:
    """Block bookkeeping for the scheduler.

    next_boundary is always a positive multiple of block_size; the start of the
    block being filled is derived from it so the two never drift apart.
    """

    block_size: int
    sample_rate: int
    next_boundary: int = 0
    frames_written: int = 0
    blocks_rendered: int = 0

    def __post_init__(self) -> None:
        if self.block_size <= 0:
            raise ValueError(f"block_size must be > 0: {self.block_size}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0: {self.sample_rate}")
        if self.next_boundary <= 0:
            self.next_boundary = self.block_size

    @property
    def block_start_frame(self) -> int:
        return self.next_boundary - self.block_size

    @property
    def block_start_seconds(self) -> float:
        # Keep the counter integer and divide on demand to avoid float absorption.
        return float(self.block_start_frame) / float(self.sample_rate)

    @property
    def seconds_rendered(self) -> float:
        return float(self.blocks_rendered * self.block_size) / float(self.sample_rate)

    def advance(self) -> None:
        self.next_boundary += self.block_size
        self.blocks_rendered += 1


@dataclass
class RenderCursor:
    total: int
    index: int = 0

    @property
    def terminal(self) -> bool:
        return self.index >= self.total

    def advance(self) -> None:
        self.index += 1


@dataclass
class RenderResult:
    frames_written: int = 0
    blocks_rendered: int = 0
    seconds_rendered: float = 0.0
    events_dispatched: int = 0
    events_dropped: int = 0
    delays_clamped: int = 0
    tail_blocks: int = 0
    dispatched_by_kind: dict[str, int] = field(default_factory=dict)
