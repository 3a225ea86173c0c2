from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from midi_render.audio.buffers import AudioBlock, make_interleaved_buffer, write_interleaved
from midi_render.engines.base import SynthEngine
from midi_render.model.types import BlockBoundary, Event, EventKind, RenderCursor, RenderResult
from midi_render.render.tail import POWER_THRESHOLD, TailDetector

logger = logging.getLogger(__name__)


class FrameWriter(Protocol):
    def write_frames(self, interleaved: Sequence[float], frames: int) -> int:
        ...


BlockCallback = Callable[[BlockBoundary, Sequence[float]], None]


def build_and_center_pitch(first_byte: int, second_byte: int) -> int:
    """Signed, zero-centered 14-bit pitch bend from two 7-bit data bytes."""
    return ((int(second_byte) << 7) | int(first_byte)) - 8192


@dataclass
class RenderOptions:
    """Scheduler behavior switches.

    end_at_track_end: render the block holding the last event, then stop
        (no tail).
    tail_threshold: mean squared power at or below which the tail is silent.
    max_tail_blocks: hard cap on blocks rendered after the last event (None =
        until the tail is silent).
    control_changes_as_notes: forward control changes through note_on(delay,
        controller, value). When False they go to
        the engine's cc() call instead.
    """

    end_at_track_end: bool = False
    tail_threshold: float = POWER_THRESHOLD
    max_tail_blocks: int | None = None
    control_changes_as_notes: bool = True


class RenderScheduler:
    """Walks an event timeline against fixed block boundaries.

    Each iteration either renders the current block (the event at the cursor
    lies past the next boundary; the cursor stays put and the same event is
    re-examined) or dispatches the event at its intra-block delay and advances
    the cursor. After the last event the scheduler renders tail blocks until
    the tail detector reports silence.

    on_block, if given, is called after each block is written, with the
    boundary already advanced past it.
    """

    def __init__(
        self,
        engine: SynthEngine,
        writer: FrameWriter,
        *,
        block_size: int,
        sample_rate: int,
        options: RenderOptions | None = None,
        on_block: BlockCallback | None = None,
    ) -> None:
        self.engine = engine
        self.writer = writer
        self.options = options or RenderOptions()
        self.boundary = BlockBoundary(block_size=int(block_size), sample_rate=int(sample_rate))
        self.block = AudioBlock(self.boundary.block_size)
        self.interleaved = make_interleaved_buffer(self.boundary.block_size)
        self.tail = TailDetector(self.options.tail_threshold)
        self.on_block = on_block
        self.result = RenderResult()

    @property
    def block_size(self) -> int:
        return self.boundary.block_size

    @property
    def sample_rate(self) -> int:
        return self.boundary.sample_rate

    def sample_index(self, ev: Event) -> int:
        return int(math.floor(ev.seconds * self.sample_rate))

    def delay_for(self, ev: Event) -> int:
        raw = int(math.floor((ev.seconds - self.boundary.block_start_seconds) * self.sample_rate))
        delay = max(0, min(self.block_size - 1, raw))
        if delay != raw:
            self.result.delays_clamped += 1
            logger.debug("clamped delay %d -> %d for event at %.9fs", raw, delay, ev.seconds)
        return delay

    def run(self, events: Sequence[Event]) -> RenderResult:
        cursor = RenderCursor(total=len(events))

        while not cursor.terminal:
            ev = events[cursor.index]
            if self.sample_index(ev) > self.boundary.next_boundary:
                self.render_step()
            else:
                self.dispatch(ev, self.delay_for(ev))
                cursor.advance()

        self._render_tail()

        self.result.frames_written = self.boundary.frames_written
        self.result.blocks_rendered = self.boundary.blocks_rendered
        self.result.seconds_rendered = self.boundary.seconds_rendered
        return self.result

    def _render_tail(self) -> None:
        # The block holding the last dispatched events is always rendered
        # before the stop condition is evaluated.
        cap = self.options.max_tail_blocks
        while True:
            self.render_step()
            self.result.tail_blocks += 1
            if self.options.end_at_track_end:
                return
            if self.tail.should_stop:
                logger.debug("tail silent after %d block(s), power=%g", self.result.tail_blocks, self.tail.last_power)
                return
            if cap is not None and self.result.tail_blocks >= cap:
                logger.info("tail cut after %d block(s) (power %g)", self.result.tail_blocks, self.tail.last_power)
                return

    def render_step(self) -> None:
        self.engine.render_block(self.block)
        write_interleaved(self.block.left, self.block.right, self.interleaved)
        self.boundary.frames_written += self.writer.write_frames(self.interleaved, self.block_size)
        self.tail.observe(self.interleaved)
        self.boundary.advance()
        if self.on_block is not None:
            self.on_block(self.boundary, self.interleaved)

    def dispatch(self, ev: Event, delay: int) -> None:
        if ev.is_note_on:
            label = "note_on"
            self.engine.note_on(delay, ev.key, ev.value)
        elif ev.is_note_off:
            label = "note_off"
            self.engine.note_off(delay, ev.key, ev.value)
        elif ev.kind == EventKind.CONTROL_CHANGE:
            label = "control_change"
            if self.options.control_changes_as_notes:
                self.engine.note_on(delay, ev.key, ev.value)
            else:
                self.engine.cc(delay, ev.key, ev.value)
        elif ev.kind == EventKind.PITCH_BEND:
            label = "pitch_bend"
            first = ev.raw[1] if len(ev.raw) > 1 else 0
            second = ev.raw[2] if len(ev.raw) > 2 else 64
            self.engine.pitch_wheel(delay, build_and_center_pitch(first, second))
        else:
            b0 = ev.raw[0] if len(ev.raw) > 0 else 0
            b1 = ev.raw[1] if len(ev.raw) > 1 else 0
            logger.info("Unhandled event at delay %d %d %d", delay, b0, b1)
            self.result.events_dropped += 1
            return

        self.result.events_dispatched += 1
        self.result.dispatched_by_kind[label] = self.result.dispatched_by_kind.get(label, 0) + 1


def render_events(
    engine: SynthEngine,
    writer: FrameWriter,
    events: Sequence[Event],
    *,
    block_size: int,
    sample_rate: int,
    options: RenderOptions | None = None,
) -> RenderResult:
    sched = RenderScheduler(engine, writer, block_size=block_size, sample_rate=sample_rate, options=options)
    return sched.run(events)
