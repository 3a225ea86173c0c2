from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:  # pragma: no cover
    import mido

from midi_render.errors import MidiLoadError, TrackSelectionError
from midi_render.model.types import Event, EventKind

logger = logging.getLogger(__name__)

DEFAULT_TEMPO = 500000  # microseconds per beat (120 bpm)

# (absolute tick, track index, message)
TimedMessage = tuple[int, int, Any]


@dataclass
class TempoMap:
    """Piecewise tick -> seconds conversion from set_tempo events.

    Built once from all tracks so a single selected track still follows the
    conductor track's tempo changes.
    """

    ticks_per_beat: int
    ticks: list[int] = field(default_factory=lambda: [0])
    tempos: list[int] = field(default_factory=lambda: [DEFAULT_TEMPO])
    seconds: list[float] = field(default_factory=lambda: [0.0])

    @classmethod
    def from_tracks(cls, tracks: Iterable[Iterable[Any]], *, ticks_per_beat: int) -> "TempoMap":
        changes: list[tuple[int, int]] = []
        for trk in tracks:
            tick = 0
            for msg in trk:
                tick += int(msg.time)
                if msg.type == "set_tempo":
                    changes.append((tick, int(msg.tempo)))
        changes.sort(key=lambda c: c[0])

        tm = cls(ticks_per_beat=int(ticks_per_beat))
        for tick, tempo in changes:
            if tick == tm.ticks[-1]:
                # later tempo at the same tick wins
                tm.tempos[-1] = tempo
                continue
            tm.seconds.append(tm.to_seconds(tick))
            tm.ticks.append(tick)
            tm.tempos.append(tempo)
        return tm

    def to_seconds(self, tick: int) -> float:
        import mido

        i = bisect.bisect_right(self.ticks, int(tick)) - 1
        i = max(0, i)
        return self.seconds[i] + mido.tick2second(int(tick) - self.ticks[i], self.ticks_per_beat, self.tempos[i])


@dataclass
class Timeline:
    events: list[Event]
    num_tracks: int
    ticks_per_beat: int
    selected_track: int  # 1-based, or -1 when all tracks are merged

    @property
    def duration_seconds(self) -> float:
        return self.events[-1].seconds if self.events else 0.0

    def __len__(self) -> int:
        return len(self.events)


def track_messages(track: Iterable[Any], track_index: int) -> list[TimedMessage]:
    out: list[TimedMessage] = []
    tick = 0
    for msg in track:
        tick += int(msg.time)
        out.append((tick, track_index, msg))
    return out


def merged_track_messages(tracks: Iterable[Iterable[Any]]) -> list[TimedMessage]:
    """Join all tracks into one stream ordered by tick.

    Stable: at equal ticks, events keep track order, then in-track order.
    """
    out: list[TimedMessage] = []
    for i, trk in enumerate(tracks):
        out.extend(track_messages(trk, i))
    out.sort(key=lambda m: (m[0], m[1]))
    return out


def event_from_message(msg: Any, *, seconds: float, track: int = 0, tick: int = 0) -> Event:
    t = getattr(msg, "type", "")
    try:
        raw = tuple(int(b) for b in msg.bytes())
    except (AttributeError, TypeError, ValueError):
        raw = ()

    if t == "note_on":
        return Event(seconds, EventKind.NOTE_ON, msg.channel, msg.note, msg.velocity, raw, track, tick)
    if t == "note_off":
        return Event(seconds, EventKind.NOTE_OFF, msg.channel, msg.note, msg.velocity, raw, track, tick)
    if t == "control_change":
        return Event(seconds, EventKind.CONTROL_CHANGE, msg.channel, msg.control, msg.value, raw, track, tick)
    if t == "pitchwheel":
        return Event(seconds, EventKind.PITCH_BEND, msg.channel, 0, msg.pitch, raw, track, tick)
    return Event(seconds, EventKind.OTHER, int(getattr(msg, "channel", 0) or 0), 0, 0, raw, track, tick)


def events_from_messages(messages: Iterable[TimedMessage], *, tempo_map: TempoMap) -> list[Event]:
    """Convert (tick, track, message) triples to timestamped events."""
    return [event_from_message(msg, seconds=tempo_map.to_seconds(tick), track=trk, tick=tick) for tick, trk, msg in messages]


def read_midifile(path: str | Path) -> "mido.MidiFile":
    import mido

    try:
        return mido.MidiFile(str(path))
    except (OSError, EOFError, ValueError, KeyError, IndexError) as e:
        raise MidiLoadError(f"Could not read MIDI file {path}: {e}") from e


def select_timeline(mf: "mido.MidiFile", *, track: int = -1) -> Timeline:
    """Select or merge tracks and run the tick -> seconds analysis once.

    track < 1 merges all tracks; otherwise track is 1-based.
    """

    num_tracks = len(mf.tracks)
    logger.info("%d tracks in the SMF.", num_tracks)
    if track > num_tracks:
        raise TrackSelectionError(f"The track number {track} requested does not exist in the SMF file.")

    if track < 1:
        msgs = merged_track_messages(mf.tracks)
        selected = -1
    else:
        logger.info("-- Rendering only track number %d", track)
        msgs = track_messages(mf.tracks[track - 1], track - 1)
        selected = int(track)

    tempo_map = TempoMap.from_tracks(mf.tracks, ticks_per_beat=mf.ticks_per_beat)
    events = events_from_messages(msgs, tempo_map=tempo_map)
    return Timeline(events=events, num_tracks=num_tracks, ticks_per_beat=int(mf.ticks_per_beat), selected_track=selected)


def load_timeline(path: str | Path, *, track: int = -1) -> Timeline:
    return select_timeline(read_midifile(path), track=track)
