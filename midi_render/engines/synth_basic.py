from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from random import Random

from midi_render.audio.buffers import AudioBlock
from midi_render.engines.base import EngineBase, PendingEvent
from midi_render.engines.instrument import Instrument, Region, clamp, load_instrument_file, midi_to_hz

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * math.pi

ATTACK, DECAY, SUSTAIN, RELEASE, DONE = range(5)


def oscillator(wave: str, phase: float) -> float:
    if wave == "sine":
        return math.sin(phase)
    if wave == "square":
        return 1.0 if math.sin(phase) >= 0 else -1.0
    x = phase / TWO_PI
    if wave == "triangle":
        return 4.0 * abs(x - math.floor(x + 0.5)) - 1.0
    return 2.0 * (x - math.floor(x + 0.5))


@dataclass
class ChannelState:
    volume: int = 100
    pan: int = 64
    sustain_pedal: bool = False
    bend: int = 0

    @property
    def gain(self) -> float:
        v = self.volume / 127.0
        return v * v

    def pan_gains(self) -> tuple[float, float]:
        p = clamp((self.pan - 64) / 63.0, -1.0, 1.0)
        angle = (p + 1.0) * math.pi / 4.0
        return math.cos(angle) * math.sqrt(2.0), math.sin(angle) * math.sqrt(2.0)


@dataclass
class Voice:
    region: Region
    key: int
    velocity: int
    serial: int
    phase_l: float = 0.0
    phase_r: float = 0.0
    level: float = 0.0
    stage: int = ATTACK
    release_step: float = 0.0
    sustained: bool = False
    lp_l: float = 0.0
    lp_r: float = 0.0
    gain: float = 0.0

    @property
    def done(self) -> bool:
        return self.stage == DONE

    def base_pitch(self) -> float:
        return self.key + self.region.transpose + self.region.tune / 100.0


class BasicSynthEngine(EngineBase):
    """Built-in polyphonic subtractive synth driven block by block.

    Voices follow a linear ADSR; release starts from the current level and
    frees the voice on reaching zero, so tails decay to exact silence.
    Oscillators run at sample_rate * oversampling and are decimated with a
    box filter.
    """

    id = "synth.basic"

    def __init__(self) -> None:
        super().__init__()
        self.instrument: Instrument | None = None
        self.channel = ChannelState()
        self.voices: list[Voice] = []
        self._serial = 0

    @property
    def num_regions(self) -> int:
        return len(self.instrument.regions) if self.instrument else 0

    @property
    def active_voices(self) -> int:
        return len(self.voices)

    def load_instrument(self, path: str | Path) -> None:
        self.set_instrument(load_instrument_file(path))

    def set_instrument(self, instrument: Instrument) -> None:
        self.instrument = instrument
        self.voices = []
        logger.debug("instrument '%s': %d regions, polyphony %d", instrument.name, len(instrument.regions), instrument.polyphony)

    # -- event handling ---------------------------------------------------

    def _apply(self, ev: PendingEvent) -> None:
        if ev.kind == "note_on":
            self._start_note(ev.a, ev.b)
        elif ev.kind == "note_off":
            self._stop_note(ev.a)
        elif ev.kind == "pitch_wheel":
            self.channel.bend = max(-8192, min(8191, ev.a))
        elif ev.kind == "cc":
            self._control(ev.a, ev.b)

    def _start_note(self, key: int, velocity: int) -> None:
        if self.instrument is None:
            return
        if velocity <= 0:
            self._stop_note(key)
            return
        for region in self.instrument.regions_for(key, velocity):
            live = [v for v in self.voices if not v.done]
            if len(live) >= self.instrument.polyphony:
                oldest = min(live, key=lambda v: v.serial)
                self.voices.remove(oldest)
            rng = Random((self.instrument.seed * 1000003 + key * 131 + self._serial * 31) & 0x7FFFFFFF)
            voice = Voice(
                region=region,
                key=int(key),
                velocity=int(velocity),
                serial=self._serial,
                phase_l=rng.random() * TWO_PI,
                phase_r=rng.random() * TWO_PI,
                gain=(velocity / 127.0) * region.gain * 0.9,
            )
            self._serial += 1
            self.voices.append(voice)

    def _stop_note(self, key: int) -> None:
        for v in self.voices:
            if v.key != key or v.stage == RELEASE or v.done:
                continue
            if self.channel.sustain_pedal:
                v.sustained = True
            else:
                self._release(v)

    def _release(self, v: Voice) -> None:
        rel_s = max(1, int(v.region.release * self.sample_rate))
        v.stage = RELEASE
        v.sustained = False
        v.release_step = max(v.level, 1e-9) / rel_s

    def _control(self, number: int, value: int) -> None:
        if number == 7:
            self.channel.volume = value
        elif number == 10:
            self.channel.pan = value
        elif number == 64:
            down = value >= 64
            if self.channel.sustain_pedal and not down:
                for v in self.voices:
                    if v.sustained:
                        self._release(v)
            self.channel.sustain_pedal = down
        elif number == 120:
            self.voices = []
        elif number == 123:
            for v in self.voices:
                if v.stage != RELEASE and not v.done:
                    self._release(v)

    # -- rendering --------------------------------------------------------

    def _bend_cents(self, region: Region) -> float:
        b = self.channel.bend
        if b >= 0:
            return region.bend_up * (b / 8191.0)
        return region.bend_down * (b / 8192.0)

    def _step_envelope(self, v: Voice) -> float:
        r = v.region
        sr = self.sample_rate
        if v.stage == ATTACK:
            atk_s = max(1, int(r.attack * sr))
            v.level += 1.0 / atk_s
            if v.level >= 1.0:
                v.level = 1.0
                v.stage = DECAY
        elif v.stage == DECAY:
            dec_s = max(1, int(r.decay * sr))
            v.level -= (1.0 - r.sustain) / dec_s
            if v.level <= r.sustain:
                v.level = r.sustain
                v.stage = SUSTAIN
        elif v.stage == SUSTAIN:
            v.level = r.sustain
            if r.sustain <= 0.0:
                v.stage = DONE
        elif v.stage == RELEASE:
            v.level -= v.release_step
            if v.level <= 0.0:
                v.level = 0.0
                v.stage = DONE
        return v.level

    def _render_span(self, block: AudioBlock, start: int, end: int) -> None:
        if not self.voices or end <= start:
            return

        os_factor = self.oversampling
        os_rate = float(self.sample_rate * os_factor)
        ch_gain = self.channel.gain
        ch_l, ch_r = self.channel.pan_gains()
        left = block.left
        right = block.right

        for v in self.voices:
            if v.done:
                continue
            r = v.region
            reg_l, reg_r = r.pan_gains()
            f0 = midi_to_hz(v.base_pitch() + self._bend_cents(r) / 100.0)
            detune = 2.0 ** ((r.width * 6.0) / 1200.0) if r.width > 0 else 1.0
            inc_l = TWO_PI * f0 / os_rate
            inc_r = TWO_PI * f0 * detune / os_rate

            cutoff = clamp(200.0 + (r.tone**2) * 12000.0, 80.0, self.sample_rate * 0.45)
            alpha = min(1.0, TWO_PI * cutoff / self.sample_rate)
            g_l = v.gain * ch_gain * ch_l * reg_l
            g_r = v.gain * ch_gain * ch_r * reg_r

            for i in range(start, end):
                env = self._step_envelope(v)
                if v.done:
                    break

                acc_l = 0.0
                acc_r = 0.0
                for _ in range(os_factor):
                    v.phase_l = (v.phase_l + inc_l) % TWO_PI
                    v.phase_r = (v.phase_r + inc_r) % TWO_PI
                    acc_l += oscillator(r.wave, v.phase_l)
                    acc_r += oscillator(r.wave, v.phase_r)
                s_l = acc_l / os_factor
                s_r = acc_r / os_factor

                v.lp_l += alpha * (s_l - v.lp_l)
                v.lp_r += alpha * (s_r - v.lp_r)

                left[i] += math.tanh(v.lp_l * r.drive) * env * g_l
                right[i] += math.tanh(v.lp_r * r.drive) * env * g_r

        self.voices = [v for v in self.voices if not v.done]
