from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from midi_render.errors import InstrumentLoadError
from midi_render.util.limits import MAX_POLYPHONY

WAVES = {"saw", "sine", "square", "triangle"}

REGION_DEFAULTS: dict[str, Any] = {
    "wave": "saw",
    "attack": 0.01,
    "decay": 0.18,
    "sustain": 0.6,
    "release": 0.12,
    "tone": 0.6,
    "drive": 1.2,
    "width": 0.8,
    "volume": 0.0,
    "pan": 0.0,
    "transpose": 0,
    "tune": 0.0,
    "bend_up": 200.0,
    "bend_down": 200.0,
}


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def param_float(params: dict[str, Any], key: str, default: float, lo: float | None = None, hi: float | None = None) -> float:
    raw = params.get(key, default)
    try:
        v = float(raw)
    except (TypeError, ValueError):
        v = float(default)
    if lo is not None:
        v = max(lo, v)
    if hi is not None:
        v = min(hi, v)
    return v


def param_int(params: dict[str, Any], key: str, default: int, lo: int | None = None, hi: int | None = None) -> int:
    raw = params.get(key, default)
    try:
        v = int(raw)
    except (TypeError, ValueError):
        v = int(default)
    if lo is not None:
        v = max(lo, v)
    if hi is not None:
        v = min(hi, v)
    return v


def param_str(params: dict[str, Any], key: str, default: str) -> str:
    raw = params.get(key, default)
    return str(raw).strip() or default


def midi_to_hz(pitch: float) -> float:
    return 440.0 * (2.0 ** ((pitch - 69) / 12.0))


def db_to_gain(db: float) -> float:
    return 10.0 ** (db / 20.0)


@dataclass(frozen=True)
class Region:
    """One key/velocity zone of an instrument and the voice parameters it plays with.

    volume is in dB, pan in [-100, 100], tune and bend ranges in cents.
    """

    lokey: int = 0
    hikey: int = 127
    lovel: int = 1
    hivel: int = 127
    wave: str = "saw"
    attack: float = 0.01
    decay: float = 0.18
    sustain: float = 0.6
    release: float = 0.12
    tone: float = 0.6
    drive: float = 1.2
    width: float = 0.8
    volume: float = 0.0
    pan: float = 0.0
    transpose: int = 0
    tune: float = 0.0
    bend_up: float = 200.0
    bend_down: float = 200.0

    def matches(self, key: int, velocity: int) -> bool:
        return self.lokey <= key <= self.hikey and self.lovel <= velocity <= self.hivel

    @property
    def gain(self) -> float:
        return db_to_gain(self.volume)

    def pan_gains(self) -> tuple[float, float]:
        # constant power, unity at center
        p = clamp(self.pan, -100.0, 100.0) / 100.0
        angle = (p + 1.0) * math.pi / 4.0
        return math.cos(angle) * math.sqrt(2.0), math.sin(angle) * math.sqrt(2.0)


@dataclass
class Instrument:
    name: str
    regions: list[Region] = field(default_factory=list)
    polyphony: int = 16
    seed: int = 0

    def regions_for(self, key: int, velocity: int) -> list[Region]:
        return [r for r in self.regions if r.matches(key, velocity)]


def region_from_dict(d: dict[str, Any], *, defaults: dict[str, Any] | None = None, index: int = 0) -> Region:
    params = dict(REGION_DEFAULTS)
    params.update(defaults or {})
    params.update(d)

    if params.get("key") is not None:
        # key: sets both bounds unless the region gives them explicitly
        k = param_int(params, "key", 60)
        if "lokey" not in d:
            params["lokey"] = k
        if "hikey" not in d:
            params["hikey"] = k

    lokey = param_int(params, "lokey", 0)
    hikey = param_int(params, "hikey", 127)
    lovel = param_int(params, "lovel", 1)
    hivel = param_int(params, "hivel", 127)
    if not (0 <= lokey <= hikey <= 127):
        raise InstrumentLoadError(f"region {index}: invalid key range {lokey}..{hikey}")
    if not (0 <= lovel <= hivel <= 127):
        raise InstrumentLoadError(f"region {index}: invalid velocity range {lovel}..{hivel}")

    wave = param_str(params, "wave", "saw").lower()
    if wave not in WAVES:
        raise InstrumentLoadError(f"region {index}: unknown wave '{wave}' (expected one of {sorted(WAVES)})")

    return Region(
        lokey=lokey,
        hikey=hikey,
        lovel=lovel,
        hivel=hivel,
        wave=wave,
        attack=param_float(params, "attack", 0.01, 0.0, 10.0),
        decay=param_float(params, "decay", 0.18, 0.0, 10.0),
        sustain=param_float(params, "sustain", 0.6, 0.0, 1.0),
        release=param_float(params, "release", 0.12, 0.0, 30.0),
        tone=param_float(params, "tone", 0.6, 0.0, 1.0),
        drive=param_float(params, "drive", 1.2, 0.1, 4.0),
        width=param_float(params, "width", 0.8, 0.0, 2.0),
        volume=param_float(params, "volume", 0.0, -144.0, 6.0),
        pan=param_float(params, "pan", 0.0, -100.0, 100.0),
        transpose=param_int(params, "transpose", 0, -127, 127),
        tune=param_float(params, "tune", 0.0, -100.0, 100.0),
        bend_up=param_float(params, "bend_up", 200.0, 0.0, 9600.0),
        bend_down=param_float(params, "bend_down", 200.0, 0.0, 9600.0),
    )


def instrument_from_dict(data: dict[str, Any], *, name: str = "instrument") -> Instrument:
    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise InstrumentLoadError("'defaults' must be a mapping")

    raw_regions = data.get("regions")
    if raw_regions is None:
        raise InstrumentLoadError("instrument has no 'regions' list")
    if not isinstance(raw_regions, list) or not raw_regions:
        raise InstrumentLoadError("'regions' must be a non-empty list")

    regions: list[Region] = []
    for i, r in enumerate(raw_regions):
        if not isinstance(r, dict):
            raise InstrumentLoadError(f"region {i} must be a mapping")
        regions.append(region_from_dict(r, defaults=defaults, index=i))

    return Instrument(
        name=str(data.get("name") or name),
        regions=regions,
        polyphony=param_int(data, "polyphony", 16, 1, MAX_POLYPHONY),
        seed=param_int(data, "seed", 0),
    )


def load_instrument_file(path: str | Path) -> Instrument:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InstrumentLoadError(f"could not read instrument file {p}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InstrumentLoadError(f"could not parse instrument file {p}: {e}") from e
    if not isinstance(data, dict):
        raise InstrumentLoadError("instrument file must be a mapping/object")
    return instrument_from_dict(data, name=p.stem)
