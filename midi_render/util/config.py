from __future__ import annotations

import json
import math
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from midi_render.errors import ConfigError
from midi_render.util.limits import MAX_BLOCK_SIZE, MAX_SAMPLE_RATE, MIN_SAMPLE_RATE, OVERSAMPLING_FACTORS


def default_config_dir() -> Path:
    return Path.home() / ".config" / "midi-render"


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


def _flag(d: dict[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    if not isinstance(v, bool):
        raise ConfigError(f"config value '{key}' must be true or false, got {v!r}")
    return v


def _opt_float(d: dict[str, Any], key: str) -> float | None:
    v = d.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        raise ConfigError(f"config value '{key}' must be a number, got {v!r}")
    return float(v)


@dataclass
class RenderConfig:
    block_size: int = 1024
    sample_rate: int = 48000
    oversampling: str = "x1"
    track: int = -1  # < 1 merges all tracks
    end_at_track_end: bool = False
    verbose: bool = False
    engine: str = "synth.basic"
    cc_as_notes: bool = True  # controllers go through note_on
    max_tail_seconds: float | None = None  # None renders until the tail is silent

    @property
    def oversampling_factor(self) -> int:
        return OVERSAMPLING_FACTORS[self.oversampling]

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def max_tail_blocks(self) -> int | None:
        if self.max_tail_seconds is None:
            return None
        return max(1, math.ceil(self.max_tail_seconds * self.sample_rate / self.block_size))

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "RenderConfig":
        base = RenderConfig()
        try:
            return RenderConfig(
                block_size=int(d.get("block_size", base.block_size)),
                sample_rate=int(d.get("sample_rate", base.sample_rate)),
                oversampling=str(d.get("oversampling", base.oversampling)),
                track=int(d.get("track", base.track)),
                end_at_track_end=_flag(d, "end_at_track_end", base.end_at_track_end),
                verbose=_flag(d, "verbose", base.verbose),
                engine=str(d.get("engine") or base.engine),
                cc_as_notes=_flag(d, "cc_as_notes", base.cc_as_notes),
                max_tail_seconds=_opt_float(d, "max_tail_seconds"),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid config value: {e}") from e

    def merged(self, **overrides: Any) -> "RenderConfig":
        """Copy with every non-None override applied (CLI flags over file values)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Path | None = None) -> RenderConfig:
    p = path or default_config_path()
    if not p.exists():
        return RenderConfig()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"could not read config {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {p} must be a JSON object")
    return RenderConfig.from_dict(data)


def save_config(cfg: RenderConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p


def validate_config(cfg: RenderConfig) -> RenderConfig:
    if not (1 <= cfg.block_size <= MAX_BLOCK_SIZE):
        raise ConfigError(f"Block size must be in 1..{MAX_BLOCK_SIZE}, got {cfg.block_size}")
    if not (MIN_SAMPLE_RATE <= cfg.sample_rate <= MAX_SAMPLE_RATE):
        raise ConfigError(f"Sample rate must be in {MIN_SAMPLE_RATE}..{MAX_SAMPLE_RATE}, got {cfg.sample_rate}")
    if cfg.oversampling not in OVERSAMPLING_FACTORS:
        raise ConfigError(f"Unknown oversampling factor {cfg.oversampling}")
    if cfg.max_tail_seconds is not None and not cfg.max_tail_seconds > 0:
        raise ConfigError(f"Max tail seconds must be > 0, got {cfg.max_tail_seconds}")
    return cfg
