from __future__ import annotations

from typing import Callable, Dict, List

from midi_render.engines.base import SynthEngine
from midi_render.engines.synth_basic import BasicSynthEngine


_ENGINES: Dict[str, Callable[[], SynthEngine]] = {}


def _register(engine_id: str, factory: Callable[[], SynthEngine]) -> None:
    _ENGINES[engine_id] = factory


def _init_registry() -> None:
    if _ENGINES:
        return
    _register(BasicSynthEngine.id, BasicSynthEngine)


def list_engines() -> List[str]:
    _init_registry()
    return sorted(_ENGINES)


def get_engine(engine_id: str) -> SynthEngine | None:
    """Return a fresh engine instance for the id, or None if unknown."""
    _init_registry()
    factory = _ENGINES.get(str(engine_id).strip())
    return factory() if factory is not None else None
