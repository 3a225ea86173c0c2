from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path

from midi_render.audio.wav import WavWriter
from midi_render.engines.registry import get_engine, list_engines
from midi_render.errors import ConfigError
from midi_render.io.midi import load_timeline
from midi_render.model.types import RenderResult
from midi_render.render.scheduler import RenderOptions, RenderScheduler
from midi_render.util.config import RenderConfig, validate_config

logger = logging.getLogger(__name__)


def render_midi_file(
    cfg: RenderConfig,
    *,
    instrument_path: Path,
    midi_path: Path,
    output_path: Path,
    options: RenderOptions | None = None,
) -> RenderResult:
    """Load the instrument and MIDI file, then render to a 16-bit stereo WAV.

    Every failure is raised as a RenderError subclass before or at the step
    that failed; nothing is retried.
    """

    validate_config(cfg)

    engine = get_engine(cfg.engine)
    if engine is None:
        raise ConfigError(f"Unknown engine '{cfg.engine}' (available: {', '.join(list_engines())})")
    engine.set_samples_per_block(cfg.block_size)
    engine.set_sample_rate(cfg.sample_rate)
    engine.set_oversampling(cfg.oversampling_factor)
    engine.load_instrument(instrument_path)
    logger.info("%d regions in the instrument.", engine.num_regions)

    timeline = load_timeline(midi_path, track=cfg.track)

    base = options or RenderOptions()
    tail_cap = cfg.max_tail_blocks()
    opts = replace(
        base,
        end_at_track_end=cfg.end_at_track_end,
        control_changes_as_notes=cfg.cc_as_notes,
        max_tail_blocks=base.max_tail_blocks if tail_cap is None else tail_cap,
    )

    with WavWriter(output_path, sample_rate=cfg.sample_rate) as writer:
        sched = RenderScheduler(engine, writer, block_size=cfg.block_size, sample_rate=cfg.sample_rate, options=opts)
        res = sched.run(timeline.events)

    logger.info(
        "Wrote %s seconds of sound data in %s (%d frames)",
        res.seconds_rendered,
        output_path,
        res.frames_written,
    )
    return res
