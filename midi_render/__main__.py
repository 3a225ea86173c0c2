from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from midi_render.engines.registry import list_engines
from midi_render.errors import ConfigError, RenderError
from midi_render.util.config import load_config, validate_config
from midi_render.util.limits import OVERSAMPLING_FACTORS

logger = logging.getLogger("midi_render")

EXIT_FAILURE = -1


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


def setup_logging(*, verbose: bool = False, debug: bool = False) -> None:
    """Info/debug go to stdout, warnings and errors to stderr."""
    for h in list(logger.handlers):
        logger.removeHandler(h)

    out = logging.StreamHandler(sys.stdout)
    out.addFilter(_BelowWarning())
    out.setFormatter(logging.Formatter("%(message)s"))
    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger.addHandler(out)
    logger.addHandler(err)
    logger.setLevel(logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="midi-render",
        add_help=True,
        description="Render a MIDI file through an instrument file with a block-based synthesis engine.",
    )
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("--sfz", default=None, help="Instrument file (YAML region map)")
    p.add_argument("--midi", default=None, help="Input MIDI file")
    p.add_argument("--wav", default=None, help="Output wav file")
    p.add_argument("--blocksize", type=int, default=None, help="Block size for the engine callbacks (default 1024)")
    p.add_argument("--samplerate", type=int, default=None, help="Output sample rate (default 48000)")
    p.add_argument("--track", type=int, default=None, help="Track number to use (< 1 merges all tracks)")
    p.add_argument(
        "--oversampling",
        default=None,
        help=f"Internal oversampling factor ({'|'.join(OVERSAMPLING_FACTORS)})",
    )
    p.add_argument("--engine", default=None, help=f"Synthesis engine ({'|'.join(list_engines())})")
    p.add_argument("--config", default=None, help="JSON config file with default settings")
    p.add_argument(
        "--use-eot",
        dest="use_eot",
        action="store_true",
        default=None,
        help="End rendering at the end of the track instead of waiting for the tail to decay",
    )
    p.add_argument(
        "--cc-as-notes",
        dest="cc_as_notes",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Forward control changes through note-on as (controller, value) (default). "
        "--no-cc-as-notes sends them to the engine as controllers",
    )
    p.add_argument(
        "--max-tail-seconds",
        type=float,
        default=None,
        help="Stop rendering this many seconds after the last event even if the tail is still audible",
    )
    p.add_argument("--verbose", action="store_true", default=None, help="Verbose output")
    p.add_argument("--debug", action="store_true", help="Debug output (per-event details)")
    return p


def _require_file(raw: str, label: str) -> Path:
    path = Path.cwd() / Path(raw).expanduser()
    if not path.exists() or not path.is_file():
        raise ConfigError(f"{label} file {path} does not exist or is not a regular file")
    return path


def run(args: argparse.Namespace) -> int:
    from midi_render.render.pipeline import render_midi_file

    cfg_path = Path(args.config).expanduser() if args.config else None
    cfg = load_config(cfg_path).merged(
        block_size=args.blocksize,
        sample_rate=args.samplerate,
        oversampling=args.oversampling,
        track=args.track,
        end_at_track_end=args.use_eot,
        verbose=args.verbose,
        engine=args.engine,
        cc_as_notes=args.cc_as_notes,
        max_tail_seconds=args.max_tail_seconds,
    )
    if cfg.verbose and not args.debug:
        setup_logging(verbose=True)

    if not args.sfz:
        raise ConfigError("Please specify an instrument file using --sfz")
    if not args.wav:
        raise ConfigError("Please specify an output file using --wav")
    if not args.midi:
        raise ConfigError("Please specify a MIDI file using --midi")

    sfz_path = _require_file(args.sfz, "Instrument")
    midi_path = _require_file(args.midi, "MIDI")
    out_path = Path.cwd() / Path(args.wav).expanduser()
    if out_path.exists():
        logger.info("Output file %s already exists and will be erased.", out_path)

    validate_config(cfg)

    logger.info("Instrument file: %s", sfz_path)
    logger.info("MIDI file:   %s", midi_path)
    logger.info("Output file: %s", out_path)
    logger.info("Oversampling factor: %s", cfg.oversampling)
    logger.info("Block size: %d", cfg.block_size)
    logger.info("Sample rate: %d", cfg.sample_rate)
    logger.info("Control changes as notes: %s", cfg.cc_as_notes)
    if cfg.max_tail_seconds is not None:
        logger.info("Max tail: %ss", cfg.max_tail_seconds)

    render_midi_file(cfg, instrument_path=sfz_path, midi_path=midi_path, output_path=out_path)
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "version", False):
        try:
            from importlib.metadata import PackageNotFoundError, version

            v = version("midi-render")
        except PackageNotFoundError:
            from midi_render import __version__ as v
        print(f"midi-render {v}")
        return 0

    setup_logging(verbose=bool(args.verbose), debug=args.debug)
    try:
        return run(args)
    except RenderError as e:
        logger.error("%s", e)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
