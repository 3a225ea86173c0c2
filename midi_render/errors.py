from __future__ import annotations


class RenderError(Exception):
    """Base class for fatal conditions reported by the command line."""


class ConfigError(RenderError):
    """Missing/invalid paths or flags, detected before rendering starts."""


class TrackSelectionError(ConfigError):
    pass


class InstrumentLoadError(RenderError):
    pass


class MidiLoadError(RenderError):
    pass


class OutputError(RenderError):
    """The audio file could not be opened or written."""
