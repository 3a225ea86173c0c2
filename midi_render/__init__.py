"""Offline MIDI renderer: drives a block-based synthesis engine and writes a stereo WAV."""

__version__ = "0.1.0"
