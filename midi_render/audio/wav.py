from __future__ import annotations

import logging
import sys
import wave
from array import array
from pathlib import Path
from typing import Sequence

from midi_render.errors import OutputError

logger = logging.getLogger(__name__)


def _i16(x: float) -> int:
    v = max(-1.0, min(1.0, float(x)))
    return int(v * 32767.0)


class WavWriter:
    """Streaming 16-bit PCM WAV writer fed one interleaved block at a time."""

    def __init__(self, path: str | Path, *, sample_rate: int, channels: int = 2) -> None:
        self.path = Path(path)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.frames_written = 0
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fh = self.path.open("wb")
        except OSError as e:
            raise OutputError(f"Error writing out the wav file: {e}") from e
        try:
            wf = wave.open(fh, "wb")
            wf.setnchannels(self.channels)
            wf.setsampwidth(2)
            wf.setframerate(self.sample_rate)
        except (OSError, wave.Error) as e:
            fh.close()
            raise OutputError(f"Error writing out the wav file: {e}") from e
        self._fh = fh
        self._wf: wave.Wave_write | None = wf

    def write_frames(self, interleaved: Sequence[float], frames: int) -> int:
        """Write `frames` frames from an interleaved float buffer; returns frames written."""
        if self._wf is None:
            raise OutputError(f"wav file already closed: {self.path}")
        n = max(0, min(int(frames), len(interleaved) // self.channels))
        pcm = array("h", [_i16(interleaved[i]) for i in range(n * self.channels)])
        if sys.byteorder != "little":
            pcm.byteswap()
        try:
            self._wf.writeframes(pcm.tobytes())
        except (OSError, wave.Error) as e:
            raise OutputError(f"Error writing out the wav file: {e}") from e
        self.frames_written += n
        return n

    def close(self) -> None:
        if self._wf is None:
            return
        wf, self._wf = self._wf, None
        try:
            try:
                wf.close()
            finally:
                self._fh.close()
        except (OSError, wave.Error) as e:
            raise OutputError(f"Error finalizing the wav file: {e}") from e
        logger.debug("closed %s (%d frames)", self.path, self.frames_written)

    def __enter__(self) -> "WavWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def read_wav_stereo(path: str | Path) -> tuple[int, list[float], list[float]]:
    """Read a 16-bit stereo WAV back as float channels (sample_rate, left, right)."""
    with wave.open(str(path), "rb") as wf:
        sr = wf.getframerate()
        if wf.getsampwidth() != 2 or wf.getnchannels() != 2:
            raise ValueError("expected 16-bit stereo wav")
        data = array("h")
        data.frombytes(wf.readframes(wf.getnframes()))
    if sys.byteorder != "little":
        data.byteswap()
    left = [data[i] / 32767.0 for i in range(0, len(data), 2)]
    right = [data[i] / 32767.0 for i in range(1, len(data), 2)]
    return sr, left, right
