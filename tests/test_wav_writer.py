from __future__ import annotations

import wave
from pathlib import Path

import pytest

from midi_render.audio.wav import WavWriter, read_wav_stereo
from midi_render.errors import OutputError


def test_stream_blocks_to_16bit_stereo(tmp_path: Path) -> None:
    out = tmp_path / "sub" / "out.wav"
    with WavWriter(out, sample_rate=22050) as w:
        assert w.write_frames([0.5, -0.5] * 4, 4) == 4
        assert w.write_frames([0.0, 0.25] * 4, 4) == 4
    assert w.frames_written == 8

    with wave.open(str(out), "rb") as wf:
        assert wf.getnchannels() == 2
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 22050
        assert wf.getnframes() == 8

    sr, left, right = read_wav_stereo(out)
    assert sr == 22050
    assert left[0] == pytest.approx(0.5, abs=1e-4)
    assert right[0] == pytest.approx(-0.5, abs=1e-4)
    assert right[-1] == pytest.approx(0.25, abs=1e-4)


def test_samples_are_clipped(tmp_path: Path) -> None:
    out = tmp_path / "clip.wav"
    with WavWriter(out, sample_rate=8000) as w:
        w.write_frames([2.0, -3.0], 1)
    _, left, right = read_wav_stereo(out)
    assert left == [1.0]
    assert right == [-1.0]


def test_frames_are_bounded_by_buffer(tmp_path: Path) -> None:
    with WavWriter(tmp_path / "x.wav", sample_rate=8000) as w:
        assert w.write_frames([0.1] * 6, 10) == 3


def test_existing_output_is_overwritten(tmp_path: Path) -> None:
    out = tmp_path / "o.wav"
    out.write_bytes(b"junk")
    with WavWriter(out, sample_rate=8000) as w:
        w.write_frames([0.0, 0.0], 1)
    assert read_wav_stereo(out)[0] == 8000


def test_unwritable_path_raises_output_error(tmp_path: Path) -> None:
    with pytest.raises(OutputError):
        WavWriter(tmp_path, sample_rate=8000)


def test_write_after_close_raises(tmp_path: Path) -> None:
    w = WavWriter(tmp_path / "c.wav", sample_rate=8000)
    w.close()
    w.close()
    with pytest.raises(OutputError):
        w.write_frames([0.0, 0.0], 1)


def test_failed_header_setup_closes_the_file(tmp_path: Path, monkeypatch) -> None:
    opened = []
    real_open = Path.open

    def tracking_open(self, *args, **kwargs):
        fh = real_open(self, *args, **kwargs)
        opened.append(fh)
        return fh

    monkeypatch.setattr(Path, "open", tracking_open)

    with pytest.raises(OutputError):
        WavWriter(tmp_path / "bad.wav", sample_rate=8000, channels=0)

    assert len(opened) == 1
    assert opened[0].closed
