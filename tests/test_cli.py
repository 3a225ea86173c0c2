from __future__ import annotations

import json
import wave
from pathlib import Path

import mido
import pytest

from midi_render.__main__ import main
from midi_render.audio.wav import read_wav_stereo
from midi_render.render.pipeline import render_midi_file
from midi_render.render.scheduler import RenderOptions
from midi_render.util.config import RenderConfig

INSTRUMENT = """\
name: test
defaults:
  wave: saw
  attack: 0.002
  decay: 0.05
  sustain: 0.5
  release: 0.05
regions:
  - lokey: 0
    hikey: 127
"""


@pytest.fixture
def inputs(tmp_path: Path) -> tuple[Path, Path]:
    sfz = tmp_path / "inst.yaml"
    sfz.write_text(INSTRUMENT, encoding="utf-8")

    mf = mido.MidiFile(type=1, ticks_per_beat=480)
    t0 = mido.MidiTrack([mido.MetaMessage("set_tempo", tempo=500000, time=0)])
    t1 = mido.MidiTrack(
        [
            mido.Message("note_on", note=60, velocity=100, time=0),
            mido.Message("note_off", note=60, velocity=0, time=240),
        ]
    )
    mf.tracks.extend([t0, t1])
    mid = tmp_path / "song.mid"
    mf.save(str(mid))
    return sfz, mid


def _args(sfz: Path, mid: Path, wav: Path, *extra: str) -> list[str]:
    return ["--sfz", str(sfz), "--midi", str(mid), "--wav", str(wav), "--blocksize", "128", "--samplerate", "8000", *extra]


def test_renders_wav_and_lets_the_tail_decay(inputs, tmp_path: Path) -> None:
    sfz, mid = inputs
    out = tmp_path / "out.wav"

    assert main(_args(sfz, mid, out)) == 0

    with wave.open(str(out), "rb") as wf:
        assert wf.getnchannels() == 2
        assert wf.getframerate() == 8000
        frames = wf.getnframes()
    assert frames % 128 == 0
    # note lasts 0.25 s (2000 frames); release adds 400 more
    assert frames >= 2000 + 400

    _, left, _ = read_wav_stereo(out)
    assert any(abs(x) > 0.01 for x in left[:2000])
    assert all(x == 0.0 for x in left[-128:])


def test_use_eot_stops_at_the_last_event_block(inputs, tmp_path: Path) -> None:
    sfz, mid = inputs
    full = tmp_path / "full.wav"
    eot = tmp_path / "eot.wav"
    assert main(_args(sfz, mid, full)) == 0
    assert main(_args(sfz, mid, eot, "--use-eot")) == 0

    with wave.open(str(eot), "rb") as wf:
        eot_frames = wf.getnframes()
    with wave.open(str(full), "rb") as wf:
        full_frames = wf.getnframes()
    assert eot_frames == 2048
    assert eot_frames < full_frames


def test_verbose_reports_settings_and_result(inputs, tmp_path: Path, capsys) -> None:
    sfz, mid = inputs
    out = tmp_path / "v.wav"
    out.write_bytes(b"old")
    assert main(_args(sfz, mid, out, "--verbose", "--track", "2", "--oversampling", "x2")) == 0

    text = capsys.readouterr().out
    assert "already exists and will be erased" in text
    assert "Oversampling factor: x2" in text
    assert "1 regions in the instrument." in text
    assert "2 tracks in the SMF." in text
    assert "-- Rendering only track number 2" in text
    assert "seconds of sound data in" in text


def test_quiet_by_default(inputs, tmp_path: Path, capsys) -> None:
    sfz, mid = inputs
    assert main(_args(sfz, mid, tmp_path / "q.wav")) == 0
    assert capsys.readouterr().out == ""


def test_config_file_supplies_defaults(inputs, tmp_path: Path) -> None:
    sfz, mid = inputs
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"block_size": 100, "sample_rate": 4000}), encoding="utf-8")
    out = tmp_path / "c.wav"
    assert main(["--sfz", str(sfz), "--midi", str(mid), "--wav", str(out), "--config", str(cfg)]) == 0
    with wave.open(str(out), "rb") as wf:
        assert wf.getframerate() == 4000
        assert wf.getnframes() % 100 == 0


@pytest.mark.parametrize(
    "drop, message",
    [
        ("--sfz", "--sfz"),
        ("--midi", "--midi"),
        ("--wav", "--wav"),
    ],
)
def test_missing_required_paths_exit_with_failure(inputs, tmp_path: Path, capsys, drop: str, message: str) -> None:
    sfz, mid = inputs
    args = _args(sfz, mid, tmp_path / "o.wav")
    i = args.index(drop)
    del args[i : i + 2]

    assert main(args) == -1
    err = capsys.readouterr().err
    assert "ERROR" in err and message in err


def test_nonexistent_inputs_exit_with_failure(inputs, tmp_path: Path, capsys) -> None:
    sfz, mid = inputs
    assert main(_args(tmp_path / "none.yaml", mid, tmp_path / "o.wav")) == -1
    assert "does not exist or is not a regular file" in capsys.readouterr().err

    assert main(_args(sfz, tmp_path, tmp_path / "o.wav")) == -1
    assert not (tmp_path / "o.wav").exists()


def test_bad_settings_exit_with_failure(inputs, tmp_path: Path, capsys) -> None:
    sfz, mid = inputs
    out = tmp_path / "o.wav"

    assert main(_args(sfz, mid, out, "--oversampling", "x3")) == -1
    assert "Unknown oversampling factor x3" in capsys.readouterr().err

    assert main(_args(sfz, mid, out, "--track", "3")) == -1
    assert "does not exist in the SMF file" in capsys.readouterr().err
    assert not out.exists()

    assert main(_args(sfz, mid, out, "--engine", "nope")) == -1
    assert "Unknown engine" in capsys.readouterr().err


def test_broken_instrument_exits_with_failure(inputs, tmp_path: Path, capsys) -> None:
    _, mid = inputs
    bad = tmp_path / "bad.yaml"
    bad.write_text("regions: []\n", encoding="utf-8")
    assert main(_args(bad, mid, tmp_path / "o.wav")) == -1
    assert "regions" in capsys.readouterr().err


def _song_with_volume_cc(path: Path) -> Path:
    mf = mido.MidiFile(type=0, ticks_per_beat=480)
    mf.tracks.append(
        mido.MidiTrack(
            [
                mido.MetaMessage("set_tempo", tempo=500000, time=0),
                mido.Message("control_change", control=7, value=100, time=0),
                mido.Message("note_on", note=60, velocity=100, time=0),
                mido.Message("note_off", note=60, velocity=0, time=240),
            ]
        )
    )
    mf.save(str(path))
    return path


def test_controllers_routed_to_the_engine_end_like_a_plain_song(inputs, tmp_path: Path) -> None:
    sfz, plain = inputs
    song = _song_with_volume_cc(tmp_path / "cc.mid")

    assert main(_args(sfz, plain, tmp_path / "plain.wav")) == 0
    assert main(_args(sfz, song, tmp_path / "cc.wav", "--no-cc-as-notes")) == 0

    _, plain_left, _ = read_wav_stereo(tmp_path / "plain.wav")
    _, cc_left, _ = read_wav_stereo(tmp_path / "cc.wav")
    # CC7=100 is the engine's default volume, so the audio is unchanged
    assert len(cc_left) == len(plain_left)
    assert cc_left == plain_left
    assert all(x == 0.0 for x in cc_left[-128:])


def test_tail_cap_ends_a_controller_note_that_never_releases(inputs, tmp_path: Path) -> None:
    sfz, _ = inputs
    song = _song_with_volume_cc(tmp_path / "cc.mid")
    out = tmp_path / "capped.wav"

    # default routing starts a note on key 7 that nothing releases
    assert main(_args(sfz, song, out, "--max-tail-seconds", "0.5")) == 0

    with wave.open(str(out), "rb") as wf:
        frames = wf.getnframes()
    # 15 blocks up to the note-off at frame 2000, then ceil(0.5 * 8000 / 128) = 32 tail blocks
    assert frames == (15 + 32) * 128
    _, left, _ = read_wav_stereo(out)
    assert any(x != 0.0 for x in left[-128:])


def test_tail_cap_and_cc_routing_come_from_the_config_file(inputs, tmp_path: Path) -> None:
    sfz, _ = inputs
    song = _song_with_volume_cc(tmp_path / "cc.mid")
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"cc_as_notes": True, "max_tail_seconds": 0.25}), encoding="utf-8")
    out = tmp_path / "c.wav"

    assert main(_args(sfz, song, out, "--config", str(cfg))) == 0
    with wave.open(str(out), "rb") as wf:
        assert wf.getnframes() == (15 + 16) * 128


def test_non_positive_tail_cap_is_rejected(inputs, tmp_path: Path, capsys) -> None:
    sfz, mid = inputs
    assert main(_args(sfz, mid, tmp_path / "o.wav", "--max-tail-seconds", "0")) == -1
    assert "Max tail seconds" in capsys.readouterr().err


def test_pipeline_leaves_caller_options_untouched(inputs, tmp_path: Path) -> None:
    sfz, _ = inputs
    song = _song_with_volume_cc(tmp_path / "cc.mid")
    opts = RenderOptions(max_tail_blocks=4)
    cfg = RenderConfig(block_size=128, sample_rate=8000, end_at_track_end=True, cc_as_notes=False)

    res = render_midi_file(cfg, instrument_path=sfz, midi_path=song, output_path=tmp_path / "p.wav", options=opts)

    assert res.tail_blocks == 1
    assert res.dispatched_by_kind.get("control_change") == 1
    assert opts == RenderOptions(max_tail_blocks=4)
