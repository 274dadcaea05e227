from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from spotmix.audio.loudness import measure_integrated_lufs
from spotmix.audio.wav import decode_wav, write_wav
from spotmix.errors import DecodeError
from spotmix.io.tracks_json import load_tracks, save_timeline_json
from spotmix.mixdown import resolve_tracks, run_mixdown
from spotmix.model.types import SampleBuffer, Track
from spotmix.util.config import EngineConfig

SR = 44100


def _tone(path: Path, seconds: float, freq: float, amp: float) -> Path:
    t = np.arange(int(round(seconds * SR))) / float(SR)
    x = amp * np.sin(2.0 * np.pi * freq * t)
    return write_wav(path, SampleBuffer(np.stack([x, x], axis=1), SR))


def _ad(tmp_path: Path) -> list[Track]:
    v1 = _tone(tmp_path / "v1.wav", 1.0, 300.0, 0.3)
    v2 = _tone(tmp_path / "v2.wav", 1.5, 350.0, 0.3)
    m = _tone(tmp_path / "bed.wav", 8.0, 110.0, 0.5)
    s = _tone(tmp_path / "whoosh.wav", 0.2, 2000.0, 0.4)
    return [
        Track(id="v1", kind="voice", source=str(v1)),
        Track(id="v2", kind="voice", source=str(v2), play_after="v1", overlap=0.25),
        Track(id="bed", kind="music", source=str(m)),
        Track(id="fx", kind="soundfx", source=str(s)),
    ]


def test_full_mixdown_produces_normalized_stereo_wav(tmp_path: Path) -> None:
    res = run_mixdown(_ad(tmp_path))

    tl = res.timeline
    assert tl.by_id("v2").start == pytest.approx(0.75)  # type: ignore[union-attr]
    # voices end at 2.25 -> bed capped at 5.25
    assert tl.by_id("bed").duration == pytest.approx(5.25)  # type: ignore[union-attr]
    assert tl.by_id("fx").start == pytest.approx(1.75)  # type: ignore[union-attr]
    assert tl.total_duration == pytest.approx(5.25)

    out = decode_wav(res.audio)
    assert out.sample_rate == SR
    assert out.channels == 2
    assert out.frames == int(round(5.25 * SR))

    assert res.report.final_lufs == pytest.approx(-16.0, abs=0.5) or res.report.limited
    assert res.report.final_true_peak_dbtp <= -2.0 + 1e-9
    assert measure_integrated_lufs(out) == pytest.approx(res.report.final_lufs, abs=0.1)


def test_custom_target_and_sample_rate(tmp_path: Path) -> None:
    cfg = EngineConfig.from_dict({"target": {"integrated_lufs": -23.0, "sample_rate": 22050}})
    res = run_mixdown(_ad(tmp_path), cfg=cfg)
    out = decode_wav(res.audio)
    assert out.sample_rate == 22050
    assert res.report.final_lufs == pytest.approx(-23.0, abs=0.5)


def test_decode_failure_aborts_request(tmp_path: Path) -> None:
    tracks = _ad(tmp_path) + [Track(id="gone", kind="soundfx", source=str(tmp_path / "gone.wav"))]
    with pytest.raises(DecodeError) as ei:
        run_mixdown(tracks)
    assert ei.value.source == str(tmp_path / "gone.wav")


def test_resolve_only_and_timeline_export(tmp_path: Path) -> None:
    tl = resolve_tracks(_ad(tmp_path))
    out = save_timeline_json(tl, tmp_path / "out" / "timeline.json")
    data = json.loads(Path(out).read_text(encoding="utf-8"))
    assert data["total_duration"] == pytest.approx(5.25)
    assert [t["id"] for t in data["tracks"]] == ["v1", "v2", "bed", "fx"]
    assert data["tracks"][2]["rule"] == "music-bed"


def test_legacy_track_list_file_mixes(tmp_path: Path) -> None:
    _ad(tmp_path)
    payload = [
        {"id": "v1", "type": "voice", "url": "v1.wav", "label": "Opening line"},
        {"id": "v2", "type": "voice", "url": "v2.wav", "playAfter": "opening line", "overlap": 0.25},
        {"id": "bed", "type": "music", "url": "bed.wav", "volume": 0.2},
        {"id": "fx", "type": "soundfx", "url": "whoosh.wav", "metadata": {"placementIntent": {"type": "withFirstVoice"}}},
    ]
    p = tmp_path / "tracks.json"
    p.write_text(json.dumps(payload), encoding="utf-8")

    res = run_mixdown(load_tracks(p))
    assert res.timeline.by_id("v2").start == pytest.approx(0.75)  # type: ignore[union-attr]
    assert res.timeline.by_id("fx").start == 0.0  # type: ignore[union-attr]
    assert res.timeline.by_id("bed").gain == pytest.approx(0.2)  # type: ignore[union-attr]
    assert not res.timeline.warnings
