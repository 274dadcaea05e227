from __future__ import annotations

import shutil
import subprocess
import threading
from pathlib import Path

import numpy as np
import pytest
import requests

from spotmix.audio.cache import DecodeCache
from spotmix.audio.decode import decode_audio
from spotmix.audio.sources import fetch_source
from spotmix.audio.wav import encode_wav
from spotmix.errors import DecodeError
from spotmix.model.types import SampleBuffer

HAVE_FFMPEG = shutil.which("ffmpeg") is not None


def _wav(seconds: float, *, sr: int = 44100, channels: int = 2, amp: float = 0.25) -> bytes:
    n = int(round(seconds * sr))
    t = np.arange(n) / float(sr)
    x = amp * np.sin(2.0 * np.pi * 440.0 * t)
    return encode_wav(SampleBuffer(np.repeat(x[:, None], channels, axis=1), sr))


def test_wav_is_resampled_and_upmixed() -> None:
    buf = decode_audio(_wav(1.0, sr=22050, channels=1), sample_rate=44100, channels=2)
    assert buf.sample_rate == 44100
    assert buf.channels == 2
    assert buf.frames == 44100
    assert np.array_equal(buf.samples[:, 0], buf.samples[:, 1])


def test_multichannel_is_downmixed_by_averaging() -> None:
    x = np.array([[0.5, -0.5, 0.25, 0.25]] * 10)
    buf = decode_audio(encode_wav(SampleBuffer(x, 8000)), sample_rate=8000, channels=2)
    assert buf.samples.shape == (10, 2)
    assert buf.samples[0] == pytest.approx([0.125, 0.125], abs=1e-4)


def test_empty_input_raises() -> None:
    with pytest.raises(DecodeError):
        decode_audio(b"", sample_rate=44100, channels=2, source="empty.mp3")


def test_missing_ffmpeg_raises_decode_error() -> None:
    with pytest.raises(DecodeError) as ei:
        decode_audio(b"ID3not-really-mp3", sample_rate=44100, channels=2, ffmpeg_bin="spotmix-no-such-ffmpeg", source="x.mp3")
    assert ei.value.source == "x.mp3"
    assert "not found" in str(ei.value)


@pytest.mark.skipif(not HAVE_FFMPEG, reason="ffmpeg not installed")
def test_compressed_source_goes_through_ffmpeg(tmp_path: Path) -> None:
    src = tmp_path / "tone.flac"
    subprocess.run(
        ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-f", "lavfi", "-i", "sine=frequency=440:sample_rate=48000:duration=1", str(src)],
        check=True,
    )
    buf = decode_audio(src.read_bytes(), sample_rate=44100, channels=2, source=str(src))
    assert buf.channels == 2
    assert buf.duration == pytest.approx(1.0, abs=0.05)
    assert np.max(np.abs(buf.samples)) > 0.01


@pytest.mark.skipif(not HAVE_FFMPEG, reason="ffmpeg not installed")
def test_garbage_fails_in_ffmpeg() -> None:
    with pytest.raises(DecodeError):
        decode_audio(b"\x00\x01garbage" * 64, sample_rate=44100, channels=2, source="junk.bin")


def test_fetch_local_path_and_file_uri(tmp_path: Path) -> None:
    p = tmp_path / "a.wav"
    p.write_bytes(b"abc")
    assert fetch_source(str(p)) == b"abc"
    assert fetch_source(p.as_uri()) == b"abc"

    with pytest.raises(DecodeError) as ei:
        fetch_source(str(tmp_path / "missing.wav"))
    assert ei.value.source == str(tmp_path / "missing.wav")

    with pytest.raises(DecodeError):
        fetch_source("ftp://example.com/a.wav")


class _Resp:
    def __init__(self, content: bytes, status: int = 200) -> None:
        self.content = content
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class _Session:
    def __init__(self, resp: _Resp) -> None:
        self.resp = resp
        self.seen: list[tuple[str, float]] = []

    def get(self, url: str, timeout: float) -> _Resp:
        self.seen.append((url, timeout))
        return self.resp


def test_fetch_http_uses_timeout_and_raises_for_status() -> None:
    s = _Session(_Resp(b"RIFF"))
    assert fetch_source("https://cdn.example.com/v.wav", timeout=5.0, session=s) == b"RIFF"  # type: ignore[arg-type]
    assert s.seen == [("https://cdn.example.com/v.wav", 5.0)]

    with pytest.raises(DecodeError):
        fetch_source("https://cdn.example.com/gone.wav", session=_Session(_Resp(b"", 404)))  # type: ignore[arg-type]


def test_cache_decodes_each_source_once() -> None:
    calls: dict[str, int] = {}
    lock = threading.Lock()
    payloads = {"a": _wav(1.0), "b": _wav(0.5)}

    def fetch(ref: str) -> bytes:
        with lock:
            calls[ref] = calls.get(ref, 0) + 1
        return payloads[ref]

    cache = DecodeCache(sample_rate=44100, fetch=fetch, workers=4)
    out = cache.decode_all(["a", "b", "a", "b", "a"])
    assert set(out) == {"a", "b"}
    assert cache.get("a") is out["a"]
    assert cache.durations["b"] == pytest.approx(0.5)
    assert calls == {"a": 1, "b": 1}
    assert len(cache) == 2 and "a" in cache

    assert cache.evict("a")
    assert not cache.evict("a")
    cache.get("a")
    assert calls["a"] == 2

    cache.clear()
    assert len(cache) == 0


def test_cache_failure_names_source() -> None:
    def fetch(ref: str) -> bytes:
        return b"" if ref == "bad" else _wav(0.1)

    cache = DecodeCache(sample_rate=44100, fetch=fetch)
    with pytest.raises(DecodeError) as ei:
        cache.decode_all(["ok", "bad"])
    assert ei.value.source == "bad"
    assert "bad" not in cache
