from __future__ import annotations

import logging
import math
import subprocess

import numpy as np
from scipy.signal import resample_poly

from spotmix.audio.wav import decode_wav
from spotmix.errors import DecodeError
from spotmix.model.types import SampleBuffer

log = logging.getLogger(__name__)


def is_wav(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def conform_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    """Mono is duplicated; anything wider than the target is averaged down."""

    have = samples.shape[1]
    if have == channels:
        return samples
    if have == 1:
        return np.repeat(samples, channels, axis=1)
    mono = samples.mean(axis=1, keepdims=True)
    return np.repeat(mono, channels, axis=1)


def conform(buf: SampleBuffer, *, sample_rate: int, channels: int) -> SampleBuffer:
    x = buf.samples
    if buf.sample_rate != sample_rate and buf.frames:
        g = math.gcd(int(buf.sample_rate), int(sample_rate))
        x = resample_poly(x, int(sample_rate) // g, int(buf.sample_rate) // g, axis=0)
    return SampleBuffer(conform_channels(x, channels), sample_rate)


def _ffmpeg_decode(data: bytes, *, sample_rate: int, channels: int, ffmpeg_bin: str, source: str | None) -> SampleBuffer:
    cmd = [
        ffmpeg_bin,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        "pipe:0",
        "-ac",
        str(int(channels)),
        "-ar",
        str(int(sample_rate)),
        "-f",
        "f32le",
        "pipe:1",
    ]
    try:
        p = subprocess.run(cmd, input=data, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise DecodeError(f"{ffmpeg_bin} not found; install ffmpeg to decode compressed audio", source=source) from e

    if p.returncode != 0:
        err = (p.stderr or b"").decode("utf-8", errors="replace").strip().splitlines()
        raise DecodeError(f"ffmpeg failed: {err[-1] if err else 'exit ' + str(p.returncode)}", source=source)

    raw = p.stdout or b""
    frame_bytes = 4 * int(channels)
    raw = raw[: len(raw) - (len(raw) % frame_bytes)]
    x = np.frombuffer(raw, dtype="<f4").astype(np.float64)
    return SampleBuffer(x.reshape(-1, int(channels)), sample_rate)


def decode_audio(
    data: bytes,
    *,
    sample_rate: int,
    channels: int = 2,
    ffmpeg_bin: str = "ffmpeg",
    source: str | None = None,
) -> SampleBuffer:
    """Decode an encoded audio resource to float samples at a fixed rate/layout.

    PCM WAV is parsed in-process and resampled with scipy; every other
    container goes through ffmpeg as 32-bit float PCM.
    """

    if not data:
        raise DecodeError("empty audio data", source=source)

    if is_wav(data):
        try:
            buf = decode_wav(data)
        except DecodeError as e:
            # float or compressed WAV payloads
            log.debug("in-process WAV decode failed (%s); using ffmpeg", e)
        else:
            return conform(buf, sample_rate=sample_rate, channels=channels)

    return _ffmpeg_decode(data, sample_rate=sample_rate, channels=channels, ffmpeg_bin=ffmpeg_bin, source=source)
