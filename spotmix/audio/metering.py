from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import numpy as np

from spotmix.audio.decode import decode_audio, is_wav
from spotmix.audio.loudness import measure_integrated_lufs, measure_true_peak_dbtp
from spotmix.audio.wav import decode_wav
from spotmix.errors import DecodeError
from spotmix.model.types import SampleBuffer


@dataclass(frozen=True)
class AudioMetering:
    """Quick offline diagnostics for a rendered mix.

    Notes:
    - LUFS/true-peak use the same measurement as the normalizer.
    - peak/RMS are sample values in dBFS; crest factor is their difference.
    - stereo_correlation is None for mono input.
    """

    duration_seconds: float
    sample_rate: int
    channels: int

    integrated_lufs: float
    true_peak_dbtp: float

    peak_dbfs: float | None
    rms_dbfs: float | None
    crest_factor_db: float | None

    dc_offset: float
    stereo_correlation: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _dbfs(v: float) -> float | None:
    if v <= 0:
        return None
    return 20.0 * math.log10(v)


def stereo_correlation(buffer: SampleBuffer) -> float | None:
    if buffer.channels < 2 or buffer.frames < 2:
        return None
    left = buffer.samples[:, 0] - buffer.samples[:, 0].mean()
    right = buffer.samples[:, 1] - buffer.samples[:, 1].mean()
    denom = math.sqrt(max(1e-24, float(np.dot(left, left)) * float(np.dot(right, right))))
    # Clamp for numerical stability.
    return max(-1.0, min(1.0, float(np.dot(left, right)) / denom))


def analyze_metering(buffer: SampleBuffer) -> AudioMetering:
    x = buffer.samples
    if buffer.frames:
        peak = _dbfs(float(np.max(np.abs(x))))
        rms = _dbfs(math.sqrt(float(np.mean(x * x))))
        dc = float(np.mean(x))
    else:
        peak, rms, dc = None, None, 0.0

    crest = peak - rms if peak is not None and rms is not None else None

    return AudioMetering(
        duration_seconds=buffer.duration,
        sample_rate=buffer.sample_rate,
        channels=buffer.channels,
        integrated_lufs=measure_integrated_lufs(buffer),
        true_peak_dbtp=measure_true_peak_dbtp(buffer),
        peak_dbfs=peak,
        rms_dbfs=rms,
        crest_factor_db=crest,
        dc_offset=dc,
        stereo_correlation=stereo_correlation(buffer),
    )


def analyze_file(path: Path, *, sample_rate: int = 44100, ffmpeg_bin: str = "ffmpeg") -> AudioMetering:
    """Meter an audio file. PCM WAV keeps its native rate; other formats decode at sample_rate."""

    try:
        data = path.read_bytes()
    except OSError as e:
        raise DecodeError(f"cannot read {path}: {e.strerror or e}", source=str(path)) from e

    buf: SampleBuffer | None = None
    if is_wav(data):
        try:
            buf = decode_wav(data)
        except DecodeError:
            # non-PCM WAV goes through ffmpeg
            buf = None
    if buf is None:
        buf = decode_audio(data, sample_rate=sample_rate, channels=2, ffmpeg_bin=ffmpeg_bin, source=str(path))
    return analyze_metering(buf)
