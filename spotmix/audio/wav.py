from __future__ import annotations

import io
import wave
from pathlib import Path

import numpy as np

from spotmix.errors import DecodeError
from spotmix.model.types import SampleBuffer


def _to_pcm16(samples: np.ndarray) -> np.ndarray:
    x = np.clip(samples, -1.0, 1.0)
    # asymmetric full scale: -1.0 -> -32768, +1.0 -> 32767
    x = np.where(x < 0, x * 32768.0, x * 32767.0)
    return np.rint(x).astype("<i2")


def encode_wav(buffer: SampleBuffer) -> bytes:
    """Serialize to a RIFF/WAVE container, 16-bit PCM little-endian, interleaved."""

    pcm = _to_pcm16(buffer.samples)
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(buffer.channels)
        wf.setsampwidth(2)
        wf.setframerate(int(buffer.sample_rate))
        wf.writeframes(pcm.tobytes())
    return out.getvalue()


def _pcm_to_float(frames: bytes, sampwidth: int) -> np.ndarray:
    if sampwidth == 1:
        # 8-bit WAV is unsigned
        v = np.frombuffer(frames, dtype=np.uint8).astype(np.float64) - 128.0
        full = 128.0
    elif sampwidth == 2:
        v = np.frombuffer(frames, dtype="<i2").astype(np.float64)
        full = 32768.0
    elif sampwidth == 3:
        b = np.frombuffer(frames, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        i = b[:, 0] | (b[:, 1] << 8) | (b[:, 2] << 16)
        v = ((i ^ 0x800000) - 0x800000).astype(np.float64)
        full = float(1 << 23)
    elif sampwidth == 4:
        v = np.frombuffer(frames, dtype="<i4").astype(np.float64)
        full = float(1 << 31)
    else:
        raise DecodeError(f"unsupported WAV sample width: {sampwidth} bytes")

    return np.where(v < 0, v / full, v / (full - 1.0))


def decode_wav(data: bytes) -> SampleBuffer:
    """Parse PCM WAV bytes (8/16/24/32-bit) into a float SampleBuffer."""

    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            sample_rate = wf.getframerate()
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise DecodeError(f"invalid WAV data: {e}") from e

    if channels <= 0 or sample_rate <= 0:
        raise DecodeError("invalid WAV header")

    usable = len(frames) - (len(frames) % (sampwidth * channels))
    x = _pcm_to_float(frames[:usable], sampwidth)
    return SampleBuffer(x.reshape(-1, channels), sample_rate)


def write_wav(path: Path, buffer: SampleBuffer) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_wav(buffer))
    return path


def read_wav(path: Path) -> SampleBuffer:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DecodeError(f"cannot read {path}: {e}", source=str(path)) from e
    return decode_wav(data)
