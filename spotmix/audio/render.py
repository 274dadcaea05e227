from __future__ import annotations

import logging
from collections.abc import Mapping

import numpy as np

from spotmix.audio.decode import conform_channels
from spotmix.errors import RenderError
from spotmix.model.types import SampleBuffer, Timeline

log = logging.getLogger(__name__)


def _fade_out(seg: np.ndarray, frames: int) -> np.ndarray:
    k = min(int(frames), seg.shape[0])
    if k <= 0:
        return seg
    out = seg.copy()
    out[-k:] *= np.linspace(1.0, 0.0, k)[:, None]
    return out


def render_timeline(
    timeline: Timeline,
    buffers: Mapping[str, SampleBuffer],
    *,
    sample_rate: int,
    channels: int = 2,
    music_fade_out_seconds: float = 0.0,
) -> SampleBuffer:
    """Sum every resolved track into one master buss.

    buffers are keyed by source reference and must already be at sample_rate.
    Each track contributes at most its resolved duration, scaled by its gain,
    starting at its resolved offset. No clipping protection is applied here.
    """

    total = int(round(timeline.total_duration * sample_rate))
    bus = np.zeros((total, int(channels)), dtype=np.float64)

    fade_frames = int(round(max(0.0, music_fade_out_seconds) * sample_rate))

    for rt in timeline.tracks:
        buf = buffers.get(rt.track.source)
        if buf is None:
            raise RenderError(f"no decoded audio for track {rt.id} ({rt.track.source})")
        if buf.sample_rate != sample_rate:
            raise RenderError(
                f"track {rt.id} is {buf.sample_rate} Hz; master buss is {sample_rate} Hz"
            )

        start = int(round(rt.start * sample_rate))
        n = min(buf.frames, int(round(rt.duration * sample_rate)), total - start)
        if n <= 0:
            continue

        seg = conform_channels(buf.samples[:n], int(channels)) * rt.gain
        if fade_frames and rt.kind == "music":
            seg = _fade_out(seg, fade_frames)
        bus[start : start + n] += seg

    log.debug("rendered %d tracks into %.3fs buss", len(timeline.tracks), total / float(sample_rate))
    return SampleBuffer(bus, sample_rate)
