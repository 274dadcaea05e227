from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from spotmix.audio.cache import DecodeCache
from spotmix.audio.loudness import LoudnessReport, normalize_with_report
from spotmix.audio.render import render_timeline
from spotmix.audio.wav import encode_wav
from spotmix.model.types import Timeline, Track
from spotmix.timeline.resolver import resolve_timeline
from spotmix.util.config import EngineConfig
from spotmix.util.validate import check_timeline, validate_tracks

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MixdownResult:
    # encoded PCM WAV
    audio: bytes
    timeline: Timeline
    report: LoudnessReport


def make_cache(cfg: EngineConfig, *, fetch: Callable[[str], bytes] | None = None) -> DecodeCache:
    return DecodeCache(
        sample_rate=cfg.target.sample_rate,
        channels=cfg.target.channels,
        fetch=fetch,
        ffmpeg_bin=cfg.ffmpeg_bin,
        fetch_timeout_seconds=cfg.fetch_timeout_seconds,
        workers=cfg.decode_workers,
    )


def resolve_tracks(tracks: Iterable[Track], *, cfg: EngineConfig | None = None, cache: DecodeCache | None = None) -> Timeline:
    """Resolve placement only; durations come from the (lazy) decode cache."""

    cfg = cfg or EngineConfig()
    cache = cache or make_cache(cfg)
    track_list = validate_tracks(list(tracks))
    return check_timeline(resolve_timeline(track_list, durations=cache.durations, policy=cfg.policy))


def run_mixdown(
    tracks: Iterable[Track],
    *,
    cfg: EngineConfig | None = None,
    cache: DecodeCache | None = None,
) -> MixdownResult:
    """decode -> resolve -> render -> normalize -> encode.

    Any decode failure aborts the whole request with DecodeError.
    """

    cfg = cfg or EngineConfig()
    cache = cache or make_cache(cfg)
    track_list = validate_tracks(list(tracks))

    buffers = cache.decode_all(t.source for t in track_list)
    timeline = check_timeline(resolve_timeline(track_list, durations=cache.durations, policy=cfg.policy))
    log.info("resolved %d tracks into %.2fs", len(timeline.tracks), timeline.total_duration)

    master = render_timeline(
        timeline,
        buffers,
        sample_rate=cfg.target.sample_rate,
        channels=cfg.target.channels,
        music_fade_out_seconds=cfg.music_fade_out_seconds,
    )
    normalized, report = normalize_with_report(master, cfg.target)
    return MixdownResult(audio=encode_wav(normalized), timeline=timeline, report=report)
