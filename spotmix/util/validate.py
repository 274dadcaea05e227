from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from spotmix.model.types import Timeline, Track
from spotmix.util.limits import MAX_GAIN, MAX_OVERLAP_SECONDS, MAX_TIMELINE_SECONDS, MAX_TRACKS
from spotmix.util.timecode import parse_seconds

log = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2

# camelCase keys written by the ad workflow's mixer store
_LEGACY_KEYS = {
    "type": "kind",
    "url": "source",
    "startTime": "start_time",
    "playAfter": "play_after",
    "isConcurrent": "concurrent",
    "concurrentGroup": "group",
    "volume": "gain",
}


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(v)))


def migrate_track_dict(d: dict[str, Any]) -> dict[str, Any]:
    """Normalize one track dict to the current schema.

    Legacy keys are renamed (the new key wins when both are present), legacy
    placement intents are lifted out of metadata, and time values accept
    timecode strings.
    """

    out = dict(d)
    for old, new in _LEGACY_KEYS.items():
        if old in out:
            v = out.pop(old)
            out.setdefault(new, v)

    meta = out.pop("metadata", None)
    if isinstance(meta, dict):
        if "placement" not in out and isinstance(meta.get("placementIntent"), dict):
            out["placement"] = dict(meta["placementIntent"])
        # explicit start in metadata predates the top-level field
        if out.get("start_time") is None and meta.get("startTime") is not None:
            out["start_time"] = meta["startTime"]

    out = normalize_times(out)
    if out.get("kind") is not None:
        out["kind"] = str(out["kind"]).strip().lower()
    return out


def normalize_times(d: dict[str, Any]) -> dict[str, Any]:
    """Timecode strings ("1:02.5", "0.5s") to seconds."""
    out = dict(d)
    for k in ("start_time", "duration", "overlap"):
        if isinstance(out.get(k), str):
            out[k] = parse_seconds(out[k])
    return out


def migrate_track_list(d: dict[str, Any] | list[Any]) -> dict[str, Any]:
    """Accept either a bare list of tracks or {"tracks": [...]}."""

    if isinstance(d, list):
        d = {"tracks": d}
    schema = int(d.get("schema_version", 1) or 1)
    tracks = d.get("tracks")

    # v1 -> v2: camelCase track keys
    if schema < 2 and isinstance(tracks, list):
        d["tracks"] = [migrate_track_dict(t) for t in tracks if isinstance(t, dict)]
    elif isinstance(tracks, list):
        d["tracks"] = [normalize_times(t) for t in tracks if isinstance(t, dict)]

    d["schema_version"] = CURRENT_SCHEMA_VERSION
    return d


def validate_tracks(tracks: list[Track]) -> list[Track]:
    """Reject unusable track lists and clamp runaway values.

    Duplicate ids and oversize lists are errors; overlap and gain are clamped
    to their limits with a logged warning.
    """

    if len(tracks) > MAX_TRACKS:
        raise ValueError(f"too many tracks: {len(tracks)} > {MAX_TRACKS}")

    seen: set[str] = set()
    out: list[Track] = []
    for t in tracks:
        if t.id in seen:
            raise ValueError(f"duplicate track id: {t.id}")
        seen.add(t.id)

        if t.start_time is not None and t.start_time > MAX_TIMELINE_SECONDS:
            raise ValueError(f"track {t.id} starts beyond {MAX_TIMELINE_SECONDS:.0f}s")

        changes: dict[str, Any] = {}
        if t.overlap > MAX_OVERLAP_SECONDS:
            log.warning("track %s: overlap %.1fs clamped to %.1fs", t.id, t.overlap, MAX_OVERLAP_SECONDS)
            changes["overlap"] = MAX_OVERLAP_SECONDS
        if t.gain is not None and t.gain > MAX_GAIN:
            log.warning("track %s: gain %.2f clamped to %.2f", t.id, t.gain, MAX_GAIN)
            changes["gain"] = clamp(t.gain, 0.0, MAX_GAIN)
        out.append(replace(t, **changes) if changes else t)
    return out


def check_timeline(timeline: Timeline) -> Timeline:
    if timeline.total_duration > MAX_TIMELINE_SECONDS:
        raise ValueError(
            f"timeline is {timeline.total_duration:.1f}s long; limit is {MAX_TIMELINE_SECONDS:.0f}s"
        )
    return timeline
