from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from spotmix.errors import DecodeError
from spotmix.model.types import (
    PLAY_AFTER_PREVIOUS,
    PLAY_AFTER_START,
    ResolvedTrack,
    Timeline,
    Track,
)
from spotmix.timeline.intents import AFTER_LAST_VOICE, WITH_FIRST_VOICE, resolve_intent
from spotmix.timeline.policies import PlacementPolicy

log = logging.getLogger(__name__)

# Rule names recorded on each ResolvedTrack.
RULE_EXPLICIT = "explicit"
RULE_VOICE_FIRST = "voice-first"
RULE_VOICE_START = "voice-start"
RULE_VOICE_AFTER = "voice-after"
RULE_VOICE_CHAIN = "voice-chain"
RULE_GROUP = "group"
RULE_MUSIC_BED = "music-bed"
RULE_SFX_START = "sfx-start"
RULE_SFX_WITH_FIRST_VOICE = "sfx-with-first-voice"
RULE_SFX_AFTER = "sfx-after"
RULE_SFX_END = "sfx-end"
RULE_SFX_DANGLING = "sfx-dangling"
RULE_SFX_STING = "sfx-sting"
RULE_SFX_SPREAD = "sfx-spread"
RULE_SFX_UNTIMED = "sfx-untimed"
RULE_FALLBACK = "fallback"


def _after(ref: ResolvedTrack, overlap: float) -> float:
    # Pull into the reference's tail, never before the reference itself starts.
    return max(ref.start, ref.end - overlap)


class _Placement:
    """One resolution pass: an id -> ResolvedTrack map filled in fixed pass order."""

    def __init__(self, tracks: list[Track], durations: Mapping[str, float], policy: PlacementPolicy) -> None:
        self.tracks = tracks
        self.durations = durations
        self.policy = policy
        self.placed: dict[str, ResolvedTrack] = {}
        self.order: list[str] = []
        self.warnings: list[str] = []
        self._index = {t.id: i for i, t in enumerate(tracks)}
        self._measured: dict[str, float] = {}

    # ---------------------
    # bookkeeping
    # ---------------------
    def measured(self, source: str) -> float:
        if source not in self._measured:
            try:
                self._measured[source] = float(self.durations[source])
            except KeyError:
                raise DecodeError("no measured duration", source=source) from None
        return self._measured[source]

    def duration_of(self, t: Track) -> float:
        return t.duration if t.duration is not None else self.measured(t.source)

    def is_placed(self, t: Track) -> bool:
        return t.id in self.placed

    def place(self, t: Track, start: float, duration: float, rule: str, *, source_duration: float | None = None) -> ResolvedTrack:
        rt = ResolvedTrack(track=t, start=start, duration=duration, rule=rule, source_duration=source_duration)
        self.placed[t.id] = rt
        self.order.append(t.id)
        log.debug("placed %s (%s) at %.3fs for %.3fs via %s", t.id, t.kind, rt.start, rt.duration, rule)
        return rt

    def warn(self, msg: str) -> None:
        log.warning(msg)
        self.warnings.append(msg)

    def lookup(self, ref: str) -> ResolvedTrack | None:
        hit = self.placed.get(ref)
        if hit is not None:
            return hit
        # legacy: playAfter used to carry the track label
        key = ref.strip().lower()
        for tid in self.order:
            rt = self.placed[tid]
            if rt.track.label and rt.track.label.strip().lower() == key:
                return rt
        return None

    def latest_end(self) -> float | None:
        if not self.placed:
            return None
        return max(rt.end for rt in self.placed.values())

    def voices(self) -> list[ResolvedTrack]:
        vs = [self.placed[tid] for tid in self.order if self.placed[tid].kind == "voice"]
        return sorted(vs, key=lambda rt: (rt.start, self._index[rt.id]))

    def unplaced(self, kind: str | None = None) -> list[Track]:
        return [t for t in self.tracks if not self.is_placed(t) and (kind is None or t.kind == kind)]

    # ---------------------
    # passes
    # ---------------------
    def place_explicit(self) -> None:
        for t in self.tracks:
            if t.start_time is not None:
                self.place(t, t.start_time, self.duration_of(t), RULE_EXPLICIT)

    def place_voices(self) -> None:
        prev: ResolvedTrack | None = None
        for t in self.unplaced("voice"):
            if t.grouped:
                continue
            dur = self.duration_of(t)
            pa = t.play_after

            if prev is None:
                start, rule = 0.0, RULE_VOICE_FIRST
            elif pa == PLAY_AFTER_START:
                start, rule = 0.0, RULE_VOICE_START
            elif pa == PLAY_AFTER_PREVIOUS:
                start, rule = _after(prev, t.overlap), RULE_VOICE_AFTER
            elif pa:
                ref = self.lookup(pa)
                if ref is not None:
                    start, rule = _after(ref, t.overlap), RULE_VOICE_AFTER
                else:
                    self.warn(f"voice {t.id}: play_after {pa!r} not found; chaining after {prev.id}")
                    start, rule = prev.end, RULE_VOICE_CHAIN
            else:
                start, rule = prev.end, RULE_VOICE_CHAIN

            prev = self.place(t, start, dur, rule)

    def _group_start(self, first: Track) -> float:
        latest = self.latest_end()
        pa = first.play_after

        if pa == PLAY_AFTER_START:
            return 0.0
        if pa == PLAY_AFTER_PREVIOUS:
            return 0.0 if latest is None else max(0.0, latest - first.overlap)
        if pa:
            ref = self.lookup(pa)
            if ref is not None:
                return _after(ref, first.overlap)
            self.warn(f"group {first.group}: play_after {pa!r} not found; using default group placement")
        return 0.0 if latest is None else latest

    def place_groups(self) -> None:
        groups: dict[str, list[Track]] = {}
        for t in self.unplaced():
            if t.grouped:
                groups.setdefault(str(t.group), []).append(t)

        for members in groups.values():
            start = self._group_start(members[0])
            for t in members:
                self.place(t, start, self.duration_of(t), RULE_GROUP)

    def place_music(self) -> None:
        music = self.unplaced("music")
        if not music:
            return
        # Only the first music track is the bed; others fall through to the fallback.
        bed = music[0]
        dur = self.duration_of(bed)
        voices = self.voices()
        last_voice_end = max(v.end for v in voices) if voices else None
        self.place(bed, 0.0, self.policy.music_duration(dur, last_voice_end), RULE_MUSIC_BED, source_duration=dur)

    def _preceding(self, t: Track) -> ResolvedTrack | None:
        idx = self._index[t.id]
        if idx > 0:
            return self.placed.get(self.tracks[idx - 1].id)
        if self.order:
            return self.placed[self.order[-1]]
        return None

    def place_soundfx(self) -> None:
        sfx = self.unplaced("soundfx")
        if not sfx:
            return

        voices = self.voices()
        last_voice_end = max(v.end for v in voices) if voices else None

        hints: dict[str, str | None] = {}
        for t in sfx:
            hints[t.id] = resolve_intent(t.placement, voices) if t.placement is not None else t.play_after

        untimed = [t.id for t in sfx if hints[t.id] is None]
        if voices:
            span_start, span_end = voices[0].start, float(last_voice_end or 0.0)
        else:
            span_start, span_end = 0.0, float(self.latest_end() or 0.0)

        for t in sfx:
            hint = hints[t.id]
            dur = self.duration_of(t)

            if hint is None:
                k, n = untimed.index(t.id), len(untimed)
                if voices and k == n - 1:
                    self.place(t, self.policy.sting_start(float(last_voice_end or 0.0)), dur, RULE_SFX_STING)
                elif n >= 2:
                    self.place(t, self.policy.spread_start(k, n, span_start, span_end), dur, RULE_SFX_SPREAD)
                else:
                    self.place(t, 0.0, dur, RULE_SFX_UNTIMED)
                continue

            if hint == PLAY_AFTER_START:
                self.place(t, 0.0, dur, RULE_SFX_START)
                continue
            if hint == WITH_FIRST_VOICE:
                self.place(t, voices[0].start if voices else 0.0, dur, RULE_SFX_WITH_FIRST_VOICE)
                continue
            if hint == AFTER_LAST_VOICE:
                self.place(t, last_voice_end or 0.0, dur, RULE_SFX_END)
                continue

            ref = self._preceding(t) if hint == PLAY_AFTER_PREVIOUS else self.lookup(hint)
            if ref is None:
                self.warn(f"sound effect {t.id}: play_after {hint!r} not found; placing after the last voice")
                self.place(t, last_voice_end or 0.0, dur, RULE_SFX_DANGLING)
            else:
                self.place(t, _after(ref, t.overlap), dur, RULE_SFX_AFTER)

    def place_remaining(self) -> None:
        for t in self.unplaced():
            self.place(t, self.latest_end() or 0.0, self.duration_of(t), RULE_FALLBACK)


def resolve_timeline(
    tracks: Iterable[Track],
    *,
    durations: Mapping[str, float],
    policy: PlacementPolicy | None = None,
) -> Timeline:
    """Compute start/duration for every track.

    durations maps source references to measured seconds; it is consulted only
    for tracks without an explicit duration, once per source. Placement runs in
    strict priority: explicit starts, the voice chain, concurrent groups, the
    music bed, sound effects, then a fallback append for anything left.
    """

    track_list = list(tracks)
    ids = [t.id for t in track_list]
    if len(set(ids)) != len(ids):
        raise ValueError("track ids must be unique")

    p = _Placement(track_list, durations, policy or PlacementPolicy())
    p.place_explicit()
    p.place_voices()
    p.place_groups()
    p.place_music()
    p.place_soundfx()
    p.place_remaining()

    timeline = Timeline(tracks=tuple(p.placed[tid] for tid in p.order), warnings=tuple(p.warnings))
    log.debug("resolved %d tracks, total %.3fs", len(timeline.tracks), timeline.total_duration)
    return timeline
