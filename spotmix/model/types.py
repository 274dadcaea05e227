from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

KINDS = ("voice", "music", "soundfx")

# Linear gain applied when a track carries no explicit gain.
DEFAULT_GAINS: dict[str, float] = {
    "voice": 1.0,
    "music": 0.25,
    "soundfx": 0.7,
}

PLAY_AFTER_START = "start"
PLAY_AFTER_PREVIOUS = "previous"

INTENT_TYPES = ("beforeVoices", "withFirstVoice", "start", "afterVoice", "end", "legacy")

# Shortest span a resolved track may occupy (seconds).
MIN_TRACK_SECONDS = 0.001


def _opt_float(v: Any) -> float | None:
    if v is None or v == "":
        return None
    return float(v)


@dataclass(frozen=True)
class PlacementIntent:
    """Structured sound-effect placement chosen by the calling workflow.

    When set on a sound effect it takes precedence over the raw play_after hint.
    """

    type: str
    index: int | None = None
    play_after: str | None = None

    def __post_init__(self) -> None:
        if self.type not in INTENT_TYPES:
            raise ValueError(f"unknown placement intent: {self.type}")
        if self.type == "afterVoice" and (self.index is None or int(self.index) < 0):
            raise ValueError("afterVoice intent needs a non-negative index")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type}
        if self.index is not None:
            d["index"] = int(self.index)
        if self.play_after is not None:
            d["play_after"] = self.play_after
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "PlacementIntent":
        idx = d.get("index")
        pa = d.get("play_after", d.get("playAfter"))
        return PlacementIntent(
            type=str(d.get("type", "")).strip(),
            index=int(idx) if idx is not None else None,
            play_after=str(pa) if pa is not None else None,
        )


@dataclass(frozen=True)
class Track:
    """One input clip, as handed over by the calling workflow.

    start_time and duration are optional overrides in seconds. play_after is the
    literal "start"/"previous", another track's id, or a legacy label.
    """

    id: str
    kind: str
    source: str
    start_time: float | None = None
    duration: float | None = None
    play_after: str | None = None
    overlap: float = 0.0
    concurrent: bool = False
    group: str | None = None
    gain: float | None = None
    label: str | None = None
    placement: PlacementIntent | None = None

    def __post_init__(self) -> None:
        if not str(self.id).strip():
            raise ValueError("track id must be non-empty")
        if self.kind not in KINDS:
            raise ValueError(f"unknown track kind: {self.kind}")
        if not str(self.source).strip():
            raise ValueError(f"track {self.id} has no audio source")

        start = _opt_float(self.start_time)
        if start is not None and start < 0:
            raise ValueError(f"track {self.id}: start_time must be >= 0")
        dur = _opt_float(self.duration)
        if dur is not None and dur <= 0:
            raise ValueError(f"track {self.id}: duration must be > 0")
        overlap = float(self.overlap or 0.0)
        if overlap < 0:
            raise ValueError(f"track {self.id}: overlap must be >= 0")
        gain = _opt_float(self.gain)
        if gain is not None and gain < 0:
            raise ValueError(f"track {self.id}: gain must be >= 0")

        pa = self.play_after
        pa = str(pa).strip() if pa is not None else None
        group = str(self.group).strip() if self.group is not None else None

        object.__setattr__(self, "start_time", start)
        object.__setattr__(self, "duration", dur)
        object.__setattr__(self, "overlap", overlap)
        object.__setattr__(self, "gain", gain)
        object.__setattr__(self, "play_after", pa or None)
        object.__setattr__(self, "group", group or None)
        object.__setattr__(self, "concurrent", bool(self.concurrent))

    @property
    def grouped(self) -> bool:
        return self.concurrent and self.group is not None

    @property
    def effective_gain(self) -> float:
        return self.gain if self.gain is not None else DEFAULT_GAINS[self.kind]

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "kind": self.kind, "source": self.source}
        if self.label:
            d["label"] = self.label
        if self.start_time is not None:
            d["start_time"] = self.start_time
        if self.duration is not None:
            d["duration"] = self.duration
        if self.play_after is not None:
            d["play_after"] = self.play_after
        if self.overlap:
            d["overlap"] = self.overlap
        if self.concurrent:
            d["concurrent"] = True
        if self.group is not None:
            d["group"] = self.group
        if self.gain is not None:
            d["gain"] = self.gain
        if self.placement is not None:
            d["placement"] = self.placement.to_dict()
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Track":
        placement = d.get("placement")
        if d.get("id") in (None, ""):
            raise ValueError("track is missing 'id'")
        return Track(
            id=str(d["id"]),
            kind=str(d.get("kind", "")).strip().lower(),
            source=str(d.get("source", "")),
            start_time=_opt_float(d.get("start_time")),
            duration=_opt_float(d.get("duration")),
            play_after=d.get("play_after"),
            overlap=float(d.get("overlap", 0.0) or 0.0),
            concurrent=bool(d.get("concurrent", False)),
            group=d.get("group"),
            gain=_opt_float(d.get("gain")),
            label=(str(d["label"]) if d.get("label") else None),
            placement=PlacementIntent.from_dict(placement) if isinstance(placement, dict) else None,
        )


@dataclass(frozen=True)
class ResolvedTrack:
    track: Track
    start: float
    duration: float
    # name of the placement rule that positioned this track
    rule: str = ""
    # duration before any cap (measured or explicit)
    source_duration: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", max(0.0, float(self.start)))
        object.__setattr__(self, "duration", max(MIN_TRACK_SECONDS, float(self.duration)))

    @property
    def id(self) -> str:
        return self.track.id

    @property
    def kind(self) -> str:
        return self.track.kind

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def gain(self) -> float:
        return self.track.effective_gain

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "label": self.track.label,
            "source": self.track.source,
            "start": self.start,
            "duration": self.duration,
            "end": self.end,
            "gain": self.gain,
            "rule": self.rule,
        }


@dataclass(frozen=True)
class Timeline:
    tracks: tuple[ResolvedTrack, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def total_duration(self) -> float:
        return max((t.end for t in self.tracks), default=0.0)

    def by_id(self, track_id: str) -> ResolvedTrack | None:
        for t in self.tracks:
            if t.id == track_id:
                return t
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_duration": self.total_duration,
            "tracks": [t.to_dict() for t in self.tracks],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class LoudnessTarget:
    integrated_lufs: float = -16.0
    max_true_peak_dbtp: float = -2.0
    sample_rate: int = 44100
    channels: int = 2

    def __post_init__(self) -> None:
        if self.channels != 2:
            raise ValueError("only stereo output is supported")
        if int(self.sample_rate) <= 0:
            raise ValueError("sample_rate must be > 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "integrated_lufs": self.integrated_lufs,
            "max_true_peak_dbtp": self.max_true_peak_dbtp,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "LoudnessTarget":
        base = LoudnessTarget()
        return LoudnessTarget(
            integrated_lufs=float(d.get("integrated_lufs", base.integrated_lufs)),
            max_true_peak_dbtp=float(d.get("max_true_peak_dbtp", base.max_true_peak_dbtp)),
            sample_rate=int(d.get("sample_rate", base.sample_rate)),
            channels=int(d.get("channels", base.channels)),
        )


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    # float samples shaped (frames, channels), nominally in [-1, 1]
    samples: np.ndarray = field(repr=False)
    sample_rate: int

    def __post_init__(self) -> None:
        a = np.asarray(self.samples, dtype=np.float64)
        if a.ndim == 1:
            a = a.reshape(-1, 1)
        if a.ndim != 2:
            raise ValueError("samples must be shaped (frames, channels)")
        object.__setattr__(self, "samples", a)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)

    @staticmethod
    def silence(seconds: float, *, sample_rate: int, channels: int = 2) -> "SampleBuffer":
        n = max(0, int(round(seconds * sample_rate)))
        return SampleBuffer(np.zeros((n, channels), dtype=np.float64), sample_rate)
