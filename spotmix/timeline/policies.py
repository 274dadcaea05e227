from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PlacementPolicy:
    """Tunable heuristics used by the timeline resolver.

    - sting_lead_seconds: the last untimed sound effect lands this long before
      the final voice track ends.
    - music_tail_seconds: the music bed runs this long past the last voice.
    - spread_untimed: distribute two or more untimed sound effects across the
      voice span; when off they all start with the span.
    """

    sting_lead_seconds: float = 0.5
    music_tail_seconds: float = 3.0
    spread_untimed: bool = True

    def __post_init__(self) -> None:
        if self.sting_lead_seconds < 0:
            raise ValueError("sting_lead_seconds must be >= 0")
        if self.music_tail_seconds < 0:
            raise ValueError("music_tail_seconds must be >= 0")

    def sting_start(self, final_voice_end: float) -> float:
        return max(0.0, final_voice_end - self.sting_lead_seconds)

    def music_duration(self, duration: float, last_voice_end: float | None) -> float:
        if last_voice_end is None:
            return duration
        return min(duration, last_voice_end + self.music_tail_seconds)

    def spread_start(self, ordinal: int, count: int, span_start: float, span_end: float) -> float:
        """Start of the ordinal-th of count untimed effects spread over a span."""
        if count <= 0 or not self.spread_untimed:
            return span_start
        span = max(0.0, span_end - span_start)
        return span_start + span * (ordinal / float(count))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sting_lead_seconds": self.sting_lead_seconds,
            "music_tail_seconds": self.music_tail_seconds,
            "spread_untimed": self.spread_untimed,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "PlacementPolicy":
        base = PlacementPolicy()
        return PlacementPolicy(
            sting_lead_seconds=float(d.get("sting_lead_seconds", base.sting_lead_seconds)),
            music_tail_seconds=float(d.get("music_tail_seconds", base.music_tail_seconds)),
            spread_untimed=bool(d.get("spread_untimed", base.spread_untimed)),
        )
