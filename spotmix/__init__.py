"""spotmix: timeline resolution and loudness-normalized mixdown for short-form audio ads.

Core pipeline:
- load_tracks(path) -> list[Track]
- resolve_timeline(tracks, durations=...) -> Timeline
- run_mixdown(tracks, cfg=...) -> MixdownResult (WAV bytes, timeline, loudness report)
"""

__version__ = "0.3.0"
