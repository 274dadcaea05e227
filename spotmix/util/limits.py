from __future__ import annotations

"""Hard limits to keep a single mixdown request bounded.

Ad spots run tens of seconds; these are generous ceilings, enforced when a
track list is validated.
"""

MAX_TRACKS = 64
MAX_TIMELINE_SECONDS = 600.0
MAX_OVERLAP_SECONDS = 30.0
MAX_GAIN = 16.0
