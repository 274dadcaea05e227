from __future__ import annotations

import logging

from spotmix.model.types import PLAY_AFTER_START, PlacementIntent, ResolvedTrack

log = logging.getLogger(__name__)

# Hints understood by the resolver in addition to "start"/"previous"/track ids.
WITH_FIRST_VOICE = "with-first-voice"
AFTER_LAST_VOICE = "after-last-voice"


def resolve_intent(intent: PlacementIntent, voices: list[ResolvedTrack]) -> str | None:
    """Map a structured placement intent to a play_after style hint.

    voices are the placed voice tracks in timeline order. Returns None when the
    intent carries no usable hint (legacy intent without a value).
    """

    if intent.type in {"beforeVoices", "start"}:
        return PLAY_AFTER_START

    if intent.type == "withFirstVoice":
        return WITH_FIRST_VOICE

    if intent.type == "end":
        return AFTER_LAST_VOICE

    if intent.type == "afterVoice":
        idx = int(intent.index or 0)
        if 0 <= idx < len(voices):
            return voices[idx].id
        # neighbouring voice before giving up
        for alt in (idx - 1, idx + 1):
            if 0 <= alt < len(voices):
                log.warning("voice #%d not found for afterVoice intent; using voice #%d", idx, alt)
                return voices[alt].id
        log.warning("voice #%d not found for afterVoice intent; placing after the last voice", idx)
        return AFTER_LAST_VOICE

    # legacy
    return intent.play_after or None
