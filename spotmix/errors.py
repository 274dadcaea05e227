from __future__ import annotations


class MixdownError(RuntimeError):
    """Base class for failures that abort a mixdown request."""


class DecodeError(MixdownError):
    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message if source is None else f"{message} (source: {source})")
        self.source = source


class RenderError(MixdownError):
    pass
