from __future__ import annotations


def parse_seconds(value: str | int | float | None) -> float | None:
    """Parse a time value into seconds.

    Supported:
    - numbers (12, 12.5, "12.5")
    - minutes:seconds ("1:02.5")
    - hours:minutes:seconds ("0:01:02.5")
    - an optional trailing "s" ("2.5s")

    None and "" pass through as None.
    """

    if value is None:
        return None
    if isinstance(value, (int, float)):
        secs = float(value)
    else:
        s = str(value).strip().lower()
        if not s:
            return None
        if s.endswith("s"):
            s = s[:-1].strip()
        parts = s.split(":")
        if len(parts) > 3:
            raise ValueError(f"invalid timecode: {value}")
        try:
            nums = [float(p) for p in parts]
        except ValueError:
            raise ValueError(f"invalid timecode: {value}") from None
        if any(n < 0 for n in nums[:-1]):
            raise ValueError("timecode must be >= 0")
        secs = 0.0
        for n in nums:
            secs = secs * 60.0 + n
    if secs < 0:
        raise ValueError("timecode must be >= 0")
    return secs


def format_seconds(secs: float) -> str:
    """Format seconds as m:ss.mmm for logs and CLI output."""
    secs = max(0.0, float(secs))
    m = int(secs // 60)
    return f"{m}:{secs - m * 60:06.3f}"
