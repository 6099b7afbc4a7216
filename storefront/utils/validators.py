from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def require_non_negative_number(v: float, name: str = "value") -> None:
    if v < 0:
        raise ValueError(f"{name} must be >= 0")


def require_text(v: Optional[str], name: str = "value", min_len: int = 1) -> str:
    t = (v or "").strip()
    if len(t) < min_len:
        if min_len == 1:
            raise ValueError(f"{name} is required")
        raise ValueError(f"{name} must be at least {min_len} characters")
    return t


def parse_number(text, name: str = "value") -> float:
    try:
        return float(str(text).strip().replace(",", "."))
    except ValueError:
        raise ValueError(f"{name} must be a number") from None


def parse_optional_int(text, name: str = "value") -> Optional[int]:
    if text is None or str(text).strip() == "":
        return None
    try:
        return int(str(text).strip())
    except ValueError:
        raise ValueError(f"{name} must be a whole number") from None


def parse_day(text, end_of_day: bool = False) -> datetime:
    """YYYY-MM-DD -> UTC datetime at the start (or the last instant) of that day."""
    if isinstance(text, datetime):
        return text if text.tzinfo else text.replace(tzinfo=timezone.utc)
    try:
        d = text if isinstance(text, date) else date.fromisoformat(str(text).strip()[:10])
    except ValueError:
        raise ValueError(f"bad date: {text!r}") from None
    return datetime.combine(d, time.max if end_of_day else time.min, tzinfo=timezone.utc)
