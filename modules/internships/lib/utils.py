from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(ts: Any) -> datetime | None:
    """Parse ISO-8601 (or epoch millis) to a timezone-aware UTC datetime; None if unparseable."""
    if ts is None or ts == "":
        return None
    if isinstance(ts, (int, float)):
        # Lever and a few feeds hand out epoch milliseconds
        seconds = ts / 1000.0 if ts > 10_000_000_000 else float(ts)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    s = str(ts).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    if "T" not in s and " " in s:
        s = s.replace(" ", "T", 1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def host_of(url: str) -> str:
    """Lowercased hostname without a leading 'www.'; '' when the URL has none."""
    host = (urlparse(url or "").hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def as_str_list(value: Any) -> list[str]:
    """Accept a list or a comma-separated string; drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(p).strip() for p in value if str(p).strip()]
    return [str(value).strip()] if str(value).strip() else []
