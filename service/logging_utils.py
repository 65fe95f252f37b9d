# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

# ---- Configuration (env-driven, read per write so tests can repoint LOG_DIR) ----
#
#   LOG_DIR                 base directory (default /app/local/logs)
#   ACTIVITY_LOG_PREFIX     default "activity"
#   ERROR_LOG_PREFIX        default "error"
#   ACTIVITY_LOG_MAX_BYTES  size-based rotation; <=0 disables (date rotation is always on)

# Case-insensitive substring match against dict keys
DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "api-key",
    "secret",
    "authorization",
    "cookie",
    "set-cookie",
})

REDACTED = "***REDACTED***"

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Persist a single structured activity record (JSON-safe) as one JSONL line.
    Never mutates the passed-in dict. May raise OSError/TypeError on
    unrecoverable I/O or serialization problems.
    """
    _write_jsonl(_log_path_for_today(_prefix("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Persist a single structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(_prefix("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    """Return the current day's activity log path (<prefix>-YYYY-MM-DD.jsonl)."""
    return _log_path_for_today(_prefix("ACTIVITY_LOG_PREFIX", "activity"))


def get_error_log_path() -> str:
    return _log_path_for_today(_prefix("ERROR_LOG_PREFIX", "error"))


def read_records(path: str) -> list[dict[str, Any]]:
    """Load every JSON line of a log file; missing file -> []."""
    out: list[dict[str, Any]] = []
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    out.append(json.loads(line))
    except FileNotFoundError:
        return []
    return out


def redact(record: dict[str, Any], keys: Iterable[str] | None = None) -> dict[str, Any]:
    """
    Produce a redacted deep copy of `record` by scrubbing values whose KEYS
    contain any of the substrings in `keys` (case-insensitive). Does not mutate input.
    """
    return _redact_deep(record, [k.lower() for k in (keys or DEFAULT_REDACT_KEYS)])


# ---- Internal helpers --------------------------------------------------------


def _prefix(env_name: str, default: str) -> str:
    return os.getenv(env_name) or default


def _log_dir() -> str:
    return os.getenv("LOG_DIR", "/app/local/logs")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _log_path_for_today(prefix: str) -> str:
    today = _dt.date.today().isoformat()
    return os.path.join(_log_dir(), f"{prefix}-{today}.jsonl")


def _rotate_file_if_needed(path: str) -> None:
    """Move the current file aside once it exceeds ACTIVITY_LOG_MAX_BYTES."""
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    ts = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{ts}")


def _scrub_bearer(value: str) -> str:
    """'Bearer abc123' -> 'Bearer ***REDACTED***' (scheme kept for usefulness)."""
    if "bearer " not in value.lower():
        return value
    scheme, _, _rest = value.partition(" ")
    return f"{scheme} {REDACTED}"


def _redact_deep(value: Any, patterns: list[str]) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and any(p in k.lower() for p in patterns):
                out[k] = REDACTED
            else:
                out[k] = _redact_deep(v, patterns)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Core writer:
      - deep redacted copy + host/pid metadata
      - optional size rotation (date rotation comes from the filename)
      - single O_APPEND write, retried once on a transient OSError
    """
    payload = _redact_deep(record, list(DEFAULT_REDACT_KEYS))
    payload["_meta"] = {"host": _HOSTNAME, "pid": _PID}
    # default=str keeps enums/datetimes from killing a log line
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    def _append_once() -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _rotate_file_if_needed(path)
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append_once()
    except OSError:
        _append_once()
