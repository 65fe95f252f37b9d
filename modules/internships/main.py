from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from .lib.breaker import BreakerBoard
from .lib.config import IngestionSettings, ValidationSettings
from .lib.errors import ConfigurationError
from .lib.ingest import run_ingestion
from .lib.logging_bridge import activity as log_activity
from .lib.validation import run_validation

# One board per (threshold, cooldown) for the life of the process, so a provider
# that fails run after run is short-circuited by later scheduled runs.
_BOARDS: dict[tuple[int, float], BreakerBoard] = {}
_BOARDS_LOCK = threading.Lock()


def breaker_board(failure_threshold: int, cooldown_sec: float) -> BreakerBoard:
    with _BOARDS_LOCK:
        key = (failure_threshold, cooldown_sec)
        board = _BOARDS.get(key)
        if board is None:
            board = _BOARDS[key] = BreakerBoard(failure_threshold, cooldown_sec)
        return board


def reset_breakers() -> None:
    """Close every breaker and forget the boards (operator reset, tests)."""
    with _BOARDS_LOCK:
        for board in _BOARDS.values():
            board.reset()
        _BOARDS.clear()


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'internships' module (runner/scheduler).

    Kwargs:
      mode: "ingest" (default) | "validate"
      ...everything else is passed to ingest() / validate().

    Returns the run summary dict; the runner logs it as meta.
    """
    mode = str(kwargs.pop("mode", "ingest") or "ingest").strip().lower()
    if mode == "ingest":
        return ingest(**kwargs)
    if mode == "validate":
        return validate(**kwargs)
    raise ConfigurationError(f"Unknown internships mode: {mode!r} (expected 'ingest' or 'validate').")


def ingest(
    companies: Iterable[str] | str | None = None,
    max_results: int = 50,
    include_programs: bool = False,
    dry_run: bool = False,
    skip_duplicates: bool = False,
    batch_size: int = 50,
    breakers: BreakerBoard | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Fetch, canonicalize and reconcile postings from every configured source.

    Other kwargs (see IngestionSettings.from_env_and_kwargs): sources | sources_path,
    sqlite_path, max_concurrent_sources, deadline_sec, breaker_*, http_timeout_sec.

    breakers: caller-owned BreakerBoard; defaults to the process-wide board for
    the configured breaker_failure_threshold / breaker_cooldown_sec.

    Returns:
      {fetched, normalized, inserted, updated, skipped, errors, error_details,
       execution_time_ms, dry_run, sources, message}
    """
    settings = IngestionSettings.from_env_and_kwargs({
        **kwargs,
        "companies": list(companies) if companies and not isinstance(companies, str) else companies,
        "max_results": max_results,
        "include_programs": include_programs,
        "dry_run": dry_run,
        "skip_duplicates": skip_duplicates,
        "batch_size": batch_size,
    })

    log_activity({
        "component": "internships.main",
        "op": "ingest",
        "sources": [s.source for s in settings.sources],
        "sqlite_path": settings.sqlite_path,
    })

    board = breakers or breaker_board(settings.breaker_failure_threshold, settings.breaker_cooldown_sec)
    summary = run_ingestion(settings, breakers=board).to_summary()
    summary["message"] = (
        f"ingest: {summary['fetched']} fetched, {summary['inserted']} inserted, "
        f"{summary['updated']} updated, {summary['skipped']} skipped, {summary['errors']} errors"
    )
    return summary


def validate(limit: int | None = None, update_store: bool = True, **kwargs: Any) -> dict[str, Any]:
    """
    Re-check application links of stored postings.

    Other kwargs (see ValidationSettings.from_env_and_kwargs): sqlite_path,
    include_inactive, stale_after_hours, max_concurrent_checks, per_host_*,
    timeout_sec, attempts, max_hops, scan_content, deadline_sec, dead_after_network_failures.

    Returns:
      {total, valid, expired, dead, maybe_valid, updated, errors,
       average_validation_time_ms, execution_time_ms, results, message}
    """
    settings = ValidationSettings.from_env_and_kwargs({**kwargs, "limit": limit, "update_store": update_store})

    log_activity({
        "component": "internships.main",
        "op": "validate",
        "sqlite_path": settings.sqlite_path,
        "limit": settings.limit,
    })

    summary = run_validation(settings).to_summary()
    summary["message"] = (
        f"validate: {summary['total']} checked, {summary['valid']} ok, {summary['expired']} expired, "
        f"{summary['dead']} dead, {summary['maybe_valid']} maybe_valid, {summary['errors']} errors"
    )
    return summary
