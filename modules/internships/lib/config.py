from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigurationError
from .utils import as_str_list, truthy

DEFAULT_SQLITE_PATH = "/app/local/state/internships.db"


def _default_sqlite_path() -> str:
    return os.getenv("INTERNSHIPS_SQLITE_PATH") or DEFAULT_SQLITE_PATH


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class SourceConfig:
    """
    One configured provider.
    - kind: adapter family ("exa", "greenhouse", "lever", "github_listings", "stub")
    - source: human-stable label used in summaries & the DB (e.g. "greenhouse:stripe")
    - params: adapter-specific dict (boards, sites, api_key_env, ...)
    """

    kind: str
    source: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class IngestionSettings:
    """
    Canonical configuration for one ingestion run.

    Sources come from an inline `sources` list or a `sources_path` JSON file;
    both use the shape [{"kind": "...", "source": "...", "params": {...}}, ...].
    """

    sources: list[SourceConfig] = field(default_factory=list)
    sqlite_path: str = field(default_factory=_default_sqlite_path)

    # Invocation surface
    companies: tuple[str, ...] = ()
    max_results: int = 50
    include_programs: bool = False
    dry_run: bool = False
    skip_duplicates: bool = False
    batch_size: int = 50

    # Runtime behavior
    max_concurrent_sources: int = 4
    deadline_sec: float | None = None
    breaker_failure_threshold: int = 5
    breaker_cooldown_sec: float = 300.0
    http_timeout_sec: float = 15.0

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> IngestionSettings:
        """
        Build settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            sources: list[dict]   # or
            sources_path: str     # one of the two is REQUIRED
            sqlite_path: str = $INTERNSHIPS_SQLITE_PATH or /app/local/state/internships.db
            companies: list[str] | "a,b"
            max_results: int = 50
            include_programs: bool = false
            dry_run: bool = false
            skip_duplicates: bool = false
            batch_size: int = 50
            max_concurrent_sources: int = 4
            deadline_sec: float | null
            breaker_failure_threshold: int = 5
            breaker_cooldown_sec: float = 300
            http_timeout_sec: float = 15
        """
        kw = dict(kwargs or {})

        sources = _load_sources(kw.get("sources"), kw.get("sources_path"))

        settings = cls(
            sources=sources,
            sqlite_path=str(kw.get("sqlite_path") or _default_sqlite_path()),
            companies=tuple(as_str_list(kw.get("companies"))),
            max_results=_as_int(kw, "max_results", 50),
            include_programs=truthy(kw.get("include_programs")),
            dry_run=truthy(kw.get("dry_run")),
            skip_duplicates=truthy(kw.get("skip_duplicates")),
            batch_size=_as_int(kw, "batch_size", 50),
            max_concurrent_sources=_as_int(kw, "max_concurrent_sources", 4),
            deadline_sec=_as_float_or_none(kw, "deadline_sec"),
            breaker_failure_threshold=_as_int(kw, "breaker_failure_threshold", 5),
            breaker_cooldown_sec=_as_float(kw, "breaker_cooldown_sec", 300.0),
            http_timeout_sec=_as_float(kw, "http_timeout_sec", 15.0),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError on anything the orchestrator cannot run with."""
        if self.batch_size <= 0:
            raise ConfigurationError(f"'batch_size' must be >= 1 (got {self.batch_size}).")
        if self.max_results <= 0:
            raise ConfigurationError(f"'max_results' must be >= 1 (got {self.max_results}).")
        if self.max_concurrent_sources <= 0:
            raise ConfigurationError("'max_concurrent_sources' must be >= 1.")
        if self.breaker_failure_threshold <= 0:
            raise ConfigurationError("'breaker_failure_threshold' must be >= 1.")
        if self.breaker_cooldown_sec < 0:
            raise ConfigurationError("'breaker_cooldown_sec' must be >= 0.")
        if self.http_timeout_sec <= 0:
            raise ConfigurationError("'http_timeout_sec' must be > 0.")
        if self.deadline_sec is not None and self.deadline_sec <= 0:
            raise ConfigurationError("'deadline_sec' must be > 0 when provided.")
        if not self.sqlite_path.strip():
            raise ConfigurationError("'sqlite_path' cannot be empty.")
        if not self.sources:
            raise ConfigurationError("No sources configured; provide 'sources' or 'sources_path'.")
        labels = [s.source for s in self.sources]
        dupes = sorted({x for x in labels if labels.count(x) > 1})
        if dupes:
            raise ConfigurationError(f"Duplicate source labels: {dupes}")


@dataclass
class ValidationSettings:
    """Canonical configuration for one validation sweep."""

    sqlite_path: str = field(default_factory=_default_sqlite_path)
    limit: int | None = None
    update_store: bool = True
    include_inactive: bool = False
    stale_after_hours: float | None = None

    max_concurrent_checks: int = 10
    per_host_concurrency: int = 2
    per_host_interval_sec: float = 0.5

    timeout_sec: float = 10.0
    attempts: int = 3
    max_hops: int = 5
    backoff_factor: float = 0.5
    scan_content: bool = True
    deadline_sec: float | None = None

    # 0 keeps postings with network failures at maybe_valid forever
    dead_after_network_failures: int = 0

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> ValidationSettings:
        """
        Expected kwargs (all optional):

            sqlite_path: str
            limit: int | null                # cap on postings checked this sweep
            update_store: bool = true
            include_inactive: bool = false
            stale_after_hours: float | null  # only re-check rows older than this
            max_concurrent_checks: int = 10
            per_host_concurrency: int = 2
            per_host_interval_sec: float = 0.5
            timeout_sec: float = 10
            attempts: int = 3
            max_hops: int = 5
            backoff_factor: float = 0.5
            scan_content: bool = true   # visible-text scan of 2xx pages
            deadline_sec: float | null
            dead_after_network_failures: int = 0
        """
        kw = dict(kwargs or {})
        limit = kw.get("limit")
        settings = cls(
            sqlite_path=str(kw.get("sqlite_path") or _default_sqlite_path()),
            limit=None if limit in (None, "") else _as_int(kw, "limit", 0),
            update_store=truthy(kw["update_store"]) if "update_store" in kw else True,
            include_inactive=truthy(kw.get("include_inactive")),
            stale_after_hours=_as_float_or_none(kw, "stale_after_hours"),
            max_concurrent_checks=_as_int(kw, "max_concurrent_checks", 10),
            per_host_concurrency=_as_int(kw, "per_host_concurrency", 2),
            per_host_interval_sec=_as_float(kw, "per_host_interval_sec", 0.5),
            timeout_sec=_as_float(kw, "timeout_sec", 10.0),
            attempts=_as_int(kw, "attempts", 3),
            max_hops=_as_int(kw, "max_hops", 5),
            backoff_factor=_as_float(kw, "backoff_factor", 0.5),
            scan_content=truthy(kw["scan_content"]) if "scan_content" in kw else True,
            deadline_sec=_as_float_or_none(kw, "deadline_sec"),
            dead_after_network_failures=_as_int(kw, "dead_after_network_failures", 0),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.limit is not None and self.limit <= 0:
            raise ConfigurationError(f"'limit' must be >= 1 when provided (got {self.limit}).")
        if self.max_concurrent_checks <= 0:
            raise ConfigurationError("'max_concurrent_checks' must be >= 1.")
        if self.per_host_concurrency <= 0:
            raise ConfigurationError("'per_host_concurrency' must be >= 1.")
        if self.per_host_interval_sec < 0:
            raise ConfigurationError("'per_host_interval_sec' must be >= 0.")
        if self.attempts <= 0:
            raise ConfigurationError("'attempts' must be >= 1.")
        if self.max_hops <= 0:
            raise ConfigurationError("'max_hops' must be >= 1.")
        if self.timeout_sec <= 0:
            raise ConfigurationError("'timeout_sec' must be > 0.")
        if self.backoff_factor < 0:
            raise ConfigurationError("'backoff_factor' must be >= 0.")
        if self.deadline_sec is not None and self.deadline_sec <= 0:
            raise ConfigurationError("'deadline_sec' must be > 0 when provided.")
        if self.dead_after_network_failures < 0:
            raise ConfigurationError("'dead_after_network_failures' must be >= 0.")
        if not self.sqlite_path.strip():
            raise ConfigurationError("'sqlite_path' cannot be empty.")


# -----------------------------
# Helpers
# -----------------------------
def _load_sources(inline: Any, path: Any) -> list[SourceConfig]:
    if isinstance(inline, str) and inline.strip():
        try:
            inline = json.loads(inline)
        except json.JSONDecodeError as e:
            raise ConfigurationError("'sources' string is not valid JSON.") from e
    if inline:
        return parse_sources_list(inline)
    path = str(path or "").strip()
    if not path:
        return []
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"sources file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"sources file is invalid JSON: {path}") from e
    return parse_sources_list(data)


def parse_sources_list(value: Any) -> list[SourceConfig]:
    """
    Parse a flat list into SourceConfig objects.
    Accepts: [{"kind": "...", "source": "...", "params": {...}}, ...]
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigurationError("Expected a list of source objects.")
    out: list[SourceConfig] = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigurationError(f"Source[{i}] must be an object.")
        kind = item.get("kind")
        source = item.get("source") or (f"{kind}:default" if kind else None)
        params = item.get("params") or {}
        if not kind or not source:
            raise ConfigurationError(f"Source[{i}] requires 'kind'.")
        if not isinstance(params, dict):
            raise ConfigurationError(f"Source[{i}].params must be an object.")
        out.append(SourceConfig(kind=str(kind).strip().lower(), source=str(source), params=dict(params)))
    return out


def _as_int(kw: Mapping[str, Any], key: str, default: int) -> int:
    v = kw.get(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"'{key}' must be an integer (got {v!r}).") from err


def _as_float_or_none(kw: Mapping[str, Any], key: str) -> float | None:
    v = kw.get(key)
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"'{key}' must be a number (got {v!r}).") from err


def _as_float(kw: Mapping[str, Any], key: str, default: float) -> float:
    v = _as_float_or_none(kw, key)
    return default if v is None else v
