"""
Ingestion orchestrator: fetch every configured source in parallel, then
canonicalize and reconcile what comes back.

Features:
  - One worker per source (bounded by max_concurrent_sources)
  - Per-source circuit breaker (fresh board per run unless one is passed in)
  - Batched normalize + reconcile on the calling thread
  - Run deadline: unfinished sources and unreconciled postings become errors
  - Dependency injection for testability (`get_source`, `store`, `breakers`, `clock`)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError

from . import logging_bridge
from .breaker import BreakerBoard
from .canonical import normalize
from .config import IngestionSettings, SourceConfig
from .db import PostingStore
from .errors import CircuitOpenError, NormalizationError, ReconciliationError, SourceError
from .models import FetchQuery, FetchResult, IngestionRun, NormalizedPosting, RawPosting, RunError, SourceRun
from .sources.base import BaseSource
from .upsert import reconcile

SourceFactory = Callable[[str], type[BaseSource]]


# =============================================================================
# DEFAULT SOURCE LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_source(kind: str) -> type[BaseSource]:
    """Resolve an adapter class from the registry (importing the package registers them all)."""
    from .sources import get as get_source_class

    return get_source_class(kind)


def _fetch_failed(result: FetchResult) -> bool:
    """Breaker failure: errors reported and nothing fetched."""
    return bool(result.errors) and not result.postings


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_ingestion(
    settings: IngestionSettings,
    store: PostingStore | None = None,
    *,
    get_source: SourceFactory | None = None,
    breakers: BreakerBoard | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> IngestionRun:
    """
    Run one ingestion pass.

    Args:
        settings: validated again here; ConfigurationError is the only error that escapes.
        store: repository to reconcile into (default: PostingStore(settings.sqlite_path)).
        get_source: kind -> adapter class override (tests).
        breakers: long-lived BreakerBoard; a fresh one is used per run otherwise.
        clock: monotonic clock used for the run deadline and durations.

    Returns:
        IngestionRun with counters, per-source stats and every per-item error.
    """
    settings.validate()
    started = clock()
    deadline = started + settings.deadline_sec if settings.deadline_sec else None

    store = store or PostingStore(settings.sqlite_path)
    get_source_func = get_source or _default_get_source
    board = breakers or BreakerBoard(settings.breaker_failure_threshold, settings.breaker_cooldown_sec, clock)

    run = IngestionRun(dry_run=settings.dry_run)
    run.sources = {cfg.source: SourceRun(source=cfg.source) for cfg in settings.sources}
    query = FetchQuery(
        companies=tuple(settings.companies),
        max_results=settings.max_results,
        include_programs=settings.include_programs,
        deadline=deadline,
    )

    logging_bridge.activity({
        "component": "internships.ingest",
        "op": "start",
        "sources": [cfg.source for cfg in settings.sources],
        "companies": list(settings.companies),
        "dry_run": settings.dry_run,
        "skip_duplicates": settings.skip_duplicates,
        "deadline_sec": settings.deadline_sec,
    })

    # -------------------------------------------------------------------------
    # INNER: run one source behind its breaker (worker thread)
    # -------------------------------------------------------------------------
    def _run_source(cfg: SourceConfig) -> tuple[FetchResult, int, bool]:
        t0 = clock()
        breaker = board.get(cfg.source)
        short_circuited = False
        adapter: BaseSource | None = None
        try:
            adapter = get_source_func(cfg.kind)(cfg, timeout=settings.http_timeout_sec)
            result = breaker.call(adapter.fetch, query, is_failure=_fetch_failed)
        except CircuitOpenError:
            short_circuited = True
            result = FetchResult(source=cfg.source, errors=[SourceError(cfg.source, "circuit open")])
        except Exception as e:
            result = FetchResult(source=cfg.source, errors=[SourceError(cfg.source, repr(e))])
        finally:
            if adapter is not None:
                adapter.close()
        return result, int((clock() - t0) * 1000), short_circuited

    # -------------------------------------------------------------------------
    # EXECUTE SOURCES IN PARALLEL; PROCESS EACH AS IT COMPLETES
    # -------------------------------------------------------------------------
    pool = ThreadPoolExecutor(
        max_workers=min(len(settings.sources), settings.max_concurrent_sources),
        thread_name_prefix="ingest",
    )
    futures: dict[Future, SourceConfig] = {pool.submit(_run_source, cfg): cfg for cfg in settings.sources}
    finished: set[str] = set()
    # Dry run: hash -> posting already decided this run, so repeats preview like the real run
    preview: dict[str, NormalizedPosting] | None = {} if settings.dry_run else None
    try:
        for fut in as_completed(futures, timeout=_remaining(deadline, clock)):
            cfg = futures[fut]
            finished.add(cfg.source)
            result, duration_ms, short_circuited = _outcome(fut, cfg)
            _record_source(run, cfg, result, duration_ms, short_circuited)
            _process_postings(run, store, settings, result.postings, cfg.source, deadline, clock, preview)
    except FuturesTimeoutError:
        # Sources that finished fetching while the last one was reconciled still count
        for fut, cfg in futures.items():
            if cfg.source in finished or not fut.done() or fut.cancelled():
                continue
            finished.add(cfg.source)
            result, duration_ms, short_circuited = _outcome(fut, cfg)
            _record_source(run, cfg, result, duration_ms, short_circuited)
            _expire_postings(run, result.postings, cfg.source)
    finally:
        # Never block on a hung provider; queued sources are dropped
        pool.shutdown(wait=False, cancel_futures=True)

    for cfg in settings.sources:
        if cfg.source not in finished:
            message = "source did not finish before the run deadline"
            run.errors.append(RunError("deadline", cfg.source, message))
            logging_bridge.error({
                "component": "internships.ingest",
                "op": "source_deadline",
                "source": cfg.source,
                "kind": cfg.kind,
                "error": message,
            })

    run.execution_time_ms = int((clock() - started) * 1000)

    # -------------------------------------------------------------------------
    # SUMMARY LOG (always emitted)
    # -------------------------------------------------------------------------
    summary = run.to_summary()
    logging_bridge.activity({
        "component": "internships.ingest",
        "op": "summary",
        **{k: summary[k] for k in ("fetched", "normalized", "inserted", "updated", "skipped", "errors", "dry_run")},
        "execution_time_ms": run.execution_time_ms,
        "fetched_by_source": {name: s.fetched for name, s in run.sources.items()},
        "breakers": board.snapshot(),
    })
    return run


# =============================================================================
# HELPERS
# =============================================================================
def _remaining(deadline: float | None, clock: Callable[[], float]) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - clock())


def _outcome(fut: Future, cfg: SourceConfig) -> tuple[FetchResult, int, bool]:
    try:
        return fut.result()
    except Exception as e:
        return FetchResult(source=cfg.source, errors=[SourceError(cfg.source, repr(e))]), 0, False


def _record_source(
    run: IngestionRun,
    cfg: SourceConfig,
    result: FetchResult,
    duration_ms: int,
    short_circuited: bool,
) -> None:
    stats = run.sources[cfg.source]
    stats.fetched = len(result.postings)
    stats.errors = [str(e) for e in result.errors]
    stats.duration_ms = duration_ms
    stats.short_circuited = short_circuited
    stats.completed = True
    run.fetched += len(result.postings)

    for err in result.errors:
        run.errors.append(RunError("source", cfg.source, err.cause))
    if result.errors:
        logging_bridge.error({
            "component": "internships.ingest",
            "op": "source_errors",
            "source": cfg.source,
            "kind": cfg.kind,
            "short_circuited": short_circuited,
            "errors": stats.errors,
        })


def _process_postings(
    run: IngestionRun,
    store: PostingStore,
    settings: IngestionSettings,
    postings: list[RawPosting],
    source: str,
    deadline: float | None,
    clock: Callable[[], float],
    preview: dict[str, NormalizedPosting] | None = None,
) -> None:
    """Normalize + reconcile in batches; once the deadline passes, the rest become errors."""
    for start in range(0, len(postings), settings.batch_size):
        batch = postings[start:start + settings.batch_size]
        if deadline is not None and clock() >= deadline:
            _expire_postings(run, postings[start:], source)
            return

        for raw in batch:
            try:
                posting = normalize(raw)
            except NormalizationError as e:
                run.errors.append(RunError("normalize", source, str(e)))
                continue
            run.normalized += 1

            try:
                decision = reconcile(
                    store,
                    posting,
                    dry_run=settings.dry_run,
                    skip_duplicates=settings.skip_duplicates,
                    seen=preview,
                )
            except ReconciliationError as e:
                run.errors.append(RunError("reconcile", source, str(e), e.content_hash))
                continue
            run.count(decision)


def _expire_postings(run: IngestionRun, postings: list[RawPosting], source: str) -> None:
    for raw in postings:
        run.errors.append(RunError("deadline", source, f"not reconciled before the run deadline: {raw.url}"))
