"""
Validation orchestrator: re-check stored application links and write the
verdicts back.

  - candidates: never-checked first, then the oldest check
  - global pool of max_concurrent_checks workers
  - per-host throttle: at most per_host_concurrency in flight per host and
    per_host_interval_sec between request starts to the same host
  - deadline: queued checks are cancelled and counted as errors
"""

from __future__ import annotations

import contextlib
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from . import logging_bridge
from .config import ValidationSettings
from .db import PostingStore
from .linkcheck import LinkValidator
from .models import LinkStatus, StoredPosting, ValidationRecord, ValidationResult, ValidationRun
from .utils import host_of, to_iso

NETWORK_RULES = frozenset({"network_error", "network_error_escalated"})


class HostThrottle:
    """Per-host BoundedSemaphore plus minimum spacing between request starts."""

    def __init__(
        self,
        per_host_concurrency: int = 2,
        min_interval_sec: float = 0.5,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.per_host_concurrency = per_host_concurrency
        self.min_interval_sec = float(min_interval_sec)
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._semaphores: dict[str, threading.BoundedSemaphore] = {}
        self._next_start: dict[str, float] = {}

    @contextlib.contextmanager
    def slot(self, host: str) -> Iterator[None]:
        sem = self._semaphore(host)
        sem.acquire()
        try:
            self._wait_turn(host)
            yield
        finally:
            sem.release()

    def _semaphore(self, host: str) -> threading.BoundedSemaphore:
        with self._lock:
            sem = self._semaphores.get(host)
            if sem is None:
                sem = threading.BoundedSemaphore(self.per_host_concurrency)
                self._semaphores[host] = sem
            return sem

    def _wait_turn(self, host: str) -> None:
        # Reserve the next start slot under the lock, sleep outside it
        with self._lock:
            now = self._clock()
            start = max(now, self._next_start.get(host, now))
            self._next_start[host] = start + self.min_interval_sec
        if start > now:
            self._sleep(start - now)


def apply_failure_policy(record: ValidationRecord, posting: StoredPosting, threshold: int) -> ValidationRecord:
    """
    Escalate a network-error verdict to dead once the posting has failed
    `threshold` consecutive checks (this one included). threshold 0 disables.
    """
    if threshold <= 0 or record.rule != "network_error":
        return record
    failures = posting.validation_network_failures + 1
    if failures < threshold:
        return record
    return replace(
        record,
        status=LinkStatus.DEAD,
        confidence_score=0.6,
        reason=f"{failures} consecutive network failures; last: {record.reason}",
        rule="network_error_escalated",
    )


def run_validation(
    settings: ValidationSettings,
    store: PostingStore | None = None,
    *,
    validator: LinkValidator | None = None,
    throttle: HostThrottle | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ValidationRun:
    """
    Run one validation sweep.

    Per-item failures never abort the run; they are counted in `errors`.
    Only ConfigurationError (from settings.validate) propagates.
    """
    settings.validate()
    started = clock()
    deadline = started + settings.deadline_sec if settings.deadline_sec else None

    store = store or PostingStore(settings.sqlite_path)
    stale_before = None
    if settings.stale_after_hours:
        stale_before = to_iso(datetime.now(timezone.utc) - timedelta(hours=settings.stale_after_hours))
    candidates = store.select_validation_candidates(
        limit=settings.limit,
        include_inactive=settings.include_inactive,
        stale_before=stale_before,
    )

    own_validator = validator is None
    if validator is None:
        validator = LinkValidator(
            max_hops=settings.max_hops,
            attempts=settings.attempts,
            timeout_sec=settings.timeout_sec,
            backoff_factor=settings.backoff_factor,
            scan_content=settings.scan_content,
        )
    throttle = throttle or HostThrottle(settings.per_host_concurrency, settings.per_host_interval_sec)
    run = ValidationRun(total=len(candidates))

    logging_bridge.activity({
        "component": "internships.validation",
        "op": "start",
        "candidates": len(candidates),
        "update_store": settings.update_store,
        "deadline_sec": settings.deadline_sec,
    })

    def _check(posting: StoredPosting) -> ValidationResult:
        url = posting.application_url
        with throttle.slot(host_of(url)):
            t0 = clock()
            record = validator.validate(url, deadline=deadline)
            elapsed_ms = int((clock() - t0) * 1000)
        record = apply_failure_policy(record, posting, settings.dead_after_network_failures)
        return ValidationResult(
            posting_id=posting.id,
            url=url,
            record=record,
            validation_ms=elapsed_ms,
            title=posting.title,
            company=posting.company_name,
        )

    pool = ThreadPoolExecutor(
        max_workers=min(len(candidates) or 1, settings.max_concurrent_checks),
        thread_name_prefix="validate",
    )
    futures: dict[Future, StoredPosting] = {pool.submit(_check, p): p for p in candidates}
    finished: set[int] = set()
    timed_out = False
    try:
        for fut in as_completed(futures, timeout=_remaining(deadline, clock)):
            posting = futures[fut]
            finished.add(posting.id)
            try:
                result = fut.result()
            except Exception as e:
                run.errors += 1
                run.results.append(_failed(posting, repr(e)))
                logging_bridge.error({
                    "component": "internships.validation",
                    "op": "check",
                    "posting_id": posting.id,
                    "url": posting.application_url,
                    "error": repr(e),
                })
                continue

            record = result.record
            run.count(record.status)
            if settings.update_store:
                try:
                    store.write_validation(posting.id, record, network_failure=record.rule in NETWORK_RULES)
                    run.updated += 1
                except sqlite3.Error as e:
                    run.errors += 1
                    result = replace(result, error=f"store write failed: {e!r}")
            run.results.append(result)
    except FuturesTimeoutError:
        timed_out = True
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
        if own_validator:
            if timed_out:
                _close_when_idle(pool, validator)
            else:
                validator.close()

    for posting in candidates:
        if posting.id not in finished:
            run.errors += 1
            run.results.append(_failed(posting, "not checked before the run deadline"))

    run.execution_time_ms = int((clock() - started) * 1000)
    summary = run.to_summary()
    summary.pop("results")
    logging_bridge.activity({"component": "internships.validation", "op": "summary", **summary})
    return run


def _failed(posting: StoredPosting, message: str) -> ValidationResult:
    return ValidationResult(
        posting_id=posting.id,
        url=posting.application_url,
        record=None,
        validation_ms=0,
        error=message,
        title=posting.title,
        company=posting.company_name,
    )


def _remaining(deadline: float | None, clock: Callable[[], float]) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - clock())


def _close_when_idle(pool: ThreadPoolExecutor, validator: LinkValidator) -> None:
    """Checks abandoned at the deadline still hold the session; close it once they return."""

    def _drain() -> None:
        pool.shutdown(wait=True)
        validator.close()

    threading.Thread(target=_drain, name="validate-close", daemon=True).start()
