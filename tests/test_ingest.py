# tests/test_ingest.py
import json
import time
from unittest import mock

import pytest

import modules.internships as internships
from modules.internships.lib import ingest
from modules.internships.lib.breaker import BreakerBoard
from modules.internships.lib.config import IngestionSettings
from modules.internships.lib.db import PostingStore
from modules.internships.lib.errors import ConfigurationError, ReconciliationError
from modules.internships.lib.models import FetchResult
from modules.internships.lib.sources import StubSource
from modules.internships.lib.sources.base import BaseSource
from service import logging_utils


def stub_source(source="stub:a", **params):
    return {"kind": "stub", "source": source, "params": params}


# ----------------------------------------------------------------------
# 1. Happy path and idempotence
# ----------------------------------------------------------------------
def test_first_run_inserts_everything(make_settings, store):
    run = ingest.run_ingestion(make_settings(), store)

    assert run.fetched == 2
    assert run.normalized == 2
    assert run.inserted == 2
    assert (run.updated, run.skipped) == (0, 0)
    assert run.errors == []
    assert store.count_postings() == 2
    assert run.sources["stub:a"].completed is True


def test_second_identical_run_only_skips(make_settings, store):
    ingest.run_ingestion(make_settings(), store)
    run = ingest.run_ingestion(make_settings(), store)

    assert run.inserted == 0
    assert run.skipped == 2
    assert store.count_postings() == 2


def test_changed_description_is_updated_not_inserted(make_settings, store, stub_items):
    ingest.run_ingestion(make_settings(), store)
    stub_items[0]["description"] = "Now with Rust and Go, C, and Kubernetes."
    run = ingest.run_ingestion(make_settings([stub_source(items=stub_items)]), store)

    assert (run.inserted, run.updated, run.skipped) == (0, 1, 1)
    assert store.count_postings() == 2


def test_same_posting_from_two_sources_dedupes(make_settings, store, stub_items):
    settings = make_settings([stub_source("stub:a", items=stub_items), stub_source("stub:b", items=stub_items)])
    run = ingest.run_ingestion(settings, store)

    assert run.fetched == 4
    assert run.inserted == 2
    assert run.skipped == 2
    assert store.count_postings() == 2


def test_dry_run_writes_nothing(make_settings, store):
    run = ingest.run_ingestion(make_settings(dry_run=True), store)
    assert run.inserted == 2
    assert run.dry_run is True
    assert store.count_postings() == 0


def test_dry_run_counts_cross_source_duplicates_like_a_real_run(make_settings, store, stub_items):
    changed = [dict(stub_items[0], description="Rust and Go now, $45/hr."), stub_items[1]]
    sources = [stub_source("stub:a", items=stub_items), stub_source("stub:b", items=changed)]

    dry = ingest.run_ingestion(make_settings(sources, dry_run=True, max_concurrent_sources=1), store)
    assert store.count_postings() == 0
    real = ingest.run_ingestion(make_settings(sources, max_concurrent_sources=1), store)

    assert (dry.inserted, dry.updated, dry.skipped) == (2, 1, 1)
    assert (real.inserted, real.updated, real.skipped) == (2, 1, 1)


def test_dry_run_with_skip_duplicates_skips_repeats(make_settings, store, stub_items):
    sources = [stub_source("stub:a", items=stub_items), stub_source("stub:b", items=stub_items)]
    run = ingest.run_ingestion(make_settings(sources, dry_run=True, skip_duplicates=True), store)
    assert (run.inserted, run.skipped) == (2, 2)


def test_company_filter_and_max_results(make_settings, store):
    run = ingest.run_ingestion(make_settings(companies=["Acme"]), store)
    assert run.fetched == 1

    run = ingest.run_ingestion(make_settings(max_results=1, dry_run=True), store)
    assert run.fetched == 1


# ----------------------------------------------------------------------
# 2. Partial failure isolation
# ----------------------------------------------------------------------
def test_raising_adapter_does_not_affect_others(make_settings, store, stub_items):
    settings = make_settings([
        stub_source("stub:good", items=stub_items),
        stub_source("stub:broken", **{"raise": "provider exploded"}),
    ])
    run = ingest.run_ingestion(settings, store)

    assert run.fetched == 2
    assert run.inserted == 2
    assert run.sources["stub:good"].fetched == 2
    assert [e.source for e in run.errors] == ["stub:broken"]
    assert "provider exploded" in run.errors[0].message
    assert run.errors[0].stage == "source"


def test_source_errors_alongside_postings_are_recorded(make_settings, store, stub_items):
    run = ingest.run_ingestion(make_settings([stub_source(items=stub_items, errors=["board foo: 404"])]), store)
    assert run.inserted == 2
    assert len(run.errors) == 1
    assert "board foo: 404" in run.errors[0].message


def test_invalid_items_count_as_normalize_errors(make_settings, store, stub_items):
    items = stub_items + [{"title": "", "company": "Nameless", "url": "https://x.example.com/1"}]
    run = ingest.run_ingestion(make_settings([stub_source(items=items)]), store)

    assert run.fetched == 3
    assert run.normalized == 2
    assert [e.stage for e in run.errors] == ["normalize"]


def test_unknown_kind_is_a_source_error(make_settings, store, stub_items):
    settings = make_settings([
        stub_source(items=stub_items),
        {"kind": "nope", "source": "nope:x", "params": {}},
    ])
    run = ingest.run_ingestion(settings, store)
    assert run.inserted == 2
    assert [e.source for e in run.errors] == ["nope:x"]


def test_reconcile_failure_is_per_item(make_settings, store, monkeypatch):
    real = ingest.reconcile
    calls = {"n": 0}

    def flaky(store_, posting, **kw):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ReconciliationError(posting.content_hash, RuntimeError("locked"))
        return real(store_, posting, **kw)

    monkeypatch.setattr(ingest, "reconcile", flaky)
    run = ingest.run_ingestion(make_settings(), store)

    assert run.inserted == 1
    assert run.errors[0].stage == "reconcile"
    assert run.errors[0].content_hash


# ----------------------------------------------------------------------
# 3. Deadline
# ----------------------------------------------------------------------
def test_deadline_turns_slow_source_into_error(make_settings, store, stub_items):
    settings = make_settings(
        [stub_source("stub:fast", items=stub_items), stub_source("stub:slow", items=stub_items, delay_sec=3)],
        deadline_sec=0.5,
    )
    t0 = time.monotonic()
    run = ingest.run_ingestion(settings, store)

    assert time.monotonic() - t0 < 2.5
    assert run.inserted == 2
    assert run.sources["stub:slow"].completed is False
    assert any(e.stage == "deadline" and e.source == "stub:slow" for e in run.errors)

    (logged,) = [r for r in logging_utils.read_records(logging_utils.get_error_log_path())
                 if r.get("op") == "source_deadline"]
    assert logged["source"] == "stub:slow"
    assert "did not finish" in logged["error"]


def test_source_done_while_another_reconciles_is_not_lost(make_settings, sqlite_path, stub_items):
    class SlowStore(PostingStore):
        def get_by_hash(self, content_hash):
            time.sleep(0.6)
            return super().get_by_hash(content_hash)

    third = {"title": "Security Engineering Intern", "company": "Initech", "url": "https://initech.example.com/jobs/7"}
    settings = make_settings(
        [
            stub_source("stub:fast", items=stub_items[:1]),
            stub_source("stub:second", items=stub_items + [third], delay_sec=0.1),
        ],
        deadline_sec=0.4,
    )
    run = ingest.run_ingestion(settings, SlowStore(sqlite_path))

    assert run.inserted == 1
    assert run.fetched == 4
    second = run.sources["stub:second"]
    assert second.completed is True
    assert second.fetched == 3
    expired = [e for e in run.errors if e.source == "stub:second"]
    assert len(expired) == 3
    assert all(e.stage == "deadline" and "not reconciled" in e.message for e in expired)


# ----------------------------------------------------------------------
# 4. Circuit breaker
# ----------------------------------------------------------------------
def test_long_lived_board_short_circuits_failing_source(make_settings, store, stub_items):
    board = BreakerBoard(failure_threshold=2, cooldown_sec=3600)
    calls = {"n": 0}

    class CountingBroken(StubSource):
        def _fetch(self, query):
            calls["n"] += 1
            return FetchResult(source=self.source, errors=[self.error("HTTP 503")])

    def get_source(kind):
        return CountingBroken if kind == "broken" else StubSource

    settings = make_settings([
        stub_source("stub:ok", items=stub_items),
        {"kind": "broken", "source": "broken:x", "params": {}},
    ])
    for _ in range(3):
        run = ingest.run_ingestion(settings, store, get_source=get_source, breakers=board)

    assert calls["n"] == 2  # third run never reached the provider
    assert run.sources["broken:x"].short_circuited is True
    assert any("circuit open" in e.message for e in run.errors)
    assert run.sources["stub:ok"].fetched == 2


def test_entry_point_keeps_breakers_across_runs(sqlite_path):
    kwargs = {
        "sources": [stub_source("stub:flaky")],
        "sqlite_path": sqlite_path,
        "breaker_failure_threshold": 2,
        "breaker_cooldown_sec": 3600,
    }
    with mock.patch.object(StubSource, "fetch", autospec=True, side_effect=RuntimeError("boom")) as fetch:
        summaries = [internships.ingest(**kwargs) for _ in range(4)]

    assert fetch.call_count == 2
    assert [s["sources"]["stub:flaky"]["short_circuited"] for s in summaries] == [False, False, True, True]
    assert "circuit open" in summaries[-1]["error_details"][0]["message"]

    internships.reset_breakers()
    with mock.patch.object(StubSource, "fetch", autospec=True, side_effect=RuntimeError("boom")) as fetch:
        internships.ingest(**kwargs)
    assert fetch.call_count == 1


def test_entry_point_uses_caller_board(sqlite_path, stub_items):
    board = BreakerBoard(failure_threshold=1, cooldown_sec=3600)
    board.get("stub:a").record_failure()

    summary = internships.ingest(sources=[stub_source(items=stub_items)], sqlite_path=sqlite_path, breakers=board)

    assert summary["sources"]["stub:a"]["short_circuited"] is True
    assert summary["inserted"] == 0


# ----------------------------------------------------------------------
# 4b. Adapters are closed after each fetch
# ----------------------------------------------------------------------
def test_adapters_are_closed_after_fetch(make_settings, store, stub_items):
    closed = []

    class Tracked(StubSource):
        def close(self):
            closed.append(self.source)
            super().close()

    settings = make_settings([
        stub_source("stub:ok", items=stub_items),
        stub_source("stub:broken", **{"raise": "provider exploded"}),
    ])
    ingest.run_ingestion(settings, store, get_source=lambda kind: Tracked)

    assert sorted(closed) == ["stub:broken", "stub:ok"]


# ----------------------------------------------------------------------
# 5. Configuration errors are fatal and raised before any work
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "kwargs",
    [
        {"batch_size": 0},
        {"max_results": 0},
        {"deadline_sec": -1},
        {"max_results": "lots"},
    ],
)
def test_invalid_settings_raise(make_settings, kwargs):
    with pytest.raises(ConfigurationError):
        make_settings(**kwargs)


def test_no_sources_is_a_configuration_error(sqlite_path):
    with pytest.raises(ConfigurationError):
        IngestionSettings.from_env_and_kwargs({"sqlite_path": sqlite_path})


def test_duplicate_source_labels_rejected(make_settings):
    with pytest.raises(ConfigurationError):
        make_settings([stub_source("stub:a"), stub_source("stub:a")])


def test_run_ingestion_revalidates_settings(make_settings, store):
    settings = make_settings()
    settings.batch_size = 0
    with pytest.raises(ConfigurationError):
        ingest.run_ingestion(settings, store, get_source=lambda kind: BaseSource)


def test_sources_path_file(tmp_path, sqlite_path, stub_items):
    p = tmp_path / "sources.json"
    p.write_text(json.dumps([stub_source(items=stub_items)]), encoding="utf-8")
    settings = IngestionSettings.from_env_and_kwargs({"sources_path": str(p), "sqlite_path": sqlite_path})
    assert [s.source for s in settings.sources] == ["stub:a"]
    assert ingest.run_ingestion(settings).inserted == 2
