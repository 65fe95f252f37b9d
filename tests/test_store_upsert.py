# tests/test_store_upsert.py
import sqlite3
import threading
from dataclasses import replace
from unittest import mock

import pytest

from modules.internships.lib import canonical, upsert
from modules.internships.lib.db import PostingStore, init_db, reset_db
from modules.internships.lib.errors import ReconciliationError
from modules.internships.lib.models import Company, Decision, LinkStatus, RawPosting, ValidationRecord


def _posting(**overrides):
    fields = {
        "source": "stub:a",
        "source_type": "stub",
        "title": "Software Engineering Intern",
        "company": "Acme Corp",
        "url": "https://acme.example.com/jobs/1",
        "description": "Python and SQL.",
        "location": "Austin, TX",
    }
    fields.update(overrides)
    return canonical.normalize(RawPosting(**fields))


def _record(status=LinkStatus.OK, rule="ok", code=200):
    return ValidationRecord(
        status=status,
        http_code=code,
        final_url="https://acme.example.com/jobs/1",
        redirect_chain=("https://acme.example.com/jobs/1",),
        confidence_score=0.95,
        reason="reachable",
        last_checked_at="2025-01-01T00:00:00Z",
        rule=rule,
    )


# ----------------------------------------------------------------------
# 1. Insert / skip / update
# ----------------------------------------------------------------------
def test_reconcile_inserts_then_skips_identical(store):
    p = _posting()
    assert upsert.reconcile(store, p) is Decision.INSERTED
    assert upsert.reconcile(store, p) is Decision.SKIPPED
    assert store.count_postings() == 1
    assert store.count_companies() == 1


def test_reconcile_updates_changed_description(store):
    upsert.reconcile(store, _posting())
    changed = _posting(description="Python, SQL and Go, plus Kubernetes.")

    assert upsert.reconcile(store, changed) is Decision.UPDATED
    stored = store.get_by_hash(changed.content_hash)
    assert stored.description == changed.description
    assert store.count_postings() == 1


def test_reconcile_updates_changed_deadline(store):
    upsert.reconcile(store, _posting())
    changed = _posting(application_deadline="2026-03-01")
    assert upsert.reconcile(store, changed) is Decision.UPDATED
    assert store.get_by_hash(changed.content_hash).application_deadline == "2026-03-01"


def test_skip_duplicates_never_updates(store):
    upsert.reconcile(store, _posting())
    changed = _posting(description="totally new text")
    assert upsert.reconcile(store, changed, skip_duplicates=True) is Decision.SKIPPED
    assert store.get_by_hash(changed.content_hash).description == "Python and SQL."


def test_dry_run_reports_without_writing(store):
    p = _posting()
    assert upsert.reconcile(store, p, dry_run=True) is Decision.INSERTED
    assert store.count_postings() == 0

    upsert.reconcile(store, p)
    changed = _posting(description="new words")
    assert upsert.reconcile(store, changed, dry_run=True) is Decision.UPDATED
    assert store.get_by_hash(p.content_hash).description == "Python and SQL."


def test_dry_run_repeats_compare_against_earlier_decisions(store):
    seen = {}
    p = _posting()
    assert upsert.reconcile(store, p, dry_run=True, seen=seen) is Decision.INSERTED
    assert upsert.reconcile(store, p, dry_run=True, seen=seen) is Decision.SKIPPED

    changed = _posting(description="new words")
    assert upsert.reconcile(store, changed, dry_run=True, seen=seen) is Decision.UPDATED
    assert upsert.reconcile(store, changed, dry_run=True, seen=seen) is Decision.SKIPPED
    assert seen[p.content_hash].description == "new words"
    assert store.count_postings() == 0


def test_store_error_becomes_reconciliation_error(store):
    p = _posting()
    with mock.patch.object(store, "insert_if_absent", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(ReconciliationError) as exc:
            upsert.reconcile(store, p)
    assert exc.value.content_hash == p.content_hash
    assert store.count_postings() == 0


def test_has_changes_ignores_float_noise(store):
    upsert.reconcile(store, _posting(description="$40/hr"))
    stored = store.get_by_hash(_posting().content_hash)
    assert not upsert.has_changes(stored, replace(_posting(description="$40/hr"), pay_rate_min=40.0000001))


# ----------------------------------------------------------------------
# 2. Concurrency: a race on the same hash yields one row
# ----------------------------------------------------------------------
def test_concurrent_reconcile_creates_single_row(sqlite_path):
    store = PostingStore(sqlite_path)
    p = _posting()
    workers = 8
    barrier = threading.Barrier(workers)
    decisions, errors = [], []
    lock = threading.Lock()

    def _go():
        barrier.wait()
        try:
            d = upsert.reconcile(store, p)
        except Exception as e:  # pragma: no cover - surfaced by the assert below
            with lock:
                errors.append(e)
            return
        with lock:
            decisions.append(d)

    threads = [threading.Thread(target=_go) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert decisions.count(Decision.INSERTED) == 1
    assert decisions.count(Decision.SKIPPED) == workers - 1
    assert store.count_postings() == 1


def test_insert_if_absent_returns_existing_id(store):
    p = _posting()
    company_id = store.ensure_company(p.company)
    first_id, inserted = store.insert_if_absent(p, company_id)
    again_id, inserted_again = store.insert_if_absent(p, company_id)
    assert inserted is True and inserted_again is False
    assert first_id == again_id


# ----------------------------------------------------------------------
# 3. Companies
# ----------------------------------------------------------------------
def test_ensure_company_is_get_or_create_and_fills_domain(store):
    a = store.ensure_company(Company(name="Acme Corp", normalized_name="acme"))
    b = store.ensure_company(Company(name="ACME", normalized_name="acme", domain="acme.com"))
    c = store.ensure_company(Company(name="Acme", normalized_name="acme", domain="other.com"))
    assert a == b == c
    assert store.count_companies() == 1
    with sqlite3.connect(store.sqlite_path) as conn:
        (domain,) = conn.execute("SELECT domain FROM companies WHERE id = ?", (a,)).fetchone()
    assert domain == "acme.com"


# ----------------------------------------------------------------------
# 4. Validation columns
# ----------------------------------------------------------------------
def test_write_validation_persists_record(store):
    upsert.reconcile(store, _posting())
    pid = store.get_by_hash(_posting().content_hash).id

    store.write_validation(pid, _record(LinkStatus.DEAD, rule="not_found", code=404))
    v = store.get_validation(pid)
    assert v["validation_status"] == "dead"
    assert v["validation_http_code"] == 404
    assert v["validation_rule"] == "not_found"
    assert v["validation_redirects"] == ["https://acme.example.com/jobs/1"]
    assert v["is_active"] is False


def test_inconclusive_record_keeps_active_flag(store):
    upsert.reconcile(store, _posting())
    pid = store.get_by_hash(_posting().content_hash).id
    store.write_validation(pid, _record(LinkStatus.MAYBE_VALID, rule="server_error", code=503))
    assert store.get_validation(pid)["is_active"] is True


def test_network_failure_counter_increments_and_resets(store):
    upsert.reconcile(store, _posting())
    pid = store.get_by_hash(_posting().content_hash).id
    net = _record(LinkStatus.MAYBE_VALID, rule="network_error", code=None)

    store.write_validation(pid, net, network_failure=True)
    store.write_validation(pid, net, network_failure=True)
    assert store.get_posting(pid).validation_network_failures == 2

    store.write_validation(pid, _record())
    assert store.get_posting(pid).validation_network_failures == 0


def test_select_candidates_orders_unchecked_first(store):
    for n in range(3):
        upsert.reconcile(store, _posting(title=f"Intern {n}", url=f"https://acme.example.com/jobs/{n}"))
    ids = [p.id for p in store.select_validation_candidates()]
    assert len(ids) == 3

    store.write_validation(ids[0], replace(_record(), last_checked_at="2025-01-02T00:00:00Z"))
    store.write_validation(ids[1], replace(_record(), last_checked_at="2025-01-01T00:00:00Z"))
    order = [p.id for p in store.select_validation_candidates()]
    assert order == [ids[2], ids[1], ids[0]]

    assert [p.id for p in store.select_validation_candidates(limit=1)] == [ids[2]]
    fresh = store.select_validation_candidates(stale_before="2025-01-01T12:00:00Z")
    assert [p.id for p in fresh] == [ids[2], ids[1]]


def test_select_candidates_skips_inactive_unless_asked(store):
    upsert.reconcile(store, _posting())
    pid = store.get_by_hash(_posting().content_hash).id
    store.write_validation(pid, _record(LinkStatus.EXPIRED, rule="generic_redirect"))

    assert store.select_validation_candidates() == []
    assert [p.id for p in store.select_validation_candidates(include_inactive=True)] == [pid]


# ----------------------------------------------------------------------
# 5. Lifecycle helpers
# ----------------------------------------------------------------------
def test_reset_and_init_db(tmp_path):
    dbp = str(tmp_path / "nested" / "ij.db")
    init_db(dbp)
    init_db(dbp)  # idempotent
    store = PostingStore(dbp)
    upsert.reconcile(store, _posting())
    assert store.count_postings() == 1

    reset_db(dbp)
    assert PostingStore(dbp).count_postings() == 0
