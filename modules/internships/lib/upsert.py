from __future__ import annotations

import sqlite3

from .db import PostingStore
from .errors import ReconciliationError
from .models import Decision, NormalizedPosting, StoredPosting


def reconcile(
    store: PostingStore,
    posting: NormalizedPosting,
    *,
    dry_run: bool = False,
    skip_duplicates: bool = False,
    seen: dict[str, NormalizedPosting] | None = None,
) -> Decision:
    """
    Insert-or-update-or-skip for one canonical posting, keyed on content_hash.

    - new hash: ensure the company, then atomic insert; losing a concurrent
      insert race falls through to comparing against the winner's row
    - existing hash: update if a change-relevant field differs, else skip
    - skip_duplicates: any existing row is skipped without comparing
    - dry_run: the same decision from reads only; `seen` (hash -> posting the
      preview has already inserted or updated) stands in for the writes, so a
      repeat within one run previews as a skip or update instead of a second insert

    Raises:
        ReconciliationError: the store failed for this posting.
    """
    try:
        if dry_run:
            return _preview(store, posting, skip_duplicates, {} if seen is None else seen)

        existing = store.get_by_hash(posting.content_hash)
        if existing is None:
            company_id = store.ensure_company(posting.company)
            posting_id, inserted = store.insert_if_absent(posting, company_id)
            if inserted:
                return Decision.INSERTED
            existing = store.get_posting(posting_id)
            if existing is None:
                raise sqlite3.IntegrityError(f"row {posting_id} vanished after conflicting insert")

        if skip_duplicates or not has_changes(existing, posting):
            return Decision.SKIPPED
        store.update_posting(existing.id, posting)
        return Decision.UPDATED
    except sqlite3.Error as e:
        raise ReconciliationError(posting.content_hash, e) from e


def _preview(
    store: PostingStore,
    posting: NormalizedPosting,
    skip_duplicates: bool,
    seen: dict[str, NormalizedPosting],
) -> Decision:
    current: StoredPosting | NormalizedPosting | None = seen.get(posting.content_hash)
    if current is None:
        current = store.get_by_hash(posting.content_hash)
    if current is None:
        seen[posting.content_hash] = posting
        return Decision.INSERTED
    if skip_duplicates or not has_changes(current, posting):
        return Decision.SKIPPED
    seen[posting.content_hash] = posting
    return Decision.UPDATED


def has_changes(stored: StoredPosting | NormalizedPosting, posting: NormalizedPosting) -> bool:
    """Compare only the fields a re-post can legitimately change."""
    return _change_key(stored) != _change_key(posting)


def _change_key(p: StoredPosting | NormalizedPosting) -> tuple:
    pay_type = getattr(p.pay_rate_type, "value", p.pay_rate_type)
    return (
        p.title,
        p.description or "",
        p.application_deadline,
        _num(p.pay_rate_min),
        _num(p.pay_rate_max),
        p.pay_rate_currency,
        pay_type or "unknown",
        p.application_url,
    )


def _num(v: float | None) -> float | None:
    return None if v is None else round(float(v), 2)
