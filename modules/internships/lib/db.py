from __future__ import annotations

import contextlib
import json
import os
import sqlite3
from collections.abc import Iterator
from typing import Any

from .logging_bridge import error as log_error
from .models import Company, NormalizedPosting, StoredPosting, ValidationRecord
from .utils import now_iso

# Columns refreshed by update_posting (identity columns never change)
_CONTENT_COLUMNS = (
    "title",
    "exact_role",
    "normalized_role",
    "relevant_majors",
    "skills",
    "eligibility_years",
    "graduation_years",
    "work_type",
    "pay_rate_min",
    "pay_rate_max",
    "pay_rate_currency",
    "pay_rate_type",
    "location",
    "is_remote",
    "is_program_specific",
    "internship_cycle",
    "application_url",
    "posted_at",
    "application_deadline",
    "description",
    "source",
    "source_type",
    "raw_payload",
)

_STORED_COLUMNS = """
    p.id, p.content_hash, p.title, c.name AS company_name, p.description,
    p.application_deadline, p.pay_rate_min, p.pay_rate_max, p.pay_rate_currency,
    p.pay_rate_type, p.application_url, p.is_active, p.validation_status,
    p.validation_last_checked, p.validation_network_failures
"""


# ---- Public API -------------------------------------------------------------


class PostingStore:
    """
    SQLite-backed repository for companies and postings.

    Every operation opens its own connection, so one instance can be shared
    by worker threads and two processes can ingest into the same file.
    UNIQUE(content_hash) is what keeps concurrent runs from creating twins.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        init_db(sqlite_path)

    # ---- companies ----

    def ensure_company(self, company: Company) -> int:
        """Get-or-create by normalized name; fills in a missing domain on the way."""
        with self._write("ensure_company") as cur:
            cur.execute(
                """
                INSERT INTO companies (name, normalized_name, domain, created_utc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(normalized_name) DO UPDATE
                  SET domain = COALESCE(companies.domain, excluded.domain)
                """,
                (company.name, company.normalized_name, company.domain, now_iso()),
            )
            cur.execute("SELECT id FROM companies WHERE normalized_name = ?", (company.normalized_name,))
            (company_id,) = cur.fetchone()
        return int(company_id)

    # ---- postings ----

    def get_by_hash(self, content_hash: str) -> StoredPosting | None:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_STORED_COLUMNS} FROM postings p JOIN companies c ON c.id = p.company_id "
                "WHERE p.content_hash = ?",
                (content_hash,),
            ).fetchone()
        return _to_stored(row) if row else None

    def get_posting(self, posting_id: int) -> StoredPosting | None:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_STORED_COLUMNS} FROM postings p JOIN companies c ON c.id = p.company_id WHERE p.id = ?",
                (posting_id,),
            ).fetchone()
        return _to_stored(row) if row else None

    def insert_if_absent(self, posting: NormalizedPosting, company_id: int) -> tuple[int, bool]:
        """
        Atomic conditional insert keyed on content_hash.

        Returns:
            (posting_id, inserted) - inserted is False when another writer got there
            first; posting_id is then the existing row's id.
        """
        values = _content_values(posting)
        ts = now_iso()
        cols = ("content_hash", "company_id", *_CONTENT_COLUMNS, "first_seen_utc", "updated_utc")
        params = (posting.content_hash, company_id, *values, ts, ts)
        with self._write("insert_if_absent") as cur:
            cur.execute(
                f"INSERT INTO postings ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
                "ON CONFLICT(content_hash) DO NOTHING",
                params,
            )
            if cur.rowcount == 1:
                return int(cur.lastrowid), True
            cur.execute("SELECT id FROM postings WHERE content_hash = ?", (posting.content_hash,))
            (existing_id,) = cur.fetchone()
        return int(existing_id), False

    def update_posting(self, posting_id: int, posting: NormalizedPosting) -> None:
        """Refresh content columns in place; validation columns are left alone."""
        assignments = ", ".join(f"{c} = ?" for c in _CONTENT_COLUMNS)
        with self._write("update_posting") as cur:
            cur.execute(
                f"UPDATE postings SET {assignments}, updated_utc = ? WHERE id = ?",
                (*_content_values(posting), now_iso(), posting_id),
            )

    def select_validation_candidates(
        self,
        *,
        limit: int | None = None,
        include_inactive: bool = False,
        stale_before: str | None = None,
    ) -> list[StoredPosting]:
        """
        Postings due for a liveness check: never-checked first, then oldest check.
        stale_before (ISO) skips rows checked more recently than that instant.
        """
        where: list[str] = []
        params: list[Any] = []
        if not include_inactive:
            where.append("p.is_active = 1")
        if stale_before:
            where.append("(p.validation_last_checked IS NULL OR p.validation_last_checked < ?)")
            params.append(stale_before)
        sql = f"SELECT {_STORED_COLUMNS} FROM postings p JOIN companies c ON c.id = p.company_id"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY p.validation_last_checked IS NOT NULL, p.validation_last_checked, p.id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_to_stored(r) for r in rows]

    def write_validation(self, posting_id: int, record: ValidationRecord, *, network_failure: bool = False) -> None:
        """
        Overwrite the posting's validation fields with a fresh record.
        is_active follows record.is_active unless it is None (inconclusive).
        """
        active = record.is_active
        with self._write("write_validation") as cur:
            cur.execute(
                """
                UPDATE postings SET
                  validation_status = ?,
                  validation_http_code = ?,
                  validation_final_url = ?,
                  validation_redirects = ?,
                  validation_confidence = ?,
                  validation_reason = ?,
                  validation_rule = ?,
                  validation_last_checked = ?,
                  validation_network_failures = CASE WHEN ? THEN validation_network_failures + 1 ELSE 0 END,
                  is_active = COALESCE(?, is_active)
                WHERE id = ?
                """,
                (
                    record.status.value,
                    record.http_code,
                    record.final_url,
                    json.dumps(list(record.redirect_chain)),
                    record.confidence_score,
                    record.reason,
                    record.rule,
                    record.last_checked_at,
                    1 if network_failure else 0,
                    None if active is None else int(active),
                    posting_id,
                ),
            )

    def get_validation(self, posting_id: int) -> dict[str, Any] | None:
        """Raw validation columns for one posting (diagnostics/tests)."""
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT validation_status, validation_http_code, validation_final_url,
                       validation_redirects, validation_confidence, validation_reason,
                       validation_rule, validation_last_checked, validation_network_failures, is_active
                FROM postings WHERE id = ?
                """,
                (posting_id,),
            ).fetchone()
        if row is None:
            return None
        out = dict(row)
        out["validation_redirects"] = json.loads(out["validation_redirects"] or "[]")
        out["is_active"] = bool(out["is_active"])
        return out

    def count_postings(self) -> int:
        with self._read() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM postings").fetchone()
        return int(n or 0)

    def count_companies(self) -> int:
        with self._read() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM companies").fetchone()
        return int(n or 0)

    # ---- transaction helpers ----

    @contextlib.contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            conn.row_factory = sqlite3.Row
            yield conn

    @contextlib.contextmanager
    def _write(self, op: str) -> Iterator[sqlite3.Cursor]:
        """BEGIN IMMEDIATE ... COMMIT; rollback, log and re-raise on any sqlite error."""
        try:
            with contextlib.closing(_connect(self.sqlite_path)) as conn:
                _apply_pragmas(conn)
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                try:
                    yield cur
                except BaseException:
                    conn.rollback()
                    raise
                conn.commit()
        except sqlite3.Error as e:
            log_error({
                "component": "internships.db",
                "op": op,
                "sqlite_path": self.sqlite_path,
                "error": repr(e),
            })
            raise


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def reset_db(sqlite_path: str) -> None:
    """Remove the DB file (and WAL side files); safe if they don't exist."""
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None: autocommit; transactions are opened explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS companies (
          id INTEGER PRIMARY KEY,
          name TEXT NOT NULL,
          normalized_name TEXT NOT NULL UNIQUE,
          domain TEXT,
          created_utc TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS postings (
          id INTEGER PRIMARY KEY,
          content_hash TEXT NOT NULL UNIQUE,
          company_id INTEGER NOT NULL REFERENCES companies(id),
          title TEXT NOT NULL,
          exact_role TEXT NOT NULL,
          normalized_role TEXT NOT NULL,
          relevant_majors TEXT NOT NULL DEFAULT '[]',
          skills TEXT NOT NULL DEFAULT '[]',
          eligibility_years TEXT NOT NULL DEFAULT '[]',
          graduation_years TEXT NOT NULL DEFAULT '[]',
          work_type TEXT NOT NULL,
          pay_rate_min REAL,
          pay_rate_max REAL,
          pay_rate_currency TEXT,
          pay_rate_type TEXT,
          location TEXT NOT NULL DEFAULT '',
          is_remote INTEGER NOT NULL DEFAULT 0,
          is_program_specific INTEGER NOT NULL DEFAULT 0,
          internship_cycle TEXT,
          application_url TEXT NOT NULL,
          posted_at TEXT,
          application_deadline TEXT,
          description TEXT NOT NULL DEFAULT '',
          source TEXT NOT NULL,
          source_type TEXT NOT NULL,
          raw_payload TEXT,
          first_seen_utc TEXT NOT NULL,
          updated_utc TEXT NOT NULL,
          is_active INTEGER NOT NULL DEFAULT 1,
          validation_status TEXT,
          validation_http_code INTEGER,
          validation_final_url TEXT,
          validation_redirects TEXT,
          validation_confidence REAL,
          validation_reason TEXT,
          validation_rule TEXT,
          validation_last_checked TEXT,
          validation_network_failures INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_postings_last_checked
          ON postings (is_active, validation_last_checked);
        """
    )


def _content_values(p: NormalizedPosting) -> tuple[Any, ...]:
    return (
        p.title,
        p.exact_role,
        p.normalized_role.value,
        json.dumps(sorted(m.value for m in p.relevant_majors)),
        json.dumps(sorted(p.skills)),
        json.dumps(sorted(y.value for y in p.eligibility_years)),
        json.dumps(sorted(p.graduation_years)),
        p.work_type.value,
        p.pay_rate_min,
        p.pay_rate_max,
        p.pay_rate_currency,
        p.pay_rate_type.value,
        p.location,
        int(p.is_remote),
        int(p.is_program_specific),
        p.internship_cycle,
        p.application_url,
        p.posted_at,
        p.application_deadline,
        p.description,
        p.source,
        p.source_type,
        json.dumps(p.payload, default=str) if p.payload else None,
    )


def _to_stored(row: sqlite3.Row) -> StoredPosting:
    return StoredPosting(
        id=int(row["id"]),
        content_hash=row["content_hash"],
        title=row["title"],
        company_name=row["company_name"],
        description=row["description"] or "",
        application_deadline=row["application_deadline"],
        pay_rate_min=row["pay_rate_min"],
        pay_rate_max=row["pay_rate_max"],
        pay_rate_currency=row["pay_rate_currency"],
        pay_rate_type=row["pay_rate_type"],
        application_url=row["application_url"],
        is_active=bool(row["is_active"]),
        validation_status=row["validation_status"],
        validation_last_checked=row["validation_last_checked"],
        validation_network_failures=int(row["validation_network_failures"] or 0),
    )
