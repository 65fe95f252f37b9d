#!/usr/bin/env python3
"""Print the most recently seen postings from the internship store, with their link status."""

import argparse
import os
import sqlite3
import sys
from datetime import datetime

DEFAULT_DB = os.getenv("INTERNSHIPS_SQLITE_PATH") or "/app/local/state/internships.db"


def get_latest_entries(db_path: str, limit: int = 15, active_only: bool = False) -> list[sqlite3.Row]:
    """
    Latest `limit` postings by first_seen_utc DESC, joined with their company.
    """
    where = "WHERE p.is_active = 1" if active_only else ""
    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(
            f"""
            SELECT p.title, c.name AS company, p.location, p.application_url,
                   p.first_seen_utc, p.validation_status, p.is_active
            FROM postings p JOIN companies c ON c.id = p.company_id
            {where}
            ORDER BY p.first_seen_utc DESC, p.id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    finally:
        conn.close()


def format_timestamp(iso_str: str | None) -> str:
    """Convert ISO timestamp to readable local format."""
    if not iso_str:
        return "-"
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
    except ValueError:
        return iso_str
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def main() -> int:
    parser = argparse.ArgumentParser(description="Show the latest stored internship postings.")
    parser.add_argument("limit", nargs="?", type=int, default=15, help="Number of postings (default 15).")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite store path.")
    parser.add_argument("--active-only", action="store_true", help="Hide postings marked expired or dead.")
    args = parser.parse_args()

    if args.limit <= 0:
        print(f"Invalid limit: {args.limit}", file=sys.stderr)
        return 2
    if not os.path.exists(args.db):
        print(f"Database not found: {args.db}", file=sys.stderr)
        return 1

    try:
        entries = get_latest_entries(args.db, args.limit, args.active_only)
    except sqlite3.Error as e:
        print(f"Error reading {args.db}: {e}", file=sys.stderr)
        return 1

    print("=" * 80)
    print(f"DATABASE: {args.db}")
    print("-" * 80)
    if not entries:
        print("  No postings stored yet.")
        return 0

    for i, row in enumerate(entries, 1):
        status = row["validation_status"] or "unchecked"
        flag = "" if row["is_active"] else " (inactive)"
        print(f"{i:2d}. [{format_timestamp(row['first_seen_utc'])}] {status}{flag}")
        print(f"     {row['company']}: {row['title']}")
        if row["location"]:
            print(f"     Where: {row['location']}")
        print(f"     URL:   {row['application_url']}")
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
