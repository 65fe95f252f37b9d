# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run MODULE [--kwargs k=v ...]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - Prints the returned summary as JSON

ingest [--dry-run] [--companies a,b] [--max-results N] ...
    - One ingestion pass of modules.internships; prints the JSON summary

validate [--limit N] [--no-update] [--no-scan] ...
    - One link-validation sweep over stored postings; prints the JSON summary

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

PIPELINE_MODULE = "modules.internships"


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - JSON-looking values (true/false/null/number/object/array) are decoded.
    - Everything else stays a raw string.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _describe_job(job: dict[str, Any]) -> str:
    if job.get("summary") or job.get("description"):
        return str(job.get("summary") or job.get("description"))
    trig = _scheduler.trigger_block(job)
    mode = (job.get("kwargs") or {}).get("mode")
    parts = [job.get("module", "?")]
    if mode:
        parts.append(f"mode={mode}")
    parts.extend(f"{k}={json.dumps(v, default=str)}" for k, v in trig.items())
    return " ".join(str(p) for p in parts)


def _extract_jobs_from_config(cfg: dict[str, Any]) -> list[tuple[str, str]]:
    return [
        (str(j.get("id") or j.get("name") or idx), _describe_job(j))
        for idx, j in enumerate(cfg.get("jobs") or [])
        if isinstance(j, dict)
    ]


def _print_summary(summary: dict[str, Any] | None) -> None:
    print(json.dumps(summary or {}, indent=2, sort_keys=True, default=str))


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print("OK: configuration is valid.")
    return 0


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    rows = _extract_jobs_from_config(cfg)
    if not rows:
        print("No jobs found in config.")
        return 0
    _print_table(rows, headers=("JOB", "DETAILS"))
    return 0


def _run_and_print(module: str, kwargs: dict[str, Any], where: str) -> int:
    """Run through the runner (so the activity log sees it) and print the summary."""
    try:
        summary, run_id = _runner.run_module_once(module=module, kwargs=kwargs, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        # The runner already wrote the error record; CLI adds its own context
        LOG.debug("%s failed", where, exc_info=True)
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({"ts": _now_iso(), "where": where, "module": module, "error": repr(e)})
        return 1
    LOG.debug("%s finished (run_id=%s)", where, run_id)
    _print_summary(summary)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    kwargs = _parse_kv_pairs(args.kwargs or [])
    LOG.debug("Run module %s with kwargs=%s", args.module, kwargs)
    return _run_and_print(args.module, kwargs, "cli.run")


def _common_pipeline_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    kw: dict[str, Any] = {}
    if args.sqlite_path:
        kw["sqlite_path"] = args.sqlite_path
    if args.deadline_sec is not None:
        kw["deadline_sec"] = args.deadline_sec
    return kw


def cmd_ingest(args: argparse.Namespace) -> int:
    kwargs: dict[str, Any] = {
        "mode": "ingest",
        **_common_pipeline_kwargs(args),
        "max_results": args.max_results,
        "batch_size": args.batch_size,
        "include_programs": args.include_programs,
        "dry_run": args.dry_run,
        "skip_duplicates": args.skip_duplicates,
    }
    if args.companies:
        kwargs["companies"] = [c.strip() for c in args.companies.split(",") if c.strip()]
    if args.sources_path:
        kwargs["sources_path"] = args.sources_path
    return _run_and_print(PIPELINE_MODULE, kwargs, "cli.ingest")


def cmd_validate(args: argparse.Namespace) -> int:
    kwargs: dict[str, Any] = {
        "mode": "validate",
        **_common_pipeline_kwargs(args),
        "update_store": not args.no_update,
        "scan_content": not args.no_scan,
    }
    if args.limit is not None:
        kwargs["limit"] = args.limit
    return _run_and_print(PIPELINE_MODULE, kwargs, "cli.validate")


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until SIGINT/SIGTERM, then stop it cleanly."""
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})
    stop_event = threading.Event()

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        controller = _scheduler.start(config_path=args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    LOG.info("Scheduler started with jobs: %s", ", ".join(controller.get_job_ids()) or "(none)")

    try:
        while not stop_event.wait(timeout=0.3):
            pass
    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
    finally:
        controller.stop()
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- Argparse ------------------------------------
def _add_pipeline_common(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--sqlite-path", help="Posting store path (default $INTERNSHIPS_SQLITE_PATH).")
    sp.add_argument("--deadline-sec", type=float, help="Abort unfinished work after this many seconds.")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Internship pipeline service tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or an empty job list).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Dotted module path to run (e.g., modules.internships).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("ingest", help="Fetch and store postings from every configured source.")
    _add_pipeline_common(sp)
    sp.add_argument("--sources-path", help="JSON file of source configs (kind/source/params).")
    sp.add_argument("--companies", help="Comma-separated company filter.")
    sp.add_argument("--max-results", type=int, default=50, help="Per-source result cap (default 50).")
    sp.add_argument("--batch-size", type=int, default=50, help="Reconcile batch size (default 50).")
    sp.add_argument("--include-programs", action="store_true", help="Also search early-career program pages.")
    sp.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    sp.add_argument("--skip-duplicates", action="store_true", help="Never update postings already stored.")
    sp.set_defaults(func=cmd_ingest)

    sp = sub.add_parser("validate", help="Re-check application links of stored postings.")
    _add_pipeline_common(sp)
    sp.add_argument("--limit", type=int, help="Check at most this many postings.")
    sp.add_argument("--no-update", action="store_true", help="Classify only; leave the store untouched.")
    sp.add_argument("--no-scan", action="store_true", help="Skip the closed/expired phrase scan of page text.")
    sp.set_defaults(func=cmd_validate)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
