# tests/test_runner.py
import re
import threading

import pytest

from service import logging_utils, runner


def _stub_kwargs(sqlite_path, stub_items, **extra):
    return {
        "mode": "ingest",
        "sqlite_path": sqlite_path,
        "sources": [{"kind": "stub", "source": "stub:a", "params": {"items": stub_items}}],
        **extra,
    }


# ----------------------------------------------------------------------
# 1. Happy path through the real pipeline module
# ----------------------------------------------------------------------
def test_runner_runs_ingest_and_logs_activity(sqlite_path, stub_items):
    summary, run_id = runner.run_module_once("modules.internships", kwargs=_stub_kwargs(sqlite_path, stub_items))

    assert re.match(r"^[a-f0-9]{32}$", run_id)
    assert summary["inserted"] == 2
    assert summary["message"].startswith("ingest:")

    records = [r for r in logging_utils.read_records(logging_utils.get_activity_log_path()) if r.get("run_id") == run_id]
    (rec,) = records
    assert rec["ok"] is True
    assert rec["module"] == "modules.internships"
    assert rec["trigger_type"] == "scheduled"
    assert rec["meta"]["inserted"] == 2
    assert "error_details" not in rec["meta"]


def test_runner_validate_mode_on_empty_store(sqlite_path):
    summary, _ = runner.run_module_once(
        "modules.internships",
        kwargs={"mode": "validate", "sqlite_path": sqlite_path},
        trigger_type="adhoc",
    )
    assert summary["total"] == 0
    assert summary["results"] == []


def test_job_context_is_recorded(sqlite_path, stub_items):
    _, run_id = runner.run_module_once(
        "modules.internships",
        kwargs=_stub_kwargs(sqlite_path, stub_items),
        job_context={"job_id": "internships-ingest", "run_id": "spoofed"},
    )
    (rec,) = [r for r in logging_utils.read_records(logging_utils.get_activity_log_path()) if r.get("run_id") == run_id]
    assert rec["context"]["job_id"] == "internships-ingest"
    assert rec["context"]["run_id"] == run_id


# ----------------------------------------------------------------------
# 2. Failures
# ----------------------------------------------------------------------
def test_configuration_errors_propagate_and_are_logged(sqlite_path):
    with pytest.raises(ValueError, match="No sources"):
        runner.run_module_once("modules.internships", kwargs={"mode": "ingest", "sqlite_path": sqlite_path})

    errors = logging_utils.read_records(logging_utils.get_error_log_path())
    assert errors and errors[-1]["where"] == "runner.run_module_once"
    activity = logging_utils.read_records(logging_utils.get_activity_log_path())
    assert activity[-1]["ok"] is False
    assert activity[-1]["meta"]["exception_type"] == "ConfigurationError"


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError, match="Unknown internships mode"):
        runner.run_module_once("modules.internships", kwargs={"mode": "purge"})


def test_timeout_raises_without_waiting(monkeypatch):
    release = threading.Event()

    def _hang(**kwargs):
        release.wait(5)
        return {}

    monkeypatch.setattr(runner, "_resolve_callable", lambda module: _hang)
    try:
        with pytest.raises(TimeoutError):
            runner.run_module_once("modules.internships", timeout_sec=1)
    finally:
        release.set()
    assert logging_utils.read_records(logging_utils.get_activity_log_path())[-1]["meta"] == {"timeout_sec": 1}


def test_module_without_run_is_rejected():
    with pytest.raises(AttributeError):
        runner.run_module_once("service.logging_utils")


# ----------------------------------------------------------------------
# 3. Helpers
# ----------------------------------------------------------------------
def test_kwargs_normalization(monkeypatch):
    monkeypatch.setenv("MY_DB", "/tmp/x.db")
    out = runner._normalize_kwargs_types({
        "sqlite_path_env": "MY_DB",
        "dry_run": "yes",
        "limit": "25",
        "deadline_sec": "1.5",
        "sources": '[{"kind": "stub"}]',
        "companies": "Stripe",
    })
    assert out == {
        "sqlite_path_env": "/tmp/x.db",
        "dry_run": True,
        "limit": 25,
        "deadline_sec": 1.5,
        "sources": [{"kind": "stub"}],
        "companies": "Stripe",
    }


def test_coerce_result_shapes():
    assert runner._coerce_result(None).message == "OK"
    assert runner._coerce_result({"message": "done"}).message == "done"
    with pytest.raises(TypeError):
        runner._coerce_result("<html>")
