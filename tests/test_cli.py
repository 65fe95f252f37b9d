# tests/test_cli.py
import argparse
import json
from unittest import mock

import pytest

from service import cli


@pytest.fixture
def sources_file(tmp_path, stub_items):
    p = tmp_path / "sources.json"
    p.write_text(json.dumps([{"kind": "stub", "source": "stub:a", "params": {"items": stub_items}}]), encoding="utf-8")
    return str(p)


# ----------------------------------------------------------------------
# 1. Pipeline subcommands
# ----------------------------------------------------------------------
def test_ingest_prints_json_summary(capsys, sqlite_path, sources_file):
    rc = cli.main(["ingest", "--sqlite-path", sqlite_path, "--sources-path", sources_file])
    assert rc == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["inserted"] == 2
    assert summary["dry_run"] is False


def test_ingest_flags_reach_the_pipeline(capsys, sqlite_path, sources_file, store):
    rc = cli.main([
        "ingest",
        "--sqlite-path", sqlite_path,
        "--sources-path", sources_file,
        "--companies", "Globex",
        "--dry-run",
    ])
    assert rc == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["fetched"] == 1
    assert summary["dry_run"] is True
    assert store.count_postings() == 0


def test_ingest_without_sources_fails(capsys, sqlite_path):
    rc = cli.main(["ingest", "--sqlite-path", sqlite_path])
    assert rc == 1
    assert "FAILURE" in capsys.readouterr().err


def test_validate_on_empty_store(capsys, sqlite_path):
    rc = cli.main(["validate", "--sqlite-path", sqlite_path, "--limit", "5", "--no-update"])
    assert rc == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["total"] == 0


def test_validate_scans_page_text_unless_told_not_to(sqlite_path):
    with mock.patch.object(cli, "_run_and_print", return_value=0) as run_and_print:
        assert cli.main(["validate", "--sqlite-path", sqlite_path]) == 0
        assert cli.main(["validate", "--sqlite-path", sqlite_path, "--no-scan"]) == 0

    scans = [c.args[1]["scan_content"] for c in run_and_print.call_args_list]
    assert scans == [True, False]


def test_run_accepts_kwargs(capsys, sqlite_path, sources_file):
    rc = cli.main([
        "run",
        "modules.internships",
        "--kwargs",
        "mode=ingest",
        f"sqlite_path={sqlite_path}",
        f"sources_path={sources_file}",
        "max_results=1",
    ])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["fetched"] == 1


def test_parse_kv_pairs():
    assert cli._parse_kv_pairs(["a=1", "b=true", "c=hello", 'd=["x"]']) == {"a": 1, "b": True, "c": "hello", "d": ["x"]}
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_kv_pairs(["novalue"])


# ----------------------------------------------------------------------
# 2. Config subcommands
# ----------------------------------------------------------------------
def test_validate_config_ok(capsys, write_min_config):
    assert cli.main(["validate-config"]) == 0
    assert "OK" in capsys.readouterr().out


def test_validate_config_reports_errors(capsys, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"jobs": [{"id": "x", "module": "modules.internships"}]}), encoding="utf-8")
    assert cli.main(["--config", str(bad), "validate-config"]) == 1
    assert "configuration invalid" in capsys.readouterr().err


def test_list_jobs(capsys, write_min_config):
    assert cli.main(["list-jobs"]) == 0
    out = capsys.readouterr().out
    assert "internships-ingest" in out and "pytest ingest" in out
    assert "internships-validate" in out and "daily_time" in out


def test_list_jobs_empty(capsys):
    assert cli.main(["list-jobs"]) == 0
    assert "No jobs found" in capsys.readouterr().out
