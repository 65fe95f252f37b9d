# tests/test_config_schema.py
import json

import pytest

from service import config_schema
from service.config_schema import ConfigError


def _job(**overrides):
    job = {"id": "j", "module": "modules.internships", "daily_time": "06:30", "kwargs": {"mode": "ingest"}}
    job.update(overrides)
    return job


def _validate_jobs(*jobs):
    config_schema.validate({"timezone": "UTC", "jobs": list(jobs)})


# ----------------------------------------------------------------------
# 1. Loading
# ----------------------------------------------------------------------
def test_load_and_validate_min_config(write_min_config):
    cfg = config_schema.load_config()  # CONFIG_PATH set by fixture
    assert [j["id"] for j in cfg["jobs"]] == ["internships-ingest", "internships-validate"]
    assert cfg["jobs"][1]["timeout_sec"] == 600
    config_schema.validate(cfg)


def test_missing_config_path_gives_empty_jobs(monkeypatch):
    monkeypatch.setenv("TZ", "America/Chicago")
    cfg = config_schema.load_config()
    assert cfg == {"jobs": [], "timezone": "America/Chicago"}


def test_yaml_config_is_read(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text(
        "timezone: UTC\n"
        "jobs:\n"
        "  - module: modules.internships\n"
        "    trigger:\n"
        "      cron: '0 */6 * * *'\n"
        "    kwargs:\n"
        "      mode: ingest\n"
        "      sources_path: /app/local/sources.json\n"
        "    coalesce: 'yes'\n",
        encoding="utf-8",
    )
    cfg = config_schema.load_config(str(p))
    (job,) = cfg["jobs"]
    assert job["id"] == "modules.internships"
    assert job["coalesce"] is True
    config_schema.validate(cfg)


@pytest.mark.parametrize(
    "name, text, message",
    [
        ("bad.json", "{not json", "Invalid JSON"),
        ("bad.yaml", "jobs: [unclosed", "Invalid YAML"),
        ("list.json", "[]", "mapping"),
    ],
)
def test_unreadable_configs(tmp_path, name, text, message):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        config_schema.load_config(str(p))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        config_schema.load_config(str(tmp_path / "nope.json"))


# ----------------------------------------------------------------------
# 2. Triggers
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "trigger",
    [
        {"daily_time": ["06:30", "18:00:15"]},
        {"trigger": {"daily_time": {"time": "07:00", "day_of_week": "mon-fri"}}},
        {"trigger": {"interval": {"hours": 6}}},
        {"cron": "*/15 * * * *"},
        {"cron": {"hour": "*/2"}},
        {"date": "2099-01-01T00:00:00Z"},
        {"date": {"run_at": 4102444800}},
    ],
)
def test_valid_triggers(trigger):
    job = _job(**trigger)
    if "trigger" in trigger or "daily_time" not in trigger:
        job.pop("daily_time")
    _validate_jobs(job)


@pytest.mark.parametrize(
    "trigger, message",
    [
        ({"daily_time": "25:00"}, "out of range"),
        ({"daily_time": "6pm"}, "HH:MM"),
        ({"daily_time": []}, "daily_time"),
        ({"cron": "* * *"}, "5 fields"),
        ({"interval": {"fortnights": 1}}, "unknown field"),
        ({"date": True}, "ISO-8601"),
        ({"daily_time": "06:30", "cron": "0 * * * *"}, "exactly one"),
        ({"daily_time": "06:30", "trigger": {"cron": "0 * * * *"}}, "do not mix"),
        ({"trigger": "0 * * * *"}, "must be an object"),
    ],
)
def test_invalid_triggers(trigger, message):
    job = _job()
    job.pop("daily_time")
    job.update(trigger)
    with pytest.raises(ConfigError, match=message):
        _validate_jobs(job)


def test_job_without_trigger():
    job = _job()
    job.pop("daily_time")
    with pytest.raises(ConfigError, match="exactly one"):
        _validate_jobs(job)


# ----------------------------------------------------------------------
# 3. Job fields and pipeline kwargs
# ----------------------------------------------------------------------
def test_duplicate_ids_rejected():
    with pytest.raises(ConfigError, match="Duplicate job id"):
        _validate_jobs(_job(), _job())


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"module": ""}, "'module' is required"),
        ({"timeout_sec": -5}, "timeout_sec"),
        ({"max_instances": 0}, "max_instances"),
        ({"coalesce": "maybe"}, "coalesce"),
        ({"kwargs": ["mode", "ingest"]}, "'kwargs' must be a dict"),
        ({"kwargs": {"mode": "purge"}}, "kwargs.mode"),
        ({"kwargs": {"mode": "ingest", "sources": [{"source": "x"}]}}, "non-empty 'kind'"),
        ({"kwargs": {"mode": "ingest", "sources": 3}}, "list or a JSON string"),
        ({"summary": 42}, "'summary' must be a string"),
    ],
)
def test_invalid_job_fields(overrides, message):
    with pytest.raises(ConfigError, match=message):
        _validate_jobs(_job(**overrides))


def test_sources_may_be_a_json_string():
    _validate_jobs(_job(kwargs={"mode": "ingest", "sources": json.dumps([{"kind": "stub"}])}))


def test_top_level_shape_errors():
    with pytest.raises(ConfigError):
        config_schema.validate({"jobs": {}})
    with pytest.raises(ConfigError):
        config_schema.validate({"jobs": [], "timezone": 5})
    with pytest.raises(ConfigError):
        config_schema.validate({"jobs": [], "executor_workers": 0})
