# tests/conftest.py
import json
import os
import tempfile
import types
import warnings

import pytest
import requests
from freezegun import freeze_time

import modules.internships as internships
from modules.internships.lib import config as ij_config
from modules.internships.lib.db import PostingStore, reset_db

warnings.filterwarnings("error", category=DeprecationWarning, module=r"(modules|service)\.")


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Logs go to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="ij-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.setenv("INTERNSHIPS_SQLITE_PATH", str(tmp_path / "default-internships.db"))
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    monkeypatch.delenv("EXA_API_KEY", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    # Breaker boards live for the process; every test starts closed
    internships.reset_breakers()
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Stub source items
# ---------------------------------------------------------------------
STUB_ITEMS = [
    {
        "title": "Software Engineering Intern - Summer 2026",
        "company": "Acme Corp",
        "url": "https://boards.greenhouse.io/acme/jobs/1001",
        "description": "Build APIs in Python. $40/hr. Open to juniors.",
        "location": "New York, NY",
    },
    {
        "title": "Data Science Intern",
        "company": "Globex, Inc.",
        "url": "https://jobs.lever.co/globex/abc-123",
        "description": "SQL and pandas. Summer 2026.",
        "location": "Remote",
    },
]


def stub_source(source="stub:a", **params):
    return {"kind": "stub", "source": source, "params": params}


@pytest.fixture
def stub_items():
    return [dict(i) for i in STUB_ITEMS]


@pytest.fixture
def sqlite_path(tmp_path):
    p = tmp_path / "internships.db"
    reset_db(str(p))
    return str(p)


@pytest.fixture
def store(sqlite_path):
    return PostingStore(sqlite_path)


@pytest.fixture
def make_settings(sqlite_path, stub_items):
    """
    Return a factory for **brand-new** IngestionSettings bound to the per-test DB.
    Defaults to one stub source carrying STUB_ITEMS.
    """

    def _make(sources=None, **kwargs):
        return ij_config.IngestionSettings.from_env_and_kwargs({
            "sources": sources if sources is not None else [stub_source(items=stub_items)],
            "sqlite_path": sqlite_path,
            **kwargs,
        })

    return _make


@pytest.fixture
def write_min_config(tmp_path, monkeypatch, sqlite_path, stub_items):
    cfg = {
        "timezone": "UTC",
        "jobs": [
            {
                "id": "internships-ingest",
                "module": "modules.internships",
                "trigger": {"date": "2099-01-01T00:00:00Z"},
                "kwargs": {
                    "mode": "ingest",
                    "sqlite_path": sqlite_path,
                    "sources": [stub_source(items=stub_items)],
                },
                "summary": "pytest ingest",
            },
            {
                "id": "internships-validate",
                "module": "modules.internships",
                "daily_time": "06:30",
                "kwargs": {"mode": "validate", "sqlite_path": sqlite_path},
                "timeout_sec": 600,
            },
        ],
    }
    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p


# ---------------------------------------------------------------------
# Fake HTTP for the link validator (requests.Session-shaped)
# ---------------------------------------------------------------------
class FakeResponse:
    def __init__(self, status_code=200, headers=None, text=""):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.text = text
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """
    routes: {url: FakeResponse | Exception | list of those (consumed in order)}
    Optional per-method routes with keys like ("HEAD", url).
    Every call is recorded in .calls as (method, url, kwargs).
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get((method, url), self.routes.get(url))
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse(404)
        if isinstance(route, Exception):
            raise route
        return route

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def http_timeout():
    return requests.exceptions.ConnectTimeout("connect timed out")


# ---------------------------------------------------------------------
# Fake HTTP client for the source adapters (HttpClient-shaped)
# ---------------------------------------------------------------------
class FakeClient:
    """get_json/post_json answer from dicts keyed by URL; exceptions are raised."""

    def __init__(self, get=None, post=None):
        self.get = dict(get or {})
        self.post = dict(post or {})
        self.calls = []

    def _answer(self, table, url):
        if url not in table:
            raise requests.HTTPError(f"404 for {url}")
        value = table[url]
        if isinstance(value, Exception):
            raise value
        return value

    def get_json(self, url, *, params=None, headers=None, deadline=None):
        self.calls.append(types.SimpleNamespace(method="GET", url=url, params=params, headers=headers, payload=None))
        return self._answer(self.get, url)

    def post_json(self, url, *, payload, headers=None, deadline=None):
        self.calls.append(types.SimpleNamespace(method="POST", url=url, params=None, headers=headers, payload=payload))
        return self._answer(self.post, url)

    def close(self):
        pass


@pytest.fixture
def fake_client():
    return FakeClient
