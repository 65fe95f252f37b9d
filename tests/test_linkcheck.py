# tests/test_linkcheck.py
import time

import pytest
import requests

from modules.internships.lib import linkcheck
from modules.internships.lib.linkcheck import LinkValidator, Probe, Rule, classify
from modules.internships.lib.models import LinkStatus

JOB = "https://acme.example.com/jobs/123"


def _validator(session, **kw):
    return LinkValidator(session, **kw)


# ----------------------------------------------------------------------
# 1. Classification table
# ----------------------------------------------------------------------
def test_404_is_dead(fake_session, fake_response):
    rec = _validator(fake_session({JOB: fake_response(404)})).validate(JOB)
    assert rec.status is LinkStatus.DEAD
    assert rec.rule == "not_found"
    assert rec.http_code == 404
    assert rec.is_active is False


def test_direct_200_is_ok_with_top_confidence(fake_session, fake_response):
    rec = _validator(fake_session({JOB: fake_response(200)})).validate(JOB)
    assert rec.status is LinkStatus.OK
    assert rec.final_url == JOB
    assert rec.redirect_chain == (JOB,)
    assert rec.confidence_score == 0.95


def test_redirected_ok_has_lower_confidence(fake_session, fake_response):
    target = "https://boards.greenhouse.io/acme/jobs/999"
    session = fake_session({
        JOB: fake_response(301, {"Location": target}),
        target: fake_response(200),
    })
    rec = _validator(session).validate(JOB)
    assert rec.status is LinkStatus.OK
    assert rec.final_url == target
    assert rec.confidence_score < 0.95
    assert rec.redirect_chain == (JOB, target)


def test_two_hops_to_generic_careers_page_is_expired(fake_session, fake_response):
    session = fake_session({
        JOB: fake_response(301, {"Location": "https://acme.example.com/jobs"}),
        "https://acme.example.com/jobs": fake_response(302, {"Location": "/careers"}),
        "https://acme.example.com/careers": fake_response(200),
    })
    rec = _validator(session).validate(JOB)
    assert rec.status is LinkStatus.EXPIRED
    assert rec.rule == "generic_redirect"
    assert rec.final_url == "https://acme.example.com/careers"
    assert len(rec.redirect_chain) == 3


def test_timeout_after_retries_is_maybe_valid(fake_session, http_timeout):
    rec = _validator(fake_session({JOB: http_timeout})).validate(JOB)
    assert rec.status is LinkStatus.MAYBE_VALID
    assert rec.rule == "network_error"
    assert "timeout" in rec.reason
    assert rec.http_code is None
    assert rec.is_active is None


def test_connection_error_is_network_error(fake_session):
    rec = _validator(fake_session({JOB: requests.ConnectionError("Name or service not known")})).validate(JOB)
    assert rec.status is LinkStatus.MAYBE_VALID
    assert rec.reason.startswith("network error")


@pytest.mark.parametrize(
    "code, status, rule",
    [
        (410, LinkStatus.DEAD, "not_found"),
        (503, LinkStatus.MAYBE_VALID, "server_error"),
        (429, LinkStatus.MAYBE_VALID, "client_error"),
    ],
)
def test_status_codes(fake_session, fake_response, code, status, rule):
    rec = _validator(fake_session({JOB: fake_response(code)})).validate(JOB)
    assert (rec.status, rec.rule) == (status, rule)


def test_redirect_to_closed_url_is_dead(fake_session, fake_response):
    closed = "https://acme.example.com/jobs/job-not-found?error=true"
    session = fake_session({JOB: fake_response(302, {"Location": closed}), closed: fake_response(200)})
    rec = _validator(session).validate(JOB)
    assert rec.status is LinkStatus.DEAD
    assert rec.rule == "closed_url"


def test_direct_200_on_generic_page_is_inconclusive(fake_session, fake_response):
    url = "https://acme.example.com/careers"
    rec = _validator(fake_session({url: fake_response(200)})).validate(url)
    assert rec.status is LinkStatus.MAYBE_VALID
    assert rec.rule == "fallback"


# ----------------------------------------------------------------------
# 2. Redirect following
# ----------------------------------------------------------------------
def test_head_rejected_falls_back_to_get(fake_session, fake_response):
    get_resp = fake_response(200)
    session = fake_session({("HEAD", JOB): fake_response(405), ("GET", JOB): get_resp})
    rec = _validator(session).validate(JOB)

    assert rec.status is LinkStatus.OK
    assert [c[0] for c in session.calls] == ["HEAD", "GET"]
    assert session.calls[1][2]["stream"] is True
    assert get_resp.closed is True


def test_redirects_are_followed_by_hand(fake_session, fake_response):
    session = fake_session({JOB: fake_response(200)})
    _validator(session, timeout_sec=7).validate(JOB)
    (_, _, kwargs), = session.calls
    assert kwargs["allow_redirects"] is False
    assert kwargs["timeout"] == 7


def test_redirect_loop_is_reported(fake_session, fake_response):
    other = "https://acme.example.com/jobs/124"
    session = fake_session({
        JOB: fake_response(302, {"Location": other}),
        other: fake_response(302, {"Location": JOB}),
    })
    rec = _validator(session).validate(JOB)
    assert rec.status is LinkStatus.MAYBE_VALID
    assert "loop" in rec.reason


def test_hop_limit(fake_session, fake_response):
    urls = [f"https://acme.example.com/jobs/{n}" for n in range(6)]
    session = fake_session({u: fake_response(302, {"Location": urls[i + 1]}) for i, u in enumerate(urls[:-1])})
    rec = _validator(session, max_hops=2).validate(urls[0])
    assert rec.status is LinkStatus.MAYBE_VALID
    assert "more than 2 redirects" in rec.reason
    assert len(session.calls) == 3


def test_redirect_without_location(fake_session, fake_response):
    rec = _validator(fake_session({JOB: fake_response(302)})).validate(JOB)
    assert rec.status is LinkStatus.MAYBE_VALID
    assert "without Location" in rec.reason


def test_expired_deadline_makes_no_request(fake_session, fake_response):
    session = fake_session({JOB: fake_response(200)})
    rec = _validator(session).validate(JOB, deadline=time.monotonic() - 1)
    assert rec.rule == "network_error"
    assert "timeout" in rec.reason
    assert session.calls == []


# ----------------------------------------------------------------------
# 3. Content scan
# ----------------------------------------------------------------------
def test_content_scan_detects_filled_position(fake_session, fake_response):
    html = "<html><body><h1>Intern</h1><p>This position has been filled.</p></body></html>"
    session = fake_session({("HEAD", JOB): fake_response(200), ("GET", JOB): fake_response(200, text=html)})
    rec = _validator(session, scan_content=True).validate(JOB)
    assert rec.status is LinkStatus.EXPIRED
    assert rec.rule == "expired_content"


def test_content_scan_ignores_script_text(fake_session, fake_response):
    html = "<script>var msg = 'page not found';</script><p>Apply now</p>"
    session = fake_session({("HEAD", JOB): fake_response(200), ("GET", JOB): fake_response(200, text=html)})
    rec = _validator(session, scan_content=True).validate(JOB)
    assert rec.status is LinkStatus.OK


def test_content_scan_failure_is_not_fatal(fake_session, fake_response):
    session = fake_session({("HEAD", JOB): fake_response(200), ("GET", JOB): requests.ConnectionError("reset")})
    rec = _validator(session, scan_content=True).validate(JOB)
    assert rec.status is LinkStatus.OK


# ----------------------------------------------------------------------
# 4. Helpers, custom rules and the retrying session
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "url, specific",
    [
        ("https://acme.example.com/", False),
        ("https://acme.example.com/careers/", False),
        ("https://acme.example.com/en/jobs", False),
        ("https://acme.example.com/jobs/123", True),
        ("https://boards.greenhouse.io/acme/jobs/999", True),
    ],
)
def test_is_job_specific(url, specific):
    assert linkcheck.is_job_specific(url) is specific


def test_custom_rule_table_is_honored():
    rules = (Rule("always_dead", lambda p: True, LinkStatus.DEAD, 1.0, "policy"),)
    rec = classify(Probe(JOB, (JOB,), 200), rules)
    assert (rec.status, rec.rule, rec.reason) == (LinkStatus.DEAD, "always_dead", "policy")


def test_build_session_retries_network_failures_only():
    session = linkcheck.build_session(attempts=3, backoff_factor=0.5, backoff_jitter=0.3)
    retry = session.get_adapter("https://example.com").max_retries

    assert retry.total == 2
    assert retry.connect == 2 and retry.read == 2
    assert retry.status == 0
    assert retry.redirect == 0
    assert retry.backoff_factor == 0.5
    assert retry.backoff_jitter == 0.3
    assert "HEAD" in retry.allowed_methods and "GET" in retry.allowed_methods
    assert "Mozilla" in session.headers["User-Agent"]


def test_close_closes_client(fake_session):
    session = fake_session()
    _validator(session).close()
    assert session.closed is True
