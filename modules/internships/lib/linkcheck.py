"""
Link liveness checks.

A LinkValidator follows redirects by hand (HEAD first, GET when the server
rejects HEAD) and records the full chain. It optionally scans the landing
page text, then runs the evidence through an ordered rule table. The first
matching rule decides the status.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ValidationNetworkError
from .http_client import DEFAULT_USER_AGENT
from .models import LinkStatus, ValidationRecord
from .utils import now_iso

LOG = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
# Servers that refuse HEAD outright (or block it as "forbidden") get a GET
HEAD_REJECTED_CODES = frozenset({403, 405, 501})

_BROWSER_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
_MAX_SCAN_BYTES = 512 * 1024

CLOSED_URL_PATTERN = re.compile(
    r"error=true|job-not-found|jobnotfound|position-filled|no-longer-available|"
    r"/expired\b|/job-closed|jobclosed|/404\b|not-found",
    re.IGNORECASE,
)

# Landing pages that say nothing about one specific posting
GENERIC_PATHS = frozenset({
    "",
    "/home",
    "/index",
    "/careers",
    "/jobs",
    "/open-roles",
    "/open-positions",
    "/job-search",
    "/all-jobs",
    "/search",
    "/browse",
    "/login",
    "/signin",
})

DEAD_PHRASES = (
    "the job you requested was not found",
    "the job board you were viewing is no longer active",
    "page not found",
    "job not found",
    "the page you are looking for doesn't exist",
    "this job no longer exists",
    "no longer active",
)

EXPIRED_PHRASES = (
    "no longer accepting applications",
    "no longer accepting",
    "applications are closed",
    "applications closed",
    "this position has been filled",
    "position filled",
    "job posting is no longer available",
    "position is no longer available",
    "posting has expired",
    "we are no longer hiring",
    "position has been removed",
    "job has been removed",
)


# =============================================================================
# EVIDENCE
# =============================================================================
@dataclass(frozen=True)
class Probe:
    """Everything gathered about one URL before classification."""

    url: str
    chain: tuple[str, ...]
    status_code: int | None = None
    network_error: ValidationNetworkError | None = None
    anomaly: str | None = None  # hop limit, redirect loop, redirect without Location
    dead_phrase: str | None = None
    expired_phrase: str | None = None

    @property
    def final_url(self) -> str:
        return self.chain[-1] if self.chain else self.url

    @property
    def hops(self) -> int:
        return max(0, len(self.chain) - 1)

    @property
    def is_2xx(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300 and not self.anomaly


def is_job_specific(url: str) -> bool:
    """False for homepages, bare careers/jobs indexes, search and login pages."""
    path = urlparse(url).path.lower().rstrip("/")
    if path in GENERIC_PATHS:
        return False
    return not any(path.endswith(g) for g in GENERIC_PATHS if g)


# =============================================================================
# RULE TABLE
# =============================================================================
@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Callable[[Probe], bool]
    status: LinkStatus
    confidence: float | Callable[[Probe], float]
    reason: str | Callable[[Probe], str]

    def apply(self, probe: Probe) -> tuple[float, str]:
        conf = self.confidence(probe) if callable(self.confidence) else self.confidence
        reason = self.reason(probe) if callable(self.reason) else self.reason
        return round(float(conf), 3), reason


def _network_reason(p: Probe) -> str:
    err = p.network_error
    if err is not None and err.timed_out:
        return f"network error: timeout after retries ({err.detail})"
    return f"network error: {err.detail if err else 'unknown'}"


def _ok_confidence(p: Probe) -> float:
    if p.hops == 0:
        return 0.95
    return max(0.5, 0.85 - 0.1 * (p.hops - 1))


def _code(p: Probe) -> int:
    return p.status_code or 0


DEFAULT_RULES: tuple[Rule, ...] = (
    Rule("network_error", lambda p: p.network_error is not None, LinkStatus.MAYBE_VALID, 0.2, _network_reason),
    Rule(
        "not_found",
        lambda p: _code(p) in (404, 410),
        LinkStatus.DEAD,
        0.95,
        lambda p: f"HTTP {p.status_code}: page not found",
    ),
    Rule(
        "closed_url",
        lambda p: bool(CLOSED_URL_PATTERN.search(p.final_url)),
        LinkStatus.DEAD,
        0.85,
        lambda p: f"final URL looks closed: {p.final_url}",
    ),
    Rule(
        "dead_content",
        lambda p: p.dead_phrase is not None,
        LinkStatus.DEAD,
        0.8,
        lambda p: f"page says {p.dead_phrase!r}",
    ),
    Rule(
        "expired_content",
        lambda p: p.expired_phrase is not None,
        LinkStatus.EXPIRED,
        0.75,
        lambda p: f"page says {p.expired_phrase!r}",
    ),
    Rule(
        "server_error",
        lambda p: 500 <= _code(p) < 600,
        LinkStatus.MAYBE_VALID,
        0.4,
        lambda p: f"HTTP {p.status_code}: server error",
    ),
    Rule(
        "client_error",
        lambda p: 400 <= _code(p) < 500,
        LinkStatus.MAYBE_VALID,
        0.3,
        lambda p: f"HTTP {p.status_code}: access blocked or rejected",
    ),
    Rule(
        "generic_redirect",
        lambda p: p.is_2xx and p.hops > 0 and not is_job_specific(p.final_url),
        LinkStatus.EXPIRED,
        0.7,
        lambda p: f"redirected ({p.hops} hops) to a generic page: {p.final_url}",
    ),
    Rule(
        "ok",
        lambda p: p.is_2xx and is_job_specific(p.final_url),
        LinkStatus.OK,
        _ok_confidence,
        lambda p: "reachable" if p.hops == 0 else f"reachable after {p.hops} redirect(s)",
    ),
    Rule(
        "fallback",
        lambda p: True,
        LinkStatus.MAYBE_VALID,
        0.3,
        lambda p: p.anomaly or f"inconclusive (HTTP {p.status_code})",
    ),
)


def classify(probe: Probe, rules: Sequence[Rule] = DEFAULT_RULES) -> ValidationRecord:
    for rule in rules:
        if rule.predicate(probe):
            confidence, reason = rule.apply(probe)
            return ValidationRecord(
                status=rule.status,
                http_code=probe.status_code,
                final_url=probe.final_url,
                redirect_chain=probe.chain,
                confidence_score=confidence,
                reason=reason,
                last_checked_at=now_iso(),
                rule=rule.name,
            )
    raise ValueError("rule table has no catch-all rule")


# =============================================================================
# HTTP
# =============================================================================
def build_session(
    attempts: int = 3,
    backoff_factor: float = 0.5,
    backoff_jitter: float = 0.3,
    pool_maxsize: int = 20,
) -> requests.Session:
    """
    Session whose adapter retries connect/read failures only (never on a status
    code) with exponential backoff + jitter. Redirects are followed by hand.
    """
    retries = max(0, attempts - 1)
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=0,
        other=0,
        redirect=0,
        backoff_factor=backoff_factor,
        backoff_jitter=backoff_jitter,
        allowed_methods=frozenset(["HEAD", "GET"]),
        raise_on_status=False,
        raise_on_redirect=False,
        respect_retry_after_header=False,
    )
    session = requests.Session()
    session.headers.update(_BROWSER_HEADERS)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=pool_maxsize)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class LinkValidator:
    """
    Args:
        client: requests.Session-like object (needs .request()); built with
            build_session() when omitted.
        rules: replacement rule table (must end with a catch-all).
    """

    def __init__(
        self,
        client: Any = None,
        *,
        max_hops: int = 5,
        attempts: int = 3,
        timeout_sec: float = 10.0,
        backoff_factor: float = 0.5,
        backoff_jitter: float = 0.3,
        scan_content: bool = False,
        rules: Sequence[Rule] = DEFAULT_RULES,
    ) -> None:
        self.client = client or build_session(attempts, backoff_factor, backoff_jitter)
        self.max_hops = max_hops
        self.timeout_sec = float(timeout_sec)
        self.scan_content = scan_content
        self.rules = tuple(rules)

    def validate(self, url: str, *, deadline: float | None = None) -> ValidationRecord:
        return classify(self.probe(url, deadline=deadline), self.rules)

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close:
            close()

    # ---- evidence gathering ----

    def probe(self, url: str, *, deadline: float | None = None) -> Probe:
        chain = [url]
        current = url
        try:
            while True:
                resp = self._request_hop(current, deadline)
                code = resp.status_code
                if code not in REDIRECT_STATUS_CODES:
                    break
                location = resp.headers.get("Location")
                if not location:
                    return Probe(url, tuple(chain), code, anomaly=f"HTTP {code} redirect without Location")
                nxt = urljoin(current, location)
                if nxt in chain:
                    return Probe(url, tuple(chain), code, anomaly=f"redirect loop at {nxt}")
                chain.append(nxt)
                if len(chain) - 1 > self.max_hops:
                    return Probe(url, tuple(chain), code, anomaly=f"more than {self.max_hops} redirects")
                current = nxt
        except ValidationNetworkError as e:
            return Probe(url, tuple(chain), network_error=e)

        dead_phrase = expired_phrase = None
        if self.scan_content and 200 <= code < 300:
            dead_phrase, expired_phrase = self._scan(current, deadline)
        return Probe(url, tuple(chain), code, dead_phrase=dead_phrase, expired_phrase=expired_phrase)

    def _request_hop(self, url: str, deadline: float | None) -> Any:
        resp = self._send("HEAD", url, deadline)
        if resp.status_code in HEAD_REJECTED_CODES:
            resp = self._send("GET", url, deadline)
        return resp

    def _send(self, method: str, url: str, deadline: float | None) -> Any:
        try:
            resp = self.client.request(
                method,
                url,
                allow_redirects=False,
                timeout=self._timeout(url, deadline),
                stream=(method == "GET"),
            )
        except requests.Timeout as e:
            raise ValidationNetworkError(url, repr(e), timed_out=True) from e
        except requests.RequestException as e:
            raise ValidationNetworkError(url, repr(e), timed_out="timed out" in str(e).lower()) from e
        if method == "GET":
            # Only the status matters on a hop; don't download the body
            resp.close()
        return resp

    def _timeout(self, url: str, deadline: float | None) -> float:
        if deadline is None:
            return self.timeout_sec
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ValidationNetworkError(url, "run deadline exceeded", timed_out=True)
        return min(self.timeout_sec, remaining)

    def _scan(self, url: str, deadline: float | None) -> tuple[str | None, str | None]:
        """(dead_phrase, expired_phrase) from the page's visible text; (None, None) if unreadable."""
        try:
            resp = self.client.request(
                "GET",
                url,
                allow_redirects=False,
                timeout=self._timeout(url, deadline),
            )
            body = (resp.text or "")[:_MAX_SCAN_BYTES]
        except (requests.RequestException, ValidationNetworkError) as e:
            LOG.debug("content scan skipped for %s: %r", url, e)
            return None, None
        return scan_text(visible_text(body))


def visible_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html5lib")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ")).strip().lower()


def scan_text(text: str) -> tuple[str | None, str | None]:
    dead = next((p for p in DEAD_PHRASES if p in text), None)
    expired = next((p for p in EXPIRED_PHRASES if p in text), None)
    return dead, expired
