"""
Canonicalizer: RawPosting -> NormalizedPosting.

Each step is a small function so it can be tested on its own:

  - classify_role / extract_skills / extract_majors / extract_eligibility
  - detect_remote / normalize_location / parse_pay / classify_work_type
  - detect_program / infer_cycle / parse_deadline / clean_url
  - content_hash and its three key normalizers (company, title, location)

Only missing title, company or url is an error; everything else degrades to
unknown/empty so partial postings still make it into the store.
"""

from __future__ import annotations

import hashlib
import html
import re
import unicodedata
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

from . import vocab
from .errors import NormalizationError
from .models import (
    Company,
    EligibilityYear,
    Major,
    NormalizedPosting,
    PayType,
    RawPosting,
    Role,
    WorkType,
)
from .utils import host_of, parse_iso, to_iso

_WS = re.compile(r"\s+")
_DROP_CHARS = re.compile(r"['’.]")
_PUNCT = re.compile(r"[^a-z0-9\s]")

_LEGAL_SUFFIXES = frozenset({
    "inc",
    "incorporated",
    "corp",
    "corporation",
    "co",
    "company",
    "llc",
    "llp",
    "lp",
    "ltd",
    "limited",
    "plc",
    "gmbh",
    "ag",
})

# Normalized form -> normalized identity. Values must themselves be fixed points.
COMPANY_ALIASES: dict[str, str] = {
    "facebook": "meta",
    "meta platforms": "meta",
    "alphabet": "google",
    "amazoncom": "amazon",
    "amazon web services": "amazon",
    "microsoft research": "microsoft",
}

# Hosts that belong to job boards / ATS vendors rather than the employer
ATS_HOSTS = (
    "greenhouse.io",
    "lever.co",
    "myworkdayjobs.com",
    "workday.com",
    "ashbyhq.com",
    "smartrecruiters.com",
    "icims.com",
    "jobvite.com",
    "github.com",
    "simplify.jobs",
    "linkedin.com",
    "indeed.com",
)

TRACKING_PARAMS = frozenset({
    "gh_src",
    "gh_jid_src",
    "ref",
    "ref_id",
    "source",
    "fbclid",
    "gclid",
    "_ga",
    "_gid",
    "tracking",
    "track",
    "campaign",
    "lever-source",
    "lever-origin",
})

_SEASON_YEAR = re.compile(r"\b(?:summer|fall|autumn|spring|winter)\s+(?:\d{4}|\d{2})\b")
_CLASS_OF = re.compile(r"\bclass of\s+\d{2,4}\b")
_BARE_YEAR = re.compile(r"\b(?:19|20)\d{2}\b")
_INTERN_FOLD = (
    (re.compile(r"\binternships?\b|\binterns\b"), "intern"),
    (re.compile(r"\bco op\b"), "coop"),
)


# =============================================================================
# ENTRY POINT
# =============================================================================
def normalize(raw: RawPosting, *, now: datetime | None = None) -> NormalizedPosting:
    """
    Convert one provider record into the canonical shape.

    Raises:
        NormalizationError: title, company or url is missing/blank.
    """
    title = _squash(raw.title)
    company_name = _squash(raw.company)
    url = (raw.url or "").strip()

    missing = [name for name, value in (("title", title), ("company", company_name), ("url", url)) if not value]
    if missing:
        raise NormalizationError(
            f"missing mandatory field(s): {', '.join(missing)}",
            source=raw.source,
            url=url,
        )

    description = clean_description(raw.description)
    text = f"{title}\n{description}"

    is_remote = detect_remote(raw.location, title)
    location = normalize_location(raw.location, remote=is_remote)
    pay_min, pay_max, pay_currency, pay_type = parse_pay(text)
    has_pay = pay_min is not None
    posted = parse_iso(raw.posted_at) or now or datetime.now(timezone.utc)
    eligibility, grad_years = extract_eligibility(text)
    company = resolve_company(company_name, url, raw.payload.get("company_domain") if raw.payload else None)

    return NormalizedPosting(
        title=title,
        company=company,
        exact_role=exact_role(title),
        normalized_role=classify_role(title, description),
        relevant_majors=extract_majors(text),
        skills=extract_skills(text),
        eligibility_years=eligibility,
        graduation_years=grad_years,
        work_type=classify_work_type(text, has_pay=has_pay),
        pay_rate_min=pay_min,
        pay_rate_max=pay_max,
        pay_rate_currency=pay_currency,
        pay_rate_type=pay_type,
        location=location,
        is_remote=is_remote,
        is_program_specific=detect_program(text),
        internship_cycle=infer_cycle(text, posted),
        application_url=clean_url(url),
        posted_at=to_iso(posted) or "",
        application_deadline=parse_deadline(raw.application_deadline, description),
        description=description,
        source=raw.source,
        source_type=raw.source_type,
        content_hash=content_hash(company.normalized_name, title, location, is_remote=is_remote),
        payload=dict(raw.payload or {}),
    )


# =============================================================================
# 1. ROLE
# =============================================================================
def classify_role(title: str, description: str = "") -> Role:
    """First table row matching the title wins; the description is only consulted if the title is silent."""
    for text in (title or "", description or ""):
        if not text:
            continue
        for role, pattern in vocab.ROLE_PATTERNS:
            if pattern.search(text):
                return role
    return Role.UNKNOWN


def exact_role(title: str) -> str:
    cleaned = title
    for pattern in vocab.EXACT_ROLE_NOISE:
        cleaned = pattern.sub("", cleaned)
    cleaned = _squash(cleaned).strip(" -–—|,:")
    return cleaned or _squash(title)


# =============================================================================
# 2. SKILLS / MAJORS
# =============================================================================
def extract_skills(text: str) -> frozenset[str]:
    if not text:
        return frozenset()
    return frozenset(name for name, pattern in vocab.SKILL_PATTERNS if pattern.search(text))


def extract_majors(text: str) -> frozenset[Major]:
    if not text:
        return frozenset()
    return frozenset(major for major, pattern in vocab.MAJOR_PATTERNS if pattern.search(text))


# =============================================================================
# 3. ELIGIBILITY / LOCATION / PAY / PROGRAM / CYCLE / DEADLINE
# =============================================================================
def extract_eligibility(text: str) -> tuple[frozenset[EligibilityYear], frozenset[str]]:
    """Class standings mentioned, plus explicit graduation years ("class of 2027")."""
    if not text:
        return frozenset(), frozenset()
    years = frozenset(y for y, pattern in vocab.ELIGIBILITY_PATTERNS if pattern.search(text))
    grads = frozenset(m.group(1) for pattern in vocab.GRADUATION_YEAR_PATTERNS for m in pattern.finditer(text))
    return years, grads


def detect_remote(location: str, title: str = "") -> bool:
    loc = location or ""
    if vocab.REMOTE_PATTERN.search(loc):
        return True
    return bool(title and vocab.REMOTE_PATTERN.search(title) and not vocab.HYBRID_PATTERN.search(title))


def normalize_location(raw: str, *, remote: bool = False) -> str:
    """Display form: alias table first, bare remote markers collapse to 'Remote'."""
    text = _squash(raw).strip(" ,;|")
    if not text:
        return "Remote" if remote else ""
    key = _key(text)
    if key in vocab.LOCATION_ALIASES:
        return vocab.LOCATION_ALIASES[key]
    if key in {"remote", "anywhere", "remote us", "remote usa", "us remote", "usa remote", "united states remote"}:
        return "Remote"
    return text


def parse_pay(text: str) -> tuple[float | None, float | None, str | None, PayType]:
    """
    Best-effort pay extraction: "$25-$35/hr", "$80k - 100k per year", "£2,000 a month".
    Returns (min, max, currency, type); (None, None, None, UNKNOWN) when nothing parses.
    """
    if not text:
        return None, None, None, PayType.UNKNOWN

    m = vocab.PAY_RANGE_PATTERN.search(text)
    if m:
        currency = _currency(m.group(1))
        hi_k = bool(m.group(7))
        lo = _amount(m.group(2), m.group(3), m.group(4) or (hi_k and _int_part(m.group(2)) < 1000))
        hi = _amount(m.group(5), m.group(6), hi_k)
        unit = m.group(8)
    else:
        m = vocab.PAY_SINGLE_PATTERN.search(text)
        if not m:
            if vocab.STIPEND_PATTERN.search(text):
                return None, None, None, PayType.STIPEND
            return None, None, None, PayType.UNKNOWN
        currency = _currency(m.group(1))
        lo = hi = _amount(m.group(2), m.group(3), m.group(4))
        unit = m.group(5)

    if lo > hi:
        lo, hi = hi, lo
    window = text[m.start() : m.end() + 60]
    pay_type = _pay_type(unit, hi, window)
    if unit is None and hi < 7:
        # "$1 to $5" with no unit is almost never a rate
        return None, None, None, PayType.UNKNOWN
    return lo, hi, currency, pay_type


def classify_work_type(text: str, *, has_pay: bool = False) -> WorkType:
    if vocab.UNPAID_PATTERN.search(text or ""):
        return WorkType.UNPAID
    if vocab.STIPEND_PATTERN.search(text or ""):
        return WorkType.STIPEND
    if has_pay or vocab.PAID_PATTERN.search(text or ""):
        return WorkType.PAID
    return WorkType.UNKNOWN


def detect_program(text: str) -> bool:
    return bool(text and vocab.PROGRAM_PATTERN.search(text))


def infer_cycle(text: str, posted_at: datetime | None = None) -> str:
    """
    "Summer 2026" from the text; otherwise inferred from the posting month:
    Sep-Dec -> next summer, Jan-Apr -> this summer, May-Aug -> this fall.
    """
    m = vocab.CYCLE_PATTERN.search(text or "")
    if m:
        season = m.group(1).lower()
        season = "Fall" if season == "autumn" else season.capitalize()
        year = int(m.group(2))
        if year < 100:
            year += 2000
        return f"{season} {year}"

    posted = posted_at or datetime.now(timezone.utc)
    if posted.month >= 9:
        return f"Summer {posted.year + 1}"
    if posted.month <= 4:
        return f"Summer {posted.year}"
    return f"Fall {posted.year}"


def parse_deadline(explicit: str | None, description: str = "") -> str | None:
    """ISO date (YYYY-MM-DD) from the provider field or a "deadline: ..." phrase; None if unparseable."""
    if explicit:
        parsed = _parse_date_text(explicit)
        if parsed:
            return parsed
    m = vocab.DEADLINE_PATTERN.search(description or "")
    return _parse_date_text(m.group(1)) if m else None


# =============================================================================
# 4. CONTENT HASH
# =============================================================================
def content_hash(company: str, title: str, location: str, *, is_remote: bool = False) -> str:
    """sha256 over the normalized (company | title | location) triple."""
    key = "|".join((
        normalize_company_name(company),
        normalize_title_key(title),
        normalize_location_key(location, is_remote=is_remote),
    ))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def normalize_company_name(name: str) -> str:
    """'Google, Inc.' / 'GOOGLE  LLC' / 'google' -> 'google'. Idempotent."""
    s = _key(name)
    tokens = s.split()
    while len(tokens) > 1 and tokens[-1] in _LEGAL_SUFFIXES:
        tokens.pop()
    s = " ".join(tokens)
    return COMPANY_ALIASES.get(s, s)


def normalize_title_key(title: str) -> str:
    """
    'SWE Intern - Summer 2026' -> 'swe intern'. Season/year, class-of and bare
    years are stripped until nothing changes, so the result is a fixed point.
    """
    s = _key(title)
    while True:
        out = _SEASON_YEAR.sub(" ", s)
        out = _CLASS_OF.sub(" ", out)
        out = _BARE_YEAR.sub(" ", out)
        for pattern, repl in _INTERN_FOLD:
            out = pattern.sub(repl, out)
        out = _WS.sub(" ", out).strip()
        if out == s:
            return out
        s = out


def normalize_location_key(location: str, *, is_remote: bool = False) -> str:
    if is_remote:
        return "remote"
    display = normalize_location(location)
    return "remote" if display == "Remote" else _key(display)


# =============================================================================
# COMPANY / URL / TEXT HELPERS
# =============================================================================
def resolve_company(name: str, url: str, domain_hint: str | None = None) -> Company:
    domain = (domain_hint or "").strip().lower() or None
    if not domain:
        host = host_of(url)
        if host and not any(host == ats or host.endswith("." + ats) for ats in ATS_HOSTS):
            domain = host
    return Company(name=_squash(name), normalized_name=normalize_company_name(name), domain=domain)


def clean_url(url: str) -> str:
    """Drop tracking query params (utm_*, gh_src, fbclid, ...) and the fragment."""
    parsed = urlparse((url or "").strip())
    if not parsed.scheme:
        return (url or "").strip()
    kept = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not (k.lower().startswith("utm_") or k.lower() in TRACKING_PARAMS)
    ]
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, parsed.params, urlencode(kept), ""))


def clean_description(raw: str | None) -> str:
    """Plain text from provider HTML (Greenhouse ships entity-escaped HTML)."""
    if not raw:
        return ""
    text = html.unescape(raw) if "&lt;" in raw else raw
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html5lib").get_text(" ", strip=True)
    return _squash(text)


def _squash(s: str | None) -> str:
    return _WS.sub(" ", s or "").strip()


def _key(s: str | None) -> str:
    """lowercase ASCII, '&' -> 'and', dots/apostrophes dropped, other punctuation -> space."""
    s = unicodedata.normalize("NFKD", s or "")
    s = "".join(ch for ch in s if not unicodedata.combining(ch)).lower()
    s = s.replace("&", " and ")
    s = _DROP_CHARS.sub("", s)
    s = _PUNCT.sub(" ", s)
    return _WS.sub(" ", s).strip()


def _currency(token: str) -> str:
    return vocab.CURRENCY_SYMBOLS.get(token, token.upper())


def _int_part(digits: str) -> int:
    return int(digits.replace(",", ""))


def _amount(digits: str, fraction: str | None, thousands: object) -> float:
    value = float(f"{_int_part(digits)}.{fraction}") if fraction else float(_int_part(digits))
    return value * 1000 if thousands else value


def _pay_type(unit: str | None, high: float, window: str) -> PayType:
    if unit:
        u = unit.lower()
        if u in {"hour", "hr", "h"}:
            return PayType.HOURLY
        if u in {"month", "mo"}:
            return PayType.MONTHLY
        if u in {"year", "yr", "annum"}:
            return PayType.YEARLY
        return PayType.UNKNOWN
    if vocab.STIPEND_PATTERN.search(window):
        return PayType.STIPEND
    for pattern, label in vocab.PAY_UNIT_HINTS:
        if pattern.search(window):
            return PayType(label)
    if high <= 300:
        return PayType.HOURLY
    if high >= 15000:
        return PayType.YEARLY
    return PayType.UNKNOWN


def _parse_date_text(text: str) -> str | None:
    parsed = parse_iso(text)
    if parsed:
        return parsed.date().isoformat()
    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", text.strip(), flags=re.IGNORECASE)
    cleaned = _WS.sub(" ", cleaned.replace(",", " ").replace(".", " ")).strip()
    for fmt in vocab.DEADLINE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None
