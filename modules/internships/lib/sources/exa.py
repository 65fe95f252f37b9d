# modules/internships/lib/sources/exa.py
from __future__ import annotations

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

from ..canonical import ATS_HOSTS, infer_cycle
from ..models import FetchQuery, FetchResult, RawPosting
from ..utils import as_str_list, host_of
from .base import BaseSource
from .registry import register

SEARCH_URL = "https://api.exa.ai/search"

DEFAULT_EXCLUDE_DOMAINS = (
    "indeed.com",
    "glassdoor.com",
    "linkedin.com",
    "monster.com",
    "ziprecruiter.com",
)

DEFAULT_ROLES = ("software engineering", "data science", "product management")
PROGRAM_QUERIES = (
    "{cycle} diversity internship program for students",
    "{cycle} rotational internship program",
    "{cycle} early insight program for sophomores",
)

# "Software Engineer Intern at Stripe" / "... at Jane Street | Careers"
_AT_COMPANY = re.compile(r"\bat\s+([A-Z][\w&.'\- ]{1,60}?)(?:\s*[|\-–(,]|$)")


def derive_company(title: str, url: str, domain_map: dict[str, str] | None = None) -> str:
    """
    Company for a search hit: domain mapping first, then "... at X" in the
    title, then the employer label of the hostname (ATS hosts use the first path segment).
    """
    host = host_of(url)
    for domain, name in (domain_map or {}).items():
        d = domain.lower()
        if host == d or host.endswith("." + d):
            return name

    m = _AT_COMPANY.search(title or "")
    if m:
        return m.group(1).strip()

    if not host:
        return ""
    if any(host == ats or host.endswith("." + ats) for ats in ATS_HOSTS):
        first = next((seg for seg in urlparse(url).path.split("/") if seg), "")
        return first.replace("-", " ").title() if first else ""
    labels = [p for p in host.split(".") if p not in {"careers", "jobs", "boards", "apply", "www"}]
    return labels[-2].title() if len(labels) >= 2 else (labels[0].title() if labels else "")


@register
class ExaSource(BaseSource):
    """
    Exa neural web search for internship pages.

    params:
      api_key_env: str = "EXA_API_KEY"
      exclude_domains: list[str]      # default: the big aggregators
      include_domains: list[str]      # optional allow-list
      company_domains: {domain: name} # company attribution for known career sites
      roles: list[str]                # role phrases for cycle queries
      queries: list[str]              # explicit queries, override everything else
      lookback_days: int = 90
      per_query_results: int = 10

    Query plan: one query per requested company; with no companies, one
    "<cycle> <role> internship" query per role; plus program queries when
    include_programs is set.
    """

    kind = "exa"

    def _fetch(self, query: FetchQuery) -> FetchResult:
        result = FetchResult(source=self.source)
        key_env = str(self.params.get("api_key_env") or "EXA_API_KEY")
        api_key = os.getenv(key_env)
        if not api_key:
            result.errors.append(self.error(f"missing API key (env {key_env})"))
            return result

        now = datetime.now(timezone.utc)
        lookback = int(self.params.get("lookback_days") or 90)
        per_query = int(self.params.get("per_query_results") or 10)
        exclude = as_str_list(self.params.get("exclude_domains")) or list(DEFAULT_EXCLUDE_DOMAINS)
        include = as_str_list(self.params.get("include_domains"))
        domain_map = dict(self.params.get("company_domains") or {})
        seen: set[str] = set()

        for text in self.plan_queries(query, now=now):
            remaining = query.max_results - len(result.postings)
            if remaining <= 0:
                break
            body: dict[str, Any] = {
                "query": text,
                "type": "neural",
                "useAutoprompt": True,
                "numResults": min(per_query, remaining),
                "excludeDomains": exclude,
                "startPublishedDate": (now - timedelta(days=lookback)).strftime("%Y-%m-%dT00:00:00.000Z"),
                "contents": {"text": True},
            }
            if include:
                body["includeDomains"] = include
                body.pop("excludeDomains")

            try:
                data = self.client.post_json(
                    SEARCH_URL,
                    payload=body,
                    headers={"x-api-key": api_key, "Content-Type": "application/json"},
                    deadline=query.deadline,
                )
            except Exception as e:
                result.errors.append(self.error(f"query {text!r}: {e!r}"))
                continue

            for hit in (data or {}).get("results") or []:
                posting = self._to_raw(hit, domain_map, text)
                if posting is None or posting.url in seen:
                    continue
                seen.add(posting.url)
                result.postings.append(posting)
                if len(result.postings) >= query.max_results:
                    break
        return result

    def plan_queries(self, query: FetchQuery, *, now: datetime) -> list[str]:
        explicit = as_str_list(self.params.get("queries"))
        if explicit:
            return explicit
        cycle = infer_cycle("", now)
        if query.companies:
            queries = [f"{c} {cycle} internship" for c in query.companies]
        else:
            roles = as_str_list(self.params.get("roles")) or list(DEFAULT_ROLES)
            queries = [f"{cycle} {r} internship" for r in roles]
        if query.include_programs:
            queries.extend(q.format(cycle=cycle) for q in PROGRAM_QUERIES)
        return queries

    def _to_raw(self, hit: Any, domain_map: dict[str, str], query_text: str) -> RawPosting | None:
        if not isinstance(hit, dict):
            return None
        url = str(hit.get("url") or "").strip()
        title = str(hit.get("title") or "").strip()
        if not url or not title:
            return None
        return self.raw(
            title=title,
            company=derive_company(title, url, domain_map),
            url=url,
            description=str(hit.get("text") or hit.get("summary") or ""),
            posted_at=hit.get("publishedDate"),
            payload={"id": hit.get("id"), "score": hit.get("score"), "query": query_text},
        )
