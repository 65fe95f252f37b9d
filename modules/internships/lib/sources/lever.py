# modules/internships/lib/sources/lever.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from ..models import FetchQuery, FetchResult, RawPosting
from ..utils import truthy
from .base import BaseSource, company_filter, is_internship_title, wanted
from .registry import register

_POSTINGS_API = "https://api.lever.co/v0/postings/{site}"


@dataclass(frozen=True)
class _Site:
    site: str
    company: str


def _normalize_sites(raw: object) -> list[_Site]:
    """
    Accept either:
      - ["palantir", "acme"]
      - [["palantir", "Palantir"], {"site": "acme", "company": "Acme"}]
    """
    out: list[_Site] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        site, company = "", ""
        if isinstance(item, str):
            site = item
        elif isinstance(item, (list, tuple)) and item:
            site = str(item[0])
            company = str(item[1]) if len(item) > 1 else ""
        elif isinstance(item, dict):
            site = str(item.get("site") or "")
            company = str(item.get("company") or "")
        site = site.strip()
        if site:
            out.append(_Site(site, company.strip() or site.replace("-", " ").title()))
    return out


def _is_intern_commitment(categories: dict[str, Any]) -> bool:
    commitment = str(categories.get("commitment") or "")
    return is_internship_title(commitment)


@register
class LeverSource(BaseSource):
    """
    Lever public postings API (JSON mode).

    params:
      sites: list of Lever site names or {"site", "company"} objects (REQUIRED)
      intern_only: bool = true   # title or commitment must read as an internship
      delay_seconds: float = 0   # polite pause between sites

    Fields used: text, hostedUrl, createdAt (epoch ms), categories.location,
    categories.commitment, descriptionPlain (+ additionalPlain).
    """

    kind = "lever"

    def _fetch(self, query: FetchQuery) -> FetchResult:
        result = FetchResult(source=self.source)
        sites = _normalize_sites(self.params.get("sites"))
        if not sites:
            result.errors.append(self.error("no sites configured"))
            return result

        allow = company_filter(query.companies)
        intern_only = truthy(self.params["intern_only"]) if "intern_only" in self.params else True
        delay = float(self.params.get("delay_seconds") or 0)

        first = True
        for site in sites:
            if len(result.postings) >= query.max_results:
                break
            if not wanted(site.company, allow):
                continue
            if not first and delay > 0:
                time.sleep(delay)
            first = False

            try:
                data = self.client.get_json(
                    _POSTINGS_API.format(site=site.site),
                    params={"mode": "json"},
                    deadline=query.deadline,
                )
            except Exception as e:
                result.errors.append(self.error(f"{site.site}: {e!r}"))
                continue
            if not isinstance(data, list):
                result.errors.append(self.error(f"{site.site}: unexpected payload {type(data).__name__}"))
                continue

            for item in data:
                if not isinstance(item, dict):
                    continue
                categories = item.get("categories") or {}
                title = str(item.get("text") or "").strip()
                if intern_only and not (is_internship_title(title) or _is_intern_commitment(categories)):
                    continue
                posting = self._to_raw(item, categories, site)
                if posting is None:
                    continue
                result.postings.append(posting)
                if len(result.postings) >= query.max_results:
                    break
        return result

    def _to_raw(self, item: dict[str, Any], categories: dict[str, Any], site: _Site) -> RawPosting | None:
        url = str(item.get("hostedUrl") or item.get("applyUrl") or "").strip()
        title = str(item.get("text") or "").strip()
        if not url or not title:
            return None
        description = "\n".join(
            str(item.get(k) or "").strip() for k in ("descriptionPlain", "additionalPlain") if item.get(k)
        )
        return self.raw(
            title=title,
            company=site.company,
            url=url,
            description=description,
            location=str(categories.get("location") or ""),
            posted_at=item.get("createdAt"),
            payload={
                "site": site.site,
                "id": item.get("id"),
                "commitment": categories.get("commitment"),
                "team": categories.get("team"),
            },
        )
