# modules/internships/lib/sources/github_listings.py
from __future__ import annotations

import base64
import json
import os
from typing import Any

from ..models import FetchQuery, FetchResult, RawPosting
from ..utils import truthy
from .base import BaseSource, company_filter, wanted
from .registry import register

DEFAULT_LISTINGS_URL = (
    "https://raw.githubusercontent.com/SimplifyJobs/Summer2026-Internships/dev/.github/scripts/listings.json"
)
_CONTENTS_API = "https://api.github.com/repos/{repo}/contents/{path}"


@register
class GithubListingsSource(BaseSource):
    """
    Community-curated internship lists (SimplifyJobs / pittcsc `listings.json`).

    params:
      url: str                   # raw JSON URL (default: SimplifyJobs Summer listings)
      repo: "owner/name"         # alternatively read through the contents API...
      path: str                  # ...at this path (default .github/scripts/listings.json)
      ref: str | null            # optional branch/tag for the contents API
      token_env: str = "GITHUB_TOKEN"
      active_only: bool = true

    Entries that are invisible, inactive (when active_only) or missing
    company/title/url are skipped.
    """

    kind = "github_listings"

    def _fetch(self, query: FetchQuery) -> FetchResult:
        result = FetchResult(source=self.source)
        try:
            listings = self._load(query)
        except Exception as e:
            result.errors.append(self.error(e))
            return result
        if not isinstance(listings, list):
            result.errors.append(self.error(f"unexpected payload {type(listings).__name__}"))
            return result

        allow = company_filter(query.companies)
        active_only = truthy(self.params["active_only"]) if "active_only" in self.params else True
        for entry in listings:
            if not isinstance(entry, dict):
                continue
            if entry.get("is_visible") is False:
                continue
            if active_only and entry.get("active") is False:
                continue
            posting = self._to_raw(entry)
            if posting is None or not wanted(posting.company, allow):
                continue
            result.postings.append(posting)
            if len(result.postings) >= query.max_results:
                break
        return result

    # ---- internals ----

    def _headers(self) -> dict[str, str]:
        token = os.getenv(str(self.params.get("token_env") or "GITHUB_TOKEN"))
        return {"Authorization": f"token {token}"} if token else {}

    def _load(self, query: FetchQuery) -> Any:
        repo = str(self.params.get("repo") or "").strip()
        if not repo:
            url = str(self.params.get("url") or DEFAULT_LISTINGS_URL)
            return self.client.get_json(url, headers=self._headers(), deadline=query.deadline)

        path = str(self.params.get("path") or ".github/scripts/listings.json").lstrip("/")
        ref = self.params.get("ref")
        meta = self.client.get_json(
            _CONTENTS_API.format(repo=repo, path=path),
            params={"ref": ref} if ref else None,
            headers=self._headers(),
            deadline=query.deadline,
        )
        # Small files come inline (base64); large ones only carry a download_url
        if meta.get("content"):
            return json.loads(base64.b64decode(meta["content"]).decode("utf-8"))
        if meta.get("download_url"):
            return self.client.get_json(meta["download_url"], headers=self._headers(), deadline=query.deadline)
        raise ValueError(f"no content or download_url for {repo}/{path}")

    def _to_raw(self, entry: dict[str, Any]) -> RawPosting | None:
        company = str(entry.get("company_name") or "").strip()
        title = str(entry.get("title") or "").strip()
        url = str(entry.get("url") or "").strip()
        if not company or not title or not url:
            return None
        locations = [str(x) for x in entry.get("locations") or [] if x]
        terms = [str(x) for x in entry.get("terms") or entry.get("seasons") or [] if x]
        return self.raw(
            title=title,
            company=company,
            url=url,
            # Terms ("Summer 2026") carry the cycle; the listing has no body text
            description=", ".join(terms),
            location=locations[0] if locations else "",
            posted_at=entry.get("date_posted"),
            payload={
                "id": entry.get("id"),
                "locations": locations,
                "terms": terms,
                "sponsorship": entry.get("sponsorship"),
                "company_url": entry.get("company_url"),
            },
        )
