# modules/internships/lib/sources/greenhouse.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from ..models import FetchQuery, FetchResult, RawPosting
from ..utils import truthy
from .base import BaseSource, company_filter, is_internship_title, wanted
from .registry import register

_BOARDS_API = "https://boards-api.greenhouse.io/v1/boards/{token}/jobs"


@dataclass(frozen=True)
class _Board:
    token: str
    company: str


def _normalize_boards(raw: object) -> list[_Board]:
    """
    Accept any of:
      - ["stripe", "airbnb"]
      - [["stripe", "Stripe"], ...]
      - [{"token": "stripe", "company": "Stripe"}, ...]
    Company defaults to the token, title-cased.
    """
    out: list[_Board] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        token, company = "", ""
        if isinstance(item, str):
            token = item
        elif isinstance(item, (list, tuple)) and item:
            token = str(item[0])
            company = str(item[1]) if len(item) > 1 else ""
        elif isinstance(item, dict):
            token = str(item.get("token") or item.get("board") or "")
            company = str(item.get("company") or "")
        token = token.strip()
        if token:
            out.append(_Board(token, company.strip() or token.replace("-", " ").title()))
    return out


@register
class GreenhouseSource(BaseSource):
    """
    Greenhouse public job-board API (curated, structured).

    params:
      boards: list of board tokens or {"token", "company"} objects (REQUIRED)
      intern_only: bool = true      # keep only intern/internship/co-op titles
      delay_seconds: float = 0      # polite pause between boards

    One board failing is recorded as a SourceError; the other boards still report.
    """

    kind = "greenhouse"

    def _fetch(self, query: FetchQuery) -> FetchResult:
        result = FetchResult(source=self.source)
        boards = _normalize_boards(self.params.get("boards"))
        if not boards:
            result.errors.append(self.error("no boards configured"))
            return result

        allow = company_filter(query.companies)
        intern_only = truthy(self.params["intern_only"]) if "intern_only" in self.params else True
        delay = float(self.params.get("delay_seconds") or 0)

        first = True
        for board in boards:
            if len(result.postings) >= query.max_results:
                break
            if not wanted(board.company, allow):
                continue
            if not first and delay > 0:
                time.sleep(delay)
            first = False

            try:
                data = self.client.get_json(
                    _BOARDS_API.format(token=board.token),
                    params={"content": "true"},
                    deadline=query.deadline,
                )
            except Exception as e:
                result.errors.append(self.error(f"{board.token}: {e!r}"))
                continue

            for job in (data or {}).get("jobs") or []:
                if not isinstance(job, dict):
                    continue
                posting = self._to_raw(job, board)
                if posting is None:
                    continue
                if intern_only and not is_internship_title(posting.title):
                    continue
                result.postings.append(posting)
                if len(result.postings) >= query.max_results:
                    break
        return result

    def _to_raw(self, job: dict[str, Any], board: _Board) -> RawPosting | None:
        url = str(job.get("absolute_url") or "").strip()
        title = str(job.get("title") or "").strip()
        if not url or not title:
            return None
        location = job.get("location") or {}
        return self.raw(
            title=title,
            company=str(job.get("company_name") or board.company),
            url=url,
            description=str(job.get("content") or ""),
            location=str(location.get("name") or "") if isinstance(location, dict) else str(location),
            posted_at=job.get("first_published") or job.get("updated_at"),
            payload={"board": board.token, "id": job.get("id"), "updated_at": job.get("updated_at")},
        )
