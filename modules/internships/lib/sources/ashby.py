# modules/internships/lib/sources/ashby.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from ..models import FetchQuery, FetchResult, RawPosting
from ..utils import truthy
from .base import BaseSource, company_filter, is_internship_title, wanted
from .registry import register

_JOB_BOARD_API = "https://api.ashbyhq.com/posting-api/job-board/{board}"


@dataclass(frozen=True)
class _Board:
    board: str
    company: str


def _normalize_boards(raw: object) -> list[_Board]:
    """Board names ("ramp"), pairs (["ramp", "Ramp"]) or {"board", "company"} objects."""
    out: list[_Board] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        board, company = "", ""
        if isinstance(item, str):
            board = item
        elif isinstance(item, (list, tuple)) and item:
            board = str(item[0])
            company = str(item[1]) if len(item) > 1 else ""
        elif isinstance(item, dict):
            board = str(item.get("board") or item.get("token") or "")
            company = str(item.get("company") or "")
        board = board.strip()
        if board:
            out.append(_Board(board, company.strip() or board.replace("-", " ").title()))
    return out


@register
class AshbySource(BaseSource):
    """
    Ashby public job-board API.

    params:
      boards: list of Ashby job-board names or {"board", "company"} objects (REQUIRED)
      intern_only: bool = true   # title or employmentType must read as an internship
      delay_seconds: float = 0   # polite pause between boards

    Unlisted jobs are dropped. The compensation summary is appended to the
    description so pay parsing sees it.
    """

    kind = "ashby"

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
                    _JOB_BOARD_API.format(board=board.board),
                    params={"includeCompensation": "true"},
                    deadline=query.deadline,
                )
            except Exception as e:
                result.errors.append(self.error(f"{board.board}: {e!r}"))
                continue
            if not isinstance(data, dict):
                result.errors.append(self.error(f"{board.board}: unexpected payload {type(data).__name__}"))
                continue

            for job in data.get("jobs") or []:
                if not isinstance(job, dict) or job.get("isListed") is False:
                    continue
                title = str(job.get("title") or "").strip()
                employment = str(job.get("employmentType") or "")
                if intern_only and not (is_internship_title(title) or is_internship_title(employment)):
                    continue
                posting = self._to_raw(job, board)
                if posting is None:
                    continue
                result.postings.append(posting)
                if len(result.postings) >= query.max_results:
                    break
        return result

    def _to_raw(self, job: dict[str, Any], board: _Board) -> RawPosting | None:
        url = str(job.get("jobUrl") or job.get("applyUrl") or "").strip()
        title = str(job.get("title") or "").strip()
        if not url or not title:
            return None
        compensation = job.get("compensation") or {}
        pay = compensation.get("compensationTierSummary") if isinstance(compensation, dict) else None
        description = "\n".join(p for p in (str(job.get("descriptionPlain") or "").strip(), str(pay or "")) if p)
        return self.raw(
            title=title,
            company=board.company,
            url=url,
            description=description,
            location=str(job.get("location") or ""),
            posted_at=job.get("publishedAt"),
            payload={
                "board": board.board,
                "id": job.get("id"),
                "employment_type": job.get("employmentType"),
                "is_remote": job.get("isRemote"),
            },
        )
