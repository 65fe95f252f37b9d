from __future__ import annotations

import time
from typing import Any

from ..models import FetchQuery, FetchResult, RawPosting
from .base import BaseSource, company_filter, wanted
from .registry import register


@register
class StubSource(BaseSource):
    """
    A zero-network adapter used for tests and dry-runs.

    params may contain:
      - items: list[{title, company, url, description?, location?, posted_at?, application_deadline?}]
      - errors: list[str]     # OPTIONAL, returned as SourceErrors next to the items
      - raise: str            # OPTIONAL, fetch() raises RuntimeError(msg) instead of returning
      - delay_sec: float      # OPTIONAL, simulated provider latency

    The company filter and max_results cap are applied like a real provider would.
    """

    kind = "stub"

    def fetch(self, query: FetchQuery) -> FetchResult:
        # A misbehaving adapter on request; the orchestrator must survive it
        if self.params.get("raise"):
            self._sleep()
            raise RuntimeError(str(self.params["raise"]))
        return super().fetch(query)

    def _fetch(self, query: FetchQuery) -> FetchResult:
        self._sleep()

        raw_items = self.params.get("items") or []
        if not isinstance(raw_items, list):
            raw_items = []

        allow = company_filter(query.companies)
        postings: list[RawPosting] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            if not wanted(str(item.get("company") or ""), allow):
                continue
            postings.append(self._to_raw(item))
            if len(postings) >= query.max_results:
                break

        errors = self.params.get("errors") or []
        if not isinstance(errors, list):
            errors = [errors]
        return FetchResult(source=self.source, postings=postings, errors=[self.error(str(e)) for e in errors])

    def _to_raw(self, item: dict[str, Any]) -> RawPosting:
        # Blank mandatory fields are passed through; normalize() rejects them
        return self.raw(
            title=str(item.get("title") or ""),
            company=str(item.get("company") or ""),
            url=str(item.get("url") or ""),
            description=str(item.get("description") or ""),
            location=str(item.get("location") or ""),
            posted_at=item.get("posted_at"),
            application_deadline=item.get("application_deadline"),
            payload=dict(item),
        )

    def _sleep(self) -> None:
        delay = float(self.params.get("delay_sec") or 0)
        if delay > 0:
            time.sleep(delay)
