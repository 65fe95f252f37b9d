from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; InternshipBot/1.0)"


class HttpClient:
    """Shared HTTP client for the source adapters: one session, retries on 429/5xx."""

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        total_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

        retry = Retry(
            total=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["GET", "POST"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def timeout_for(self, deadline: float | None) -> float:
        """Clamp the default timeout to what is left before a monotonic deadline."""
        if deadline is None:
            return self.timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("deadline exceeded before request")
        return min(self.timeout, remaining)

    # ---- convenience ----
    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> Any:
        """GET and parse JSON with clearer errors if decoding fails."""
        resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout_for(deadline))
        resp.raise_for_status()
        return _decode_json(resp, url)

    def post_json(
        self,
        url: str,
        *,
        payload: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> Any:
        resp = self.session.post(url, json=dict(payload), headers=headers, timeout=self.timeout_for(deadline))
        resp.raise_for_status()
        return _decode_json(resp, url)

    def close(self) -> None:
        self.session.close()


def _decode_json(resp: requests.Response, url: str) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        preview = (resp.text or "")[:200].replace("\n", " ")
        raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e
