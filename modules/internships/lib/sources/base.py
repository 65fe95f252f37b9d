from __future__ import annotations

import re
from abc import ABC, abstractmethod

from ..canonical import normalize_company_name
from ..config import SourceConfig
from ..errors import SourceError
from ..http_client import HttpClient
from ..models import FetchQuery, FetchResult, RawPosting

# Title must read as an internship: "intern", "internship", "co-op"
INTERN_TITLE = re.compile(r"\b(?:intern(?:ship)?s?|co-?op)\b", re.IGNORECASE)


class BaseSource(ABC):
    """
    Abstract provider adapter.

    Contract:
      - fetch(query) returns a FetchResult; provider exceptions never escape it.
        A failure degrades to an empty or partial result plus a SourceError.
      - Return *all* postings found (dedupe happens downstream in reconcile).
      - No store access, no global state.
    """

    # Concrete subclasses MUST set this to a stable string, e.g. "greenhouse", "exa", "stub"
    kind: str = ""

    def __init__(
        self,
        config: SourceConfig,
        *,
        client: HttpClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.config = config
        self.params = dict(config.params or {})
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def source(self) -> str:
        return self.config.source

    @property
    def client(self) -> HttpClient:
        # Created lazily so zero-network adapters never open a session
        if self._client is None:
            self._client = HttpClient(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        """Release the session this adapter opened; an injected client belongs to the caller."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def fetch(self, query: FetchQuery) -> FetchResult:
        try:
            return self._fetch(query)
        except Exception as e:
            return FetchResult(source=self.source, errors=[SourceError(self.source, repr(e))])

    @abstractmethod
    def _fetch(self, query: FetchQuery) -> FetchResult:
        """Provider-specific work; may raise, fetch() turns that into a SourceError."""
        raise NotImplementedError

    # ---- shared helpers ----

    def error(self, cause: object) -> SourceError:
        return SourceError(self.source, cause if isinstance(cause, str) else repr(cause))

    def raw(self, **fields) -> RawPosting:
        return RawPosting(source=self.source, source_type=self.kind, **fields)


def is_internship_title(title: str) -> bool:
    return bool(title and INTERN_TITLE.search(title))


def company_filter(companies: tuple[str, ...] | list[str]) -> set[str]:
    """Normalized names for a company allow-list; empty set means 'everything'."""
    return {normalize_company_name(c) for c in companies if c and c.strip()}


def wanted(company: str, allow: set[str]) -> bool:
    return not allow or normalize_company_name(company) in allow
