"""
Error taxonomy for the ingestion and validation pipeline.

Only ConfigurationError is meant to reach callers of the orchestrators; every
other error is captured per item into the run summary.
"""

from __future__ import annotations

from dataclasses import dataclass


class PipelineError(Exception):
    """Base class for pipeline failures."""


class ConfigurationError(PipelineError, ValueError):
    """Raised when kwargs/env cannot form valid settings. Fatal, raised before any work."""


class NormalizationError(PipelineError, ValueError):
    """A raw posting lacks a mandatory field (title, company or url)."""

    def __init__(self, message: str, *, source: str = "", url: str = "") -> None:
        super().__init__(message)
        self.source = source
        self.url = url


class ReconciliationError(PipelineError):
    """The store failed while reconciling one posting."""

    def __init__(self, content_hash: str, cause: BaseException) -> None:
        super().__init__(f"reconcile failed for {content_hash[:12]}: {cause!r}")
        self.content_hash = content_hash
        self.cause = cause


class ValidationNetworkError(PipelineError):
    """No usable HTTP response after retries (timeout, DNS, connection reset...)."""

    def __init__(self, url: str, detail: str, *, timed_out: bool = False) -> None:
        super().__init__(f"{url}: {detail}")
        self.url = url
        self.detail = detail
        self.timed_out = timed_out


class CircuitOpenError(PipelineError):
    """Raised by CircuitBreaker.call when the breaker short-circuits."""

    def __init__(self, name: str) -> None:
        super().__init__(f"circuit open for {name!r}")
        self.name = name


@dataclass(frozen=True)
class SourceError:
    """
    A provider-level failure. This is a value, not an exception: adapters
    return it alongside whatever postings they did manage to fetch.
    """

    provider: str
    cause: str

    def __str__(self) -> str:
        return f"{self.provider}: {self.cause}"
