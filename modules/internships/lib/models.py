from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import SourceError


# -----------------------------
# Enumerations
# -----------------------------
class Role(str, Enum):
    SOFTWARE_ENGINEERING = "software_engineering"
    DATA_SCIENCE = "data_science"
    QUANTITATIVE_RESEARCH = "quantitative_research"
    PRODUCT_MANAGEMENT = "product_management"
    BUSINESS_ANALYST = "business_analyst"
    DESIGN = "design"
    RESEARCH = "research"
    HARDWARE_ENGINEERING = "hardware_engineering"
    FINANCE = "finance"
    CONSULTING = "consulting"
    MARKETING = "marketing"
    SALES = "sales"
    OPERATIONS = "operations"
    UNKNOWN = "unknown"


class Major(str, Enum):
    COMPUTER_SCIENCE = "computer_science"
    COMPUTER_ENGINEERING = "computer_engineering"
    ELECTRICAL_ENGINEERING = "electrical_engineering"
    MECHANICAL_ENGINEERING = "mechanical_engineering"
    DATA_SCIENCE = "data_science"
    MATHEMATICS = "mathematics"
    STATISTICS = "statistics"
    PHYSICS = "physics"
    ECONOMICS = "economics"
    FINANCE = "finance"
    BUSINESS = "business"
    DESIGN = "design"
    INFORMATION_SYSTEMS = "information_systems"


class EligibilityYear(str, Enum):
    FRESHMAN = "freshman"
    SOPHOMORE = "sophomore"
    JUNIOR = "junior"
    SENIOR = "senior"
    GRADUATE = "graduate"


class WorkType(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    STIPEND = "stipend"
    UNKNOWN = "unknown"


class PayType(str, Enum):
    HOURLY = "hourly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    STIPEND = "stipend"
    UNKNOWN = "unknown"


class LinkStatus(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    DEAD = "dead"
    MAYBE_VALID = "maybe_valid"


class Decision(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


# -----------------------------
# Ingestion shapes
# -----------------------------
@dataclass(frozen=True)
class RawPosting:
    """
    A posting in the provider's own terms, produced and consumed within one
    ingestion pass. Only `payload` is ever archived.
    """

    source: str  # stable label like "greenhouse:stripe" or "exa:search"
    source_type: str  # adapter kind
    title: str
    company: str
    url: str
    description: str = ""
    location: str = ""
    posted_at: str | None = None
    application_deadline: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class Company:
    name: str
    normalized_name: str
    domain: str | None = None


@dataclass(frozen=True)
class NormalizedPosting:
    title: str
    company: Company
    exact_role: str
    normalized_role: Role
    relevant_majors: frozenset[Major]
    skills: frozenset[str]
    eligibility_years: frozenset[EligibilityYear]
    graduation_years: frozenset[str]
    work_type: WorkType
    pay_rate_min: float | None
    pay_rate_max: float | None
    pay_rate_currency: str | None
    pay_rate_type: PayType
    location: str
    is_remote: bool
    is_program_specific: bool
    internship_cycle: str
    application_url: str
    posted_at: str
    application_deadline: str | None
    description: str
    source: str
    source_type: str
    content_hash: str
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class StoredPosting:
    """The slice of a stored row that reconciliation and validation read back."""

    id: int
    content_hash: str
    title: str
    company_name: str
    description: str
    application_deadline: str | None
    pay_rate_min: float | None
    pay_rate_max: float | None
    pay_rate_currency: str | None
    pay_rate_type: str | None
    application_url: str
    is_active: bool
    validation_status: str | None = None
    validation_last_checked: str | None = None
    validation_network_failures: int = 0


@dataclass(frozen=True)
class FetchQuery:
    """
    Per-run parameters handed to every adapter.
    - deadline: absolute time.monotonic() value; adapters clamp request timeouts to it.
    """

    companies: tuple[str, ...] = ()
    max_results: int = 50
    include_programs: bool = False
    deadline: float | None = None


@dataclass
class FetchResult:
    """
    Result bundle produced by one adapter call.
    - postings: everything the provider returned (NOT deduped).
    - errors: non-fatal provider problems; a non-empty list with no postings
              counts as a failure for the circuit breaker.
    """

    source: str
    postings: list[RawPosting] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)


# -----------------------------
# Validation shapes
# -----------------------------
@dataclass(frozen=True)
class ValidationRecord:
    status: LinkStatus
    http_code: int | None
    final_url: str
    redirect_chain: tuple[str, ...]
    confidence_score: float
    reason: str
    last_checked_at: str
    rule: str = ""

    @property
    def is_active(self) -> bool | None:
        """True for ok, False for dead/expired, None when inconclusive (leave as is)."""
        if self.status is LinkStatus.OK:
            return True
        if self.status in (LinkStatus.DEAD, LinkStatus.EXPIRED):
            return False
        return None

    @property
    def hops(self) -> int:
        return max(0, len(self.redirect_chain) - 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "http_code": self.http_code,
            "final_url": self.final_url,
            "redirect_chain": list(self.redirect_chain),
            "confidence_score": self.confidence_score,
            "reason": self.reason,
            "last_checked_at": self.last_checked_at,
            "rule": self.rule,
            "is_active": self.is_active,
        }


# -----------------------------
# Run summaries
# -----------------------------
@dataclass(frozen=True)
class RunError:
    stage: str  # "source" | "normalize" | "reconcile" | "deadline" | "validate"
    source: str
    message: str
    content_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = {"stage": self.stage, "source": self.source, "message": self.message}
        if self.content_hash:
            out["content_hash"] = self.content_hash
        return out


@dataclass
class SourceRun:
    source: str
    fetched: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    short_circuited: bool = False
    completed: bool = False


@dataclass
class IngestionRun:
    fetched: int = 0
    normalized: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[RunError] = field(default_factory=list)
    execution_time_ms: int = 0
    dry_run: bool = False
    sources: dict[str, SourceRun] = field(default_factory=dict)

    def count(self, decision: Decision) -> None:
        if decision is Decision.INSERTED:
            self.inserted += 1
        elif decision is Decision.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def to_summary(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "normalized": self.normalized,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "error_details": [e.to_dict() for e in self.errors],
            "execution_time_ms": self.execution_time_ms,
            "dry_run": self.dry_run,
            "sources": {
                name: {
                    "fetched": s.fetched,
                    "errors": list(s.errors),
                    "duration_ms": s.duration_ms,
                    "short_circuited": s.short_circuited,
                    "completed": s.completed,
                }
                for name, s in self.sources.items()
            },
        }


@dataclass(frozen=True)
class ValidationResult:
    posting_id: int
    url: str
    record: ValidationRecord | None
    validation_ms: int
    error: str | None = None
    title: str = ""
    company: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "posting_id": self.posting_id,
            "url": self.url,
            "title": self.title,
            "company": self.company,
            "validation_ms": self.validation_ms,
        }
        if self.record is not None:
            out.update(self.record.to_dict())
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ValidationRun:
    total: int = 0
    valid: int = 0
    expired: int = 0
    dead: int = 0
    maybe_valid: int = 0
    updated: int = 0
    errors: int = 0
    results: list[ValidationResult] = field(default_factory=list)
    execution_time_ms: int = 0

    def count(self, status: LinkStatus) -> None:
        if status is LinkStatus.OK:
            self.valid += 1
        elif status is LinkStatus.EXPIRED:
            self.expired += 1
        elif status is LinkStatus.DEAD:
            self.dead += 1
        else:
            self.maybe_valid += 1

    @property
    def average_validation_time_ms(self) -> float:
        timed = [r.validation_ms for r in self.results if r.record is not None]
        return round(sum(timed) / len(timed), 1) if timed else 0.0

    def to_summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "valid": self.valid,
            "expired": self.expired,
            "dead": self.dead,
            "maybe_valid": self.maybe_valid,
            "updated": self.updated,
            "errors": self.errors,
            "average_validation_time_ms": self.average_validation_time_ms,
            "execution_time_ms": self.execution_time_ms,
            "results": [r.to_dict() for r in self.results],
        }
