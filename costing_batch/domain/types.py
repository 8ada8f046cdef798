"""
costing_batch.domain.types -- Pure frozen dataclasses for COGS batch runs.

ZERO I/O.  Frozen dataclasses with ``str`` enums and tuples for immutable
collections.

Invariants enforced:
    - total == eligible + pre-allocation skips.
    - eligible == successful + failed + skips decided by the engine
      (bundles whose components were all already allocated).
    - ``errors`` holds at most ``max_report_entries`` entries;
      ``errors_omitted`` counts the rest.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class SkipReason(str, Enum):
    """Why a line was not costed.  Skips are expected, not errors."""

    ALREADY_ALLOCATED = "already_allocated"
    MISSING_SKU = "missing_sku"
    INVALID_QUANTITY = "invalid_quantity"


class LineStatus(str, Enum):
    SUCCESSFUL = "successful"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Lifecycle of a ``cogs_apply_runs`` row."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class BatchPhase(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    ALLOCATING = "allocating"
    AGGREGATING = "aggregating"
    DONE = "done"


class TriggerSource(str, Enum):
    """How a run was requested."""

    DATE_RANGE = "DATE_RANGE"
    MTD = "MTD"


UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


# =============================================================================
# Line DTOs
# =============================================================================


@dataclass(frozen=True)
class ShippedOrderLine:
    """An order line fetched for costing, detached from the session."""

    line_id: UUID
    order_id: str
    sku: str | None
    quantity: Decimal | None
    shipped_at: datetime
    status_group: str | None = None


@dataclass(frozen=True)
class LineResult:
    """Outcome of one fetched line."""

    item_index: int
    order_id: str
    sku: str | None
    quantity: Decimal | None
    status: LineStatus
    reason_code: str | None = None
    detail: str | None = None
    total_cost: Decimal | None = None


@dataclass(frozen=True)
class ReportEntry:
    """One skipped or failed line, as shown to an operator."""

    order_id: str
    reason_code: str
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {
            "order_id": self.order_id,
            "reason_code": self.reason_code,
            "detail": self.detail,
        }


# =============================================================================
# Summary
# =============================================================================


@dataclass(frozen=True)
class BatchSummary:
    """Aggregated result of a batch run."""

    start_date: date
    end_date: date
    method: str
    total: int
    eligible: int
    successful: int
    skipped: int
    failed: int
    skipped_by_reason: dict[str, int] = field(default_factory=dict)
    failed_by_reason: dict[str, int] = field(default_factory=dict)
    errors: tuple[ReportEntry, ...] = ()
    errors_omitted: int = 0
    pages_fetched: int = 0
    page_limit_reached: bool = False
    line_results: tuple[LineResult, ...] = ()

    @classmethod
    def from_results(
        cls,
        *,
        start_date: date,
        end_date: date,
        method: str,
        eligible: int,
        results: tuple[LineResult, ...],
        max_report_entries: int,
        pages_fetched: int,
        page_limit_reached: bool,
    ) -> BatchSummary:
        skipped_by_reason: Counter[str] = Counter()
        failed_by_reason: Counter[str] = Counter()
        entries: list[ReportEntry] = []
        successful = 0
        for r in results:
            if r.status == LineStatus.SUCCESSFUL:
                successful += 1
                continue
            code = r.reason_code or UNHANDLED_EXCEPTION
            if r.status == LineStatus.SKIPPED:
                skipped_by_reason[code] += 1
            else:
                failed_by_reason[code] += 1
            entries.append(ReportEntry(r.order_id, code, r.detail or ""))

        return cls(
            start_date=start_date,
            end_date=end_date,
            method=method,
            total=len(results),
            eligible=eligible,
            successful=successful,
            skipped=sum(skipped_by_reason.values()),
            failed=sum(failed_by_reason.values()),
            skipped_by_reason=dict(sorted(skipped_by_reason.items())),
            failed_by_reason=dict(sorted(failed_by_reason.items())),
            errors=tuple(entries[:max_report_entries]),
            errors_omitted=max(0, len(entries) - max_report_entries),
            pages_fetched=pages_fetched,
            page_limit_reached=page_limit_reached,
            line_results=results,
        )

    def to_dict(self) -> dict[str, Any]:
        """External report shape.  Per-line results are not included."""
        return {
            "date_from": self.start_date.isoformat(),
            "date_to": self.end_date.isoformat(),
            "method": self.method,
            "total": self.total,
            "eligible": self.eligible,
            "successful": self.successful,
            "skipped": self.skipped,
            "failed": self.failed,
            "skipped_by_reason": dict(self.skipped_by_reason),
            "failed_by_reason": dict(self.failed_by_reason),
            "errors": [e.to_dict() for e in self.errors],
            "errors_omitted": self.errors_omitted,
            "pages_fetched": self.pages_fetched,
            "page_limit_reached": self.page_limit_reached,
        }


@dataclass(frozen=True)
class RunRecord:
    """Immutable snapshot of a ``cogs_apply_runs`` row."""

    run_id: UUID
    start_date: date
    end_date: date
    method: str
    trigger_source: TriggerSource
    status: RunStatus
    total: int = 0
    eligible: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    pages_fetched: int = 0
    page_limit_reached: bool = False
    summary: dict[str, Any] | None = None
    error_message: str | None = None
    correlation_id: str | None = None
    created_by: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
