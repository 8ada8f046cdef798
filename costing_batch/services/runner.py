"""
BatchRunner -- Apply FIFO COGS to every shipped line in a date range.

Contract:
    ``run(start_date, end_date, actor_id, method)`` validates its input,
    then moves through FETCHING -> CLASSIFYING -> ALLOCATING -> AGGREGATING
    -> DONE and returns a BatchSummary.

Architecture: costing_batch/services.  Composes OrderLinePager,
    IdempotencyGuard and AllocationEngine.

Invariants enforced:
    - Validation errors (dates, method) raise before any line is read.
    - Classification order per line: already_allocated, missing_sku,
      invalid_quantity, else eligible.
    - Each eligible line runs in its own SAVEPOINT.  A failure rolls back
      that line only and is recorded with the exception ``code``; it never
      raises out of ``run``.
    - Does NOT call ``session.commit()``; the caller controls boundaries.
"""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from costing_batch.domain.types import (
    UNHANDLED_EXCEPTION,
    BatchPhase,
    BatchSummary,
    LineResult,
    LineStatus,
    ShippedOrderLine,
    SkipReason,
)
from costing_batch.services.pager import OrderLinePager
from costing_config.schema import CostingConfig
from costing_kernel.db.types import to_decimal
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dates import business_date_range
from costing_kernel.domain.dtos import AllocationStatus, CostMethod, parse_cost_method
from costing_kernel.exceptions import CostingKernelError
from costing_kernel.logging_config import LogContext, get_logger
from costing_services.allocation_engine import AllocationEngine
from costing_services.idempotency_guard import IdempotencyGuard

logger = get_logger("batch.runner")

_ZERO = Decimal("0")


class BatchRunner:
    """Drives AllocationEngine across a business-date range.

    Non-goals:
        - Does NOT authorize the caller (CostingOrchestrator does).
        - Does NOT persist the run log (RunLogService does).
    """

    def __init__(
        self,
        session: Session,
        config: CostingConfig,
        engine: AllocationEngine | None = None,
        guard: IdempotencyGuard | None = None,
        clock: Clock | None = None,
        pager: OrderLinePager | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._guard = guard or IdempotencyGuard(session)
        self._engine = engine or AllocationEngine(
            session, clock=self._clock, guard=self._guard,
        )
        self._pager = pager or OrderLinePager(
            session,
            page_size=config.batch.page_size,
            max_pages=config.batch.max_pages,
            cancelled_status_groups=config.cancelled_status_groups,
        )
        self.phase = BatchPhase.PENDING

    def _enter(self, phase: BatchPhase, **extra) -> None:
        logger.info(
            "batch_phase_changed",
            extra={"from_phase": self.phase.value, "to_phase": phase.value, **extra},
        )
        self.phase = phase

    def run(
        self,
        start_date: date | str,
        end_date: date | str,
        actor_id: UUID,
        method: CostMethod | str | None = None,
    ) -> BatchSummary:
        """Cost every shipped, non-cancelled line in ``[start_date, end_date]``.

        Raises:
            InvalidDateFormatError: a bound is not YYYY-MM-DD.
            InvalidDateRangeError: start_date is after end_date.
            UnsupportedCostMethodError: method is not FIFO.
        """
        window = business_date_range(
            start_date, end_date, self._config.business_timezone,
        )
        cost_method = parse_cost_method(method or self._config.default_method)
        t0 = time.monotonic()
        self.phase = BatchPhase.PENDING

        logger.info(
            "batch_run_started",
            extra={
                "start_date": window.start_date.isoformat(),
                "end_date": window.end_date.isoformat(),
                "timezone": window.timezone_name,
                "method": cost_method.value,
            },
        )

        self._enter(BatchPhase.FETCHING)
        fetched = self._pager.fetch_all(window)

        self._enter(BatchPhase.CLASSIFYING, lines=len(fetched.lines))
        results: dict[int, LineResult] = {}
        eligible: list[tuple[int, ShippedOrderLine]] = []
        for index, line in enumerate(fetched.lines):
            reason = self._classify(line)
            if reason is None:
                eligible.append((index, line))
            else:
                results[index] = LineResult(
                    item_index=index,
                    order_id=line.order_id,
                    sku=line.sku,
                    quantity=line.quantity,
                    status=LineStatus.SKIPPED,
                    reason_code=reason.value,
                    detail=_SKIP_DETAILS[reason],
                )

        self._enter(BatchPhase.ALLOCATING, eligible=len(eligible))
        for index, line in eligible:
            results[index] = self._allocate_line(index, line, actor_id, cost_method)

        self._enter(BatchPhase.AGGREGATING)
        summary = BatchSummary.from_results(
            start_date=window.start_date,
            end_date=window.end_date,
            method=cost_method.value,
            eligible=len(eligible),
            results=tuple(results[i] for i in sorted(results)),
            max_report_entries=self._config.batch.max_report_entries,
            pages_fetched=fetched.pages_fetched,
            page_limit_reached=fetched.page_limit_reached,
        )

        self._enter(BatchPhase.DONE)
        logger.info(
            "batch_run_completed",
            extra={
                "total": summary.total,
                "eligible": summary.eligible,
                "successful": summary.successful,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "pages_fetched": summary.pages_fetched,
                "page_limit_reached": summary.page_limit_reached,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return summary

    def _classify(self, line: ShippedOrderLine) -> SkipReason | None:
        sku = (line.sku or "").strip()
        if sku and self._guard.has_active_allocation(line.order_id, sku):
            return SkipReason.ALREADY_ALLOCATED
        if not sku:
            return SkipReason.MISSING_SKU
        qty = to_decimal(line.quantity)
        if qty is None or qty <= _ZERO:
            return SkipReason.INVALID_QUANTITY
        return None

    def _allocate_line(
        self,
        index: int,
        line: ShippedOrderLine,
        actor_id: UUID,
        method: CostMethod,
    ) -> LineResult:
        savepoint = self._session.begin_nested()
        try:
            outcome = self._engine.allocate(
                line.order_id,
                line.sku,
                line.quantity,
                line.shipped_at,
                actor_id,
                method=method,
            )
            savepoint.commit()
        except CostingKernelError as exc:
            savepoint.rollback()
            return self._failed(index, line, exc.code, str(exc))
        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "batch_line_unhandled_exception",
                extra={"order_id": line.order_id, "sku": line.sku},
            )
            return self._failed(index, line, UNHANDLED_EXCEPTION, str(exc))

        if outcome.status == AllocationStatus.ALREADY_ALLOCATED:
            return LineResult(
                item_index=index,
                order_id=line.order_id,
                sku=line.sku,
                quantity=line.quantity,
                status=LineStatus.SKIPPED,
                reason_code=SkipReason.ALREADY_ALLOCATED.value,
                detail=(
                    _BUNDLE_ALREADY_ALLOCATED if outcome.is_bundle
                    else _SKIP_DETAILS[SkipReason.ALREADY_ALLOCATED]
                ),
            )
        return LineResult(
            item_index=index,
            order_id=line.order_id,
            sku=line.sku,
            quantity=line.quantity,
            status=LineStatus.SUCCESSFUL,
            total_cost=outcome.total_cost,
        )

    def _failed(
        self,
        index: int,
        line: ShippedOrderLine,
        code: str,
        detail: str,
    ) -> LineResult:
        with LogContext.bind(order_id=line.order_id, sku=line.sku):
            logger.warning(
                "batch_line_failed",
                extra={"reason_code": code, "detail": detail},
            )
        return LineResult(
            item_index=index,
            order_id=line.order_id,
            sku=line.sku,
            quantity=line.quantity,
            status=LineStatus.FAILED,
            reason_code=code,
            detail=detail,
        )


_SKIP_DETAILS = {
    SkipReason.ALREADY_ALLOCATED: "COGS already allocated for this order line",
    SkipReason.MISSING_SKU: "order line has no SKU",
    SkipReason.INVALID_QUANTITY: "order line quantity is missing or not positive",
}

_BUNDLE_ALREADY_ALLOCATED = "all bundle components already allocated"
