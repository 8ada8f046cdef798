"""
RunLogService -- Persistence of COGS batch runs.

Contract:
    ``start_run`` inserts a RUNNING row; ``complete_success`` stores the
    summary counters, the report dict and one item row per processed line;
    ``complete_failed`` stores the error message.  Queries return DTOs.

Architecture: costing_batch/services.

Invariants enforced:
    - Only a RUNNING run can be completed, and only once.
    - All timestamps from the injected Clock.
    - Flushes only; the caller commits.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_batch.domain.types import (
    BatchSummary,
    LineResult,
    RunRecord,
    RunStatus,
    TriggerSource,
)
from costing_batch.models.run import CogsRunItemModel, CogsRunModel
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.exceptions import RunAlreadyCompletedError, RunNotFoundError
from costing_kernel.logging_config import get_logger

logger = get_logger("batch.run_log")


class RunLogService:
    """Lifecycle of ``cogs_apply_runs`` rows."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def start_run(
        self,
        start_date: date,
        end_date: date,
        method: str,
        trigger_source: TriggerSource,
        actor_id: UUID,
        correlation_id: str | None = None,
    ) -> RunRecord:
        now = self._clock.now()
        model = CogsRunModel(
            start_date=start_date,
            end_date=end_date,
            method=method,
            trigger_source=trigger_source.value,
            status=RunStatus.RUNNING.value,
            total=0,
            eligible=0,
            successful=0,
            skipped=0,
            failed=0,
            pages_fetched=0,
            page_limit_reached=False,
            correlation_id=correlation_id,
            started_at=now,
            created_at=now,
            created_by_id=actor_id,
            updated_by_id=None,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "cogs_run_started",
            extra={
                "run_id": str(model.id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "method": method,
                "trigger_source": trigger_source.value,
            },
        )
        return model.to_dto()

    def complete_success(
        self,
        run_id: UUID,
        summary: BatchSummary,
        actor_id: UUID,
    ) -> RunRecord:
        model = self._running(run_id)
        model.status = RunStatus.SUCCESS.value
        model.total = summary.total
        model.eligible = summary.eligible
        model.successful = summary.successful
        model.skipped = summary.skipped
        model.failed = summary.failed
        model.pages_fetched = summary.pages_fetched
        model.page_limit_reached = summary.page_limit_reached
        model.summary_json = summary.to_dict()
        model.completed_at = self._clock.now()
        model.updated_by_id = actor_id

        for result in summary.line_results:
            self._session.add(
                CogsRunItemModel.from_dto(result, run_id=run_id, created_by_id=actor_id)
            )
        self._session.flush()

        logger.info(
            "cogs_run_succeeded",
            extra={
                "run_id": str(run_id),
                "total": summary.total,
                "successful": summary.successful,
                "skipped": summary.skipped,
                "failed": summary.failed,
            },
        )
        return model.to_dto()

    def complete_failed(
        self,
        run_id: UUID,
        error_message: str,
        actor_id: UUID,
    ) -> RunRecord:
        model = self._running(run_id)
        model.status = RunStatus.FAILED.value
        model.error_message = error_message
        model.completed_at = self._clock.now()
        model.updated_by_id = actor_id
        self._session.flush()

        logger.error(
            "cogs_run_failed",
            extra={"run_id": str(run_id), "error_message": error_message},
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> RunRecord:
        """Raises RunNotFoundError if ``run_id`` does not exist."""
        model = self._session.get(CogsRunModel, run_id)
        if model is None:
            raise RunNotFoundError(str(run_id))
        return model.to_dto()

    def get_run_items(self, run_id: UUID) -> tuple[LineResult, ...]:
        models = self._session.execute(
            select(CogsRunItemModel)
            .where(CogsRunItemModel.run_id == run_id)
            .order_by(CogsRunItemModel.item_index)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def recent_runs(self, limit: int = 20) -> tuple[RunRecord, ...]:
        models = self._session.execute(
            select(CogsRunModel)
            .order_by(CogsRunModel.created_at.desc(), CogsRunModel.id)
            .limit(limit)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def _running(self, run_id: UUID) -> CogsRunModel:
        model = self._session.get(CogsRunModel, run_id)
        if model is None:
            raise RunNotFoundError(str(run_id))
        if model.status != RunStatus.RUNNING.value:
            raise RunAlreadyCompletedError(str(run_id), model.status)
        return model
