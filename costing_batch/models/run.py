"""
ORM models for COGS batch run persistence.

Contract:
    CogsRunModel is one ``apply COGS`` invocation: range, method, trigger,
    lifecycle status and the summary counters.  CogsRunItemModel stores the
    outcome of each processed line.  Both have ``to_dto()``.

Architecture: costing_batch/models.  Imports from costing_kernel.db only.

Invariants enforced:
    - A run starts RUNNING and ends SUCCESS or FAILED exactly once
      (RunLogService owns the transition).
    - Item rows are written only for a successful run, one per fetched line.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import UTCDateTime, to_decimal

if TYPE_CHECKING:
    from costing_batch.domain.types import LineResult, RunRecord


class CogsRunModel(TrackedBase):
    """Persistent run log entry."""

    __tablename__ = "cogs_apply_runs"

    __table_args__ = (
        Index("ix_cogs_runs_status", "status"),
        Index("ix_cogs_runs_created_at", "created_at"),
        Index("ix_cogs_runs_range", "start_date", "end_date"),
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    eligible: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pages_fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    page_limit_reached: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    summary_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    items: Mapped[list["CogsRunItemModel"]] = relationship(
        "CogsRunItemModel",
        back_populates="run",
        foreign_keys="CogsRunItemModel.run_id",
        order_by="CogsRunItemModel.item_index",
    )

    def to_dto(self) -> RunRecord:
        from costing_batch.domain.types import RunRecord, RunStatus, TriggerSource

        return RunRecord(
            run_id=self.id,
            start_date=self.start_date,
            end_date=self.end_date,
            method=self.method,
            trigger_source=TriggerSource(self.trigger_source),
            status=RunStatus(self.status),
            total=self.total,
            eligible=self.eligible,
            successful=self.successful,
            skipped=self.skipped,
            failed=self.failed,
            pages_fetched=self.pages_fetched,
            page_limit_reached=self.page_limit_reached,
            summary=self.summary_json,
            error_message=self.error_message,
            correlation_id=self.correlation_id,
            created_by=self.created_by_id,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class CogsRunItemModel(TrackedBase):
    """Outcome of one line within a run."""

    __tablename__ = "cogs_apply_run_items"

    __table_args__ = (
        Index("ix_cogs_run_items_run_status", "run_id", "status"),
        Index("ix_cogs_run_items_order", "order_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cogs_apply_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    run: Mapped["CogsRunModel"] = relationship(
        "CogsRunModel",
        back_populates="items",
        foreign_keys=[run_id],
    )

    def to_dto(self) -> LineResult:
        from costing_batch.domain.types import LineResult, LineStatus

        return LineResult(
            item_index=self.item_index,
            order_id=self.order_id,
            sku=self.sku,
            quantity=self.quantity,
            status=LineStatus(self.status),
            reason_code=self.reason_code,
            detail=self.detail,
            total_cost=self.total_cost,
        )

    @classmethod
    def from_dto(
        cls, dto: LineResult, run_id: UUID, created_by_id: UUID,
    ) -> CogsRunItemModel:
        return cls(
            run_id=run_id,
            item_index=dto.item_index,
            order_id=dto.order_id,
            sku=dto.sku,
            quantity=to_decimal(dto.quantity),
            status=dto.status.value,
            reason_code=dto.reason_code,
            detail=dto.detail,
            total_cost=dto.total_cost,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
