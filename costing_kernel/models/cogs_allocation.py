"""
Module: costing_kernel.models.cogs_allocation
Responsibility: ORM persistence for the COGS allocation ledger.  One row per
    receipt layer touched by an allocation; reversals are new rows with
    negated quantity and cost.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Append-only: rows are never updated or deleted (db/immutability.py).
    - cost_allocated == quantity_allocated * unit_cost_used exactly.
    - is_reversal rows have negative quantity and cost and reference the same
      layer_id / unit_cost_used as the rows they cancel.
    - id is an autoincrementing integer giving the ledger order that the
      fold in costing_engines.ledger relies on.

Audit relevance:
    Downstream reporting derives COGS by SUM(cost_allocated) grouped by
    (order_id, sku).  It never re-runs FIFO.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.types import SEQUENCE_ID_TYPE, UTCDateTime
from costing_kernel.db.base import TrackedBase
from costing_kernel.domain.dtos import AllocationRow, CostMethod


class CogsAllocationModel(TrackedBase):
    """
    Persistent ledger row.

    Contract:
        Written only by AllocationEngine.  ``sku`` is the SKU actually
        consumed: a component SKU for bundle lines, the line SKU otherwise.
    """

    __tablename__ = "inventory_cogs_allocations"

    __table_args__ = (
        Index("idx_cogs_alloc_order_sku", "order_id", "sku"),
        Index("idx_cogs_alloc_sku", "sku"),
        Index("idx_cogs_alloc_layer", "layer_id"),
        Index("idx_cogs_alloc_shipped_at", "shipped_at"),
    )

    id: Mapped[int] = mapped_column(
        SEQUENCE_ID_TYPE, primary_key=True, autoincrement=True,
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    shipped_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    quantity_allocated: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_cost_used: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    cost_allocated: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    layer_id: Mapped[int] = mapped_column(
        SEQUENCE_ID_TYPE,
        ForeignKey("inventory_receipt_layers.id"),
        nullable=False,
    )

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CostMethod.FIFO.value,
    )
    reversal_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def to_dto(self) -> AllocationRow:
        return AllocationRow(
            id=self.id,
            order_id=self.order_id,
            sku=self.sku,
            layer_id=self.layer_id,
            quantity=self.quantity_allocated,
            unit_cost=self.unit_cost_used,
            cost=self.cost_allocated,
            is_reversal=self.is_reversal,
            shipped_at=self.shipped_at,
            method=CostMethod(self.method),
            reversal_reason=self.reversal_reason,
        )

    def __repr__(self) -> str:
        tag = "REV " if self.is_reversal else ""
        return (
            f"<CogsAllocation {self.id}: {tag}{self.order_id}/{self.sku} "
            f"{self.quantity_allocated} from layer {self.layer_id}>"
        )
