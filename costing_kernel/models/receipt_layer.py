"""
Module: costing_kernel.models.receipt_layer
Responsibility: ORM persistence for inventory receipt layers, the discrete
    batches of stock (quantity at a unit cost, received at an instant) that
    FIFO allocation consumes.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - 0 <= quantity_remaining <= quantity_received for non-voided layers
      (checked by LayerStore on every consume/restore, and by a CHECK
      constraint on the table).
    - Layers are never deleted (db/immutability.py blocks DELETE).
    - sku, quantity_received, unit_cost, received_at and source_type are
      frozen after insert (db/immutability.py).
    - id is an autoincrementing integer: it is the FIFO tie-break when two
      layers share received_at, so creation order decides.

Failure modes:
    - IntegrityError if the CHECK constraints are violated by raw SQL.
    - ImmutabilityViolationError on DELETE or on changing a frozen field.

Audit relevance:
    quantity_received - quantity_remaining, summed per SKU, equals the net
    allocated quantity in the COGS ledger for that SKU at every commit.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase
from costing_kernel.db.types import SEQUENCE_ID_TYPE, UTCDateTime
from costing_kernel.domain.dtos import LayerSourceType, LayerView


class ReceiptLayerModel(TrackedBase):
    """
    Persistent receipt layer.

    Contract:
        Mutated only by LayerStore: consume/restore change
        quantity_remaining; void_layer sets the void fields.

    Guarantees:
        - (sku, received_at, id) index serves FIFO candidate selection.
    """

    __tablename__ = "inventory_receipt_layers"

    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_layer_received_positive"),
        CheckConstraint("quantity_remaining >= 0", name="ck_layer_remaining_nonneg"),
        CheckConstraint(
            "quantity_remaining <= quantity_received",
            name="ck_layer_remaining_le_received",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_layer_cost_nonneg"),
        Index("idx_receipt_layer_fifo", "sku", "received_at", "id"),
        Index("idx_receipt_layer_source", "source_type", "source_ref"),
    )

    id: Mapped[int] = mapped_column(
        SEQUENCE_ID_TYPE, primary_key=True, autoincrement=True,
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    quantity_remaining: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)

    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def to_dto(self) -> LayerView:
        return LayerView(
            id=self.id,
            sku=self.sku,
            quantity_received=self.quantity_received,
            quantity_remaining=self.quantity_remaining,
            unit_cost=self.unit_cost,
            received_at=self.received_at,
            source_type=LayerSourceType(self.source_type),
            source_ref=self.source_ref,
            voided=self.voided,
        )

    def __repr__(self) -> str:
        return (
            f"<ReceiptLayer {self.id}: {self.sku} "
            f"{self.quantity_remaining}/{self.quantity_received} @ {self.unit_cost}>"
        )
