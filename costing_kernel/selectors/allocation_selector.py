"""
Module: costing_kernel.selectors.allocation_selector
Responsibility: Read side of the COGS ledger and receipt layers: per-order
    COGS totals, daily COGS in the business timezone, and the figures that
    prove quantity conservation per SKU.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - COGS is always derived by SUM over ledger rows; FIFO is never re-run.
    - Conservation: consumed_from_layers(sku) == net_allocated_quantity(sku)
      after every committed allocation or reversal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select

from costing_kernel.domain.dates import day_start_utc
from costing_kernel.domain.dtos import AllocationRow, LayerView
from costing_kernel.models.cogs_allocation import CogsAllocationModel
from costing_kernel.models.receipt_layer import ReceiptLayerModel
from costing_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class OrderCogsDTO:
    """Net COGS for one (order, SKU) pair."""

    order_id: str
    sku: str
    quantity: Decimal
    cost: Decimal


class AllocationSelector(BaseSelector[CogsAllocationModel]):
    """Queries over inventory_cogs_allocations and inventory_receipt_layers."""

    def rows_for(self, order_id: str, sku: str | None = None) -> list[AllocationRow]:
        """Ledger rows for an order (optionally one SKU) in ledger order."""
        stmt = select(CogsAllocationModel).where(
            CogsAllocationModel.order_id == order_id
        )
        if sku is not None:
            stmt = stmt.where(CogsAllocationModel.sku == sku)
        stmt = stmt.order_by(CogsAllocationModel.id)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def cogs_by_order(
        self, order_ids: Iterable[str] | None = None,
    ) -> list[OrderCogsDTO]:
        """SUM of quantity and cost grouped by (order_id, sku)."""
        stmt = select(
            CogsAllocationModel.order_id,
            CogsAllocationModel.sku,
            func.sum(CogsAllocationModel.quantity_allocated),
            func.sum(CogsAllocationModel.cost_allocated),
        ).group_by(CogsAllocationModel.order_id, CogsAllocationModel.sku)
        if order_ids is not None:
            stmt = stmt.where(CogsAllocationModel.order_id.in_(list(order_ids)))
        stmt = stmt.order_by(CogsAllocationModel.order_id, CogsAllocationModel.sku)
        return [
            OrderCogsDTO(
                order_id=order_id,
                sku=sku,
                quantity=quantity or _ZERO,
                cost=cost or _ZERO,
            )
            for order_id, sku, quantity, cost in self.session.execute(stmt)
        ]

    def order_cost(self, order_id: str) -> Decimal:
        """Net COGS for a whole order."""
        stmt = select(
            func.coalesce(func.sum(CogsAllocationModel.cost_allocated), _ZERO)
        ).where(CogsAllocationModel.order_id == order_id)
        return self.session.scalar(stmt) or _ZERO

    def daily_cogs(self, day: date, timezone_name: str) -> Decimal:
        """Net COGS of lines shipped on ``day`` in the business timezone."""
        start = day_start_utc(day, timezone_name)
        end = day_start_utc(day + timedelta(days=1), timezone_name)
        stmt = select(
            func.coalesce(func.sum(CogsAllocationModel.cost_allocated), _ZERO)
        ).where(
            CogsAllocationModel.shipped_at >= start,
            CogsAllocationModel.shipped_at < end,
        )
        return self.session.scalar(stmt) or _ZERO

    def net_allocated_quantity(self, sku: str) -> Decimal:
        """Allocated minus reversed quantity for a consumed SKU."""
        stmt = select(
            func.coalesce(func.sum(CogsAllocationModel.quantity_allocated), _ZERO)
        ).where(CogsAllocationModel.sku == sku)
        return self.session.scalar(stmt) or _ZERO

    def gross_allocated_quantity(self, sku: str) -> Decimal:
        """Sum of non-reversal rows only."""
        stmt = select(
            func.coalesce(func.sum(CogsAllocationModel.quantity_allocated), _ZERO)
        ).where(
            CogsAllocationModel.sku == sku,
            CogsAllocationModel.is_reversal.is_(False),
        )
        return self.session.scalar(stmt) or _ZERO

    def consumed_from_layers(self, sku: str) -> Decimal:
        """SUM(received - remaining) over the SKU's non-voided layers."""
        stmt = select(
            func.coalesce(
                func.sum(
                    ReceiptLayerModel.quantity_received
                    - ReceiptLayerModel.quantity_remaining
                ),
                _ZERO,
            )
        ).where(
            ReceiptLayerModel.sku == sku,
            ReceiptLayerModel.voided.is_(False),
        )
        return self.session.scalar(stmt) or _ZERO

    def layers_for(self, sku: str, include_voided: bool = True) -> list[LayerView]:
        """Every layer of a SKU in FIFO order."""
        stmt = select(ReceiptLayerModel).where(ReceiptLayerModel.sku == sku)
        if not include_voided:
            stmt = stmt.where(ReceiptLayerModel.voided.is_(False))
        stmt = stmt.order_by(ReceiptLayerModel.received_at, ReceiptLayerModel.id)
        return [m.to_dto() for m in self.session.scalars(stmt)]
