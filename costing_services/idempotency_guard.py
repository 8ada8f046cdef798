"""
costing_services.idempotency_guard -- At most one active allocation per pair.

Responsibility:
    Answer "is (order_id, sku) already allocated?" by folding the pair's
    ledger rows.  An allocation that has been fully reversed is no longer
    active, so Allocate -> Reverse -> Allocate consumes stock again.

Invariants enforced:
    - Derived state only: nothing is stored besides the ledger rows.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_engines.ledger import LedgerState, event_from_row, fold
from costing_kernel.models.cogs_allocation import CogsAllocationModel


def fold_rows(rows: Iterable[CogsAllocationModel]) -> LedgerState:
    """Fold ORM ledger rows into the outstanding state."""
    return fold(
        events=[
            event_from_row(
                sequence=row.id,
                layer_id=row.layer_id,
                quantity=row.quantity_allocated,
                unit_cost=row.unit_cost_used,
                is_reversal=row.is_reversal,
            )
            for row in rows
        ]
    )


class IdempotencyGuard:
    """Ledger-backed idempotency check."""

    def __init__(self, session: Session):
        self._session = session

    def ledger_rows(self, order_id: str, sku: str) -> list[CogsAllocationModel]:
        return list(
            self._session.scalars(
                select(CogsAllocationModel)
                .where(
                    CogsAllocationModel.order_id == order_id,
                    CogsAllocationModel.sku == sku,
                )
                .order_by(CogsAllocationModel.id)
            )
        )

    def ledger_state(self, order_id: str, sku: str) -> LedgerState:
        return fold_rows(self.ledger_rows(order_id, sku))

    def has_active_allocation(self, order_id: str, sku: str) -> bool:
        return self.ledger_state(order_id, sku).is_active

    def active_skus(self, order_id: str, skus: Iterable[str]) -> frozenset[str]:
        return frozenset(s for s in skus if self.has_active_allocation(order_id, s))

    def charged_skus(self, order_id: str) -> tuple[str, ...]:
        """Consumed SKUs with an outstanding allocation on the order, sorted."""
        ledger_skus = self._session.scalars(
            select(CogsAllocationModel.sku)
            .where(CogsAllocationModel.order_id == order_id)
            .distinct()
            .order_by(CogsAllocationModel.sku)
        )
        return tuple(s for s in ledger_skus if self.has_active_allocation(order_id, s))
