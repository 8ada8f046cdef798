"""
Module: costing_kernel.domain.dtos
Responsibility: Immutable data transfer objects and enums shared by the
    costing services, selectors and the batch runner.  ORM rows are turned
    into these at the service boundary; callers never hold live models.
Architecture position: Kernel > Domain.  Pure, zero I/O.

Invariants enforced:
    - All DTOs are frozen dataclasses.
    - Quantities and costs are Decimal; reversal rows carry negative values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from costing_kernel.exceptions import UnsupportedCostMethodError

_ZERO = Decimal("0")


class CostMethod(str, Enum):
    """Cost flow methods.  Only FIFO is implemented."""

    FIFO = "FIFO"


def parse_cost_method(method: CostMethod | str) -> CostMethod:
    """Accept a CostMethod or its name in any case; anything else is rejected."""
    if isinstance(method, CostMethod):
        return method
    try:
        return CostMethod(str(method).strip().upper())
    except ValueError:
        raise UnsupportedCostMethodError(str(method)) from None


class LayerSourceType(str, Enum):
    """What created a receipt layer."""

    OPENING_BALANCE = "OPENING_BALANCE"
    STOCK_IN = "STOCK_IN"


class AllocationStatus(str, Enum):
    """Outcome of one (order, SKU) pair, or of a whole order line."""

    ALLOCATED = "allocated"
    ALREADY_ALLOCATED = "already_allocated"


@dataclass(frozen=True)
class LayerView:
    """Read-only snapshot of a receipt layer."""

    id: int
    sku: str
    quantity_received: Decimal
    quantity_remaining: Decimal
    unit_cost: Decimal
    received_at: datetime
    source_type: LayerSourceType
    source_ref: str | None
    voided: bool

    @property
    def quantity_consumed(self) -> Decimal:
        return self.quantity_received - self.quantity_remaining


@dataclass(frozen=True)
class AllocationRow:
    """One persisted ledger row."""

    id: int
    order_id: str
    sku: str
    layer_id: int
    quantity: Decimal
    unit_cost: Decimal
    cost: Decimal
    is_reversal: bool
    shipped_at: datetime
    method: CostMethod = CostMethod.FIFO
    reversal_reason: str | None = None


@dataclass(frozen=True)
class PairOutcome:
    """Result for one consumed SKU of an order line."""

    sku: str
    required_quantity: Decimal
    status: AllocationStatus
    rows: tuple[AllocationRow, ...] = ()

    @property
    def allocated_quantity(self) -> Decimal:
        return sum((r.quantity for r in self.rows), _ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((r.cost for r in self.rows), _ZERO)


@dataclass(frozen=True)
class AllocationOutcome:
    """
    Result of allocating one order line.

    ``status`` is ALLOCATED when at least one pair wrote rows, and
    ALREADY_ALLOCATED when every pair was skipped by the idempotency check.
    """

    order_id: str
    line_sku: str
    quantity: Decimal
    is_bundle: bool
    status: AllocationStatus
    pairs: tuple[PairOutcome, ...] = ()

    @property
    def rows(self) -> tuple[AllocationRow, ...]:
        return tuple(row for pair in self.pairs for row in pair.rows)

    @property
    def total_cost(self) -> Decimal:
        return sum((pair.total_cost for pair in self.pairs), _ZERO)

    @property
    def allocated_skus(self) -> tuple[str, ...]:
        return tuple(
            p.sku for p in self.pairs if p.status == AllocationStatus.ALLOCATED
        )

    @property
    def skipped_skus(self) -> tuple[str, ...]:
        return tuple(
            p.sku for p in self.pairs
            if p.status == AllocationStatus.ALREADY_ALLOCATED
        )


@dataclass(frozen=True)
class ReversalOutcome:
    """Result of reversing (part of) an allocation for one (order, SKU)."""

    order_id: str
    sku: str
    rows: tuple[AllocationRow, ...] = field(default_factory=tuple)

    @property
    def is_noop(self) -> bool:
        return not self.rows

    @property
    def reversed_quantity(self) -> Decimal:
        """Positive quantity put back onto layers."""
        return -sum((r.quantity for r in self.rows), _ZERO)

    @property
    def reversed_cost(self) -> Decimal:
        """Positive cost removed from COGS."""
        return -sum((r.cost for r in self.rows), _ZERO)
