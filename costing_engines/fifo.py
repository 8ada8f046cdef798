"""
costing_engines.fifo -- FIFO consumption planning over receipt layers.

Responsibility:
    Given a SKU's consumable layers and a needed quantity, decide how much to
    draw from each layer, oldest first.  The plan is computed in full before
    anything is written, so an order line that cannot be satisfied leaves no
    trace.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stateful LayerStore and
    AllocationEngine live in costing_services/.

Invariants enforced:
    - Order: layers are consumed by (received_at ASC, layer_id ASC).  The id
      tie-break makes same-timestamp layers deterministic.
    - Each draw is min(layer remaining, need still open).
    - Exact arithmetic: draw cost is quantity * unit_cost with no rounding.
    - All or nothing: a short plan carries no draws.

Failure modes:
    - ValueError if needed <= 0 (callers validate quantities first).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from costing_engines.tracer import traced_engine

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class LayerSnapshot:
    """What the planner needs to know about one candidate layer."""

    layer_id: int
    received_at: datetime
    remaining: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class LayerDraw:
    """Quantity to take from one layer."""

    layer_id: int
    quantity: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class FifoPlan:
    """
    Planned consumption for one SKU.

    ``available`` is the total remaining across all candidate layers, which
    is what InsufficientStockError reports when the plan is short.
    """

    sku: str
    needed: Decimal
    available: Decimal
    draws: tuple[LayerDraw, ...]

    @property
    def is_satisfied(self) -> bool:
        return self.available >= self.needed

    @property
    def shortfall(self) -> Decimal:
        return max(self.needed - self.available, _ZERO)

    @property
    def total_quantity(self) -> Decimal:
        return sum((d.quantity for d in self.draws), _ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((d.cost for d in self.draws), _ZERO)


def fifo_order(layers: Iterable[LayerSnapshot]) -> list[LayerSnapshot]:
    """Sort layers into consumption order."""
    return sorted(layers, key=lambda layer: (layer.received_at, layer.layer_id))


@traced_engine("fifo", "1.0", fingerprint_fields=("sku", "needed", "layers"))
def plan_fifo(
    *,
    sku: str,
    needed: Decimal,
    layers: Iterable[LayerSnapshot],
) -> FifoPlan:
    """
    Plan FIFO consumption of ``needed`` units of ``sku``.

    Layers with nothing remaining are ignored.  When the layers cannot cover
    ``needed`` the plan is returned with no draws and ``is_satisfied`` False.
    """
    if needed <= _ZERO:
        raise ValueError(f"Needed quantity must be positive, got {needed}")

    candidates = [layer for layer in fifo_order(layers) if layer.remaining > _ZERO]
    available = sum((layer.remaining for layer in candidates), _ZERO)

    if available < needed:
        return FifoPlan(sku=sku, needed=needed, available=available, draws=())

    draws: list[LayerDraw] = []
    open_need = needed
    for layer in candidates:
        if open_need <= _ZERO:
            break
        take = min(layer.remaining, open_need)
        draws.append(
            LayerDraw(layer_id=layer.layer_id, quantity=take, unit_cost=layer.unit_cost)
        )
        open_need -= take

    return FifoPlan(sku=sku, needed=needed, available=available, draws=tuple(draws))
