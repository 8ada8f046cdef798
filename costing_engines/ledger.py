"""
costing_engines.ledger -- Fold of the append-only COGS allocation ledger.

Responsibility:
    The ledger for one (order, SKU) pair is a sequence of events:

        AllocationEvent = AllocateEvent | ReverseEvent

    Current state -- how much of each layer is still charged to the pair --
    is derived by folding the events in ledger order.  Nothing is ever
    updated in place.  The same fold answers the idempotency question
    ("is there an active allocation?") and plans reversals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A layer's outstanding quantity never goes negative; a ledger where
      reversals exceed allocations is rejected as corrupt.
    - Outstanding slices keep consumption order (first allocation sequence),
      and partial reversals are taken in that order.

Failure modes:
    - ValueError on a corrupt ledger, on a non-positive reversal quantity,
      or on a reversal larger than what is outstanding.  Services check the
      last two first and raise typed errors.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from costing_engines.tracer import traced_engine

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class AllocateEvent:
    """Units of a layer charged to the pair.  ``quantity`` is positive."""

    sequence: int
    layer_id: int
    quantity: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class ReverseEvent:
    """Units of a layer given back.  ``quantity`` is the positive magnitude."""

    sequence: int
    layer_id: int
    quantity: Decimal
    unit_cost: Decimal


AllocationEvent = AllocateEvent | ReverseEvent


def event_from_row(
    *,
    sequence: int,
    layer_id: int,
    quantity: Decimal,
    unit_cost: Decimal,
    is_reversal: bool,
) -> AllocationEvent:
    """Build an event from a signed ledger row."""
    if is_reversal:
        return ReverseEvent(sequence, layer_id, abs(quantity), unit_cost)
    return AllocateEvent(sequence, layer_id, quantity, unit_cost)


@dataclass(frozen=True, slots=True)
class OutstandingSlice:
    """Quantity of one layer still charged to the pair."""

    layer_id: int
    unit_cost: Decimal
    quantity: Decimal
    first_sequence: int

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class LedgerState:
    slices: tuple[OutstandingSlice, ...]

    @property
    def outstanding_quantity(self) -> Decimal:
        return sum((s.quantity for s in self.slices), _ZERO)

    @property
    def outstanding_cost(self) -> Decimal:
        return sum((s.cost for s in self.slices), _ZERO)

    @property
    def is_active(self) -> bool:
        return self.outstanding_quantity > _ZERO


@dataclass(frozen=True, slots=True)
class ReversalDraw:
    """Quantity to give back to one layer."""

    layer_id: int
    unit_cost: Decimal
    quantity: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@traced_engine("ledger_fold", "1.0", fingerprint_fields=("events",))
def fold(*, events: Iterable[AllocationEvent]) -> LedgerState:
    """Fold ledger events into the outstanding quantity per layer."""
    per_layer: dict[int, list] = {}
    for ev in sorted(events, key=lambda e: e.sequence):
        entry = per_layer.get(ev.layer_id)
        if isinstance(ev, AllocateEvent):
            if entry is None:
                per_layer[ev.layer_id] = [ev.sequence, ev.unit_cost, ev.quantity]
            else:
                entry[2] += ev.quantity
            continue

        held = entry[2] if entry is not None else _ZERO
        if entry is None or ev.quantity > held:
            raise ValueError(
                f"Ledger corrupt: reversal of {ev.quantity} on layer "
                f"{ev.layer_id} exceeds outstanding {held}"
            )
        entry[2] = held - ev.quantity

    slices = [
        OutstandingSlice(
            layer_id=layer_id,
            unit_cost=unit_cost,
            quantity=quantity,
            first_sequence=first_seq,
        )
        for layer_id, (first_seq, unit_cost, quantity) in per_layer.items()
        if quantity > _ZERO
    ]
    slices.sort(key=lambda s: s.first_sequence)
    return LedgerState(slices=tuple(slices))


@traced_engine("ledger_reversal", "1.0", fingerprint_fields=("state", "quantity"))
def plan_reversal(
    *,
    state: LedgerState,
    quantity: Decimal | None = None,
) -> tuple[ReversalDraw, ...]:
    """
    Plan the reversal of ``quantity`` units (everything when None).

    Slices are given back in consumption order.
    """
    if quantity is None:
        return tuple(
            ReversalDraw(s.layer_id, s.unit_cost, s.quantity) for s in state.slices
        )
    if quantity <= _ZERO:
        raise ValueError(f"Reversal quantity must be positive, got {quantity}")
    if quantity > state.outstanding_quantity:
        raise ValueError(
            f"Reversal of {quantity} exceeds outstanding "
            f"{state.outstanding_quantity}"
        )

    draws: list[ReversalDraw] = []
    open_qty = quantity
    for s in state.slices:
        if open_qty <= _ZERO:
            break
        take = min(s.quantity, open_qty)
        draws.append(ReversalDraw(s.layer_id, s.unit_cost, take))
        open_qty -= take
    return tuple(draws)
