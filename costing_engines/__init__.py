"""
Module: costing_engines
Responsibility:
    Pure calculation engines for inventory costing: FIFO planning, flat
    bundle explosion, and the allocation-ledger fold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  MUST NOT import
    costing_services or costing_batch.

Invariants enforced:
    - Purity: no clock reads, no database access.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``costing_engines.tracer``), emitting COSTING_ENGINE_TRACE records.
"""

from costing_engines.bundle import ComponentDemand, RecipeLine, explode
from costing_engines.fifo import FifoPlan, LayerDraw, LayerSnapshot, fifo_order, plan_fifo
from costing_engines.ledger import (
    AllocateEvent,
    AllocationEvent,
    LedgerState,
    OutstandingSlice,
    ReversalDraw,
    ReverseEvent,
    event_from_row,
    fold,
    plan_reversal,
)

__all__ = [
    "RecipeLine",
    "ComponentDemand",
    "explode",
    "LayerSnapshot",
    "LayerDraw",
    "FifoPlan",
    "fifo_order",
    "plan_fifo",
    "AllocateEvent",
    "ReverseEvent",
    "AllocationEvent",
    "OutstandingSlice",
    "LedgerState",
    "ReversalDraw",
    "event_from_row",
    "fold",
    "plan_reversal",
]
