"""
ORM-Level Immutability Enforcement for the COGS ledger and receipt layers.

===============================================================================
WHY THIS EXISTS
===============================================================================

The allocation ledger is append-only: a return or cancellation is recorded
as new negative rows, never by editing or removing history.  Receipt layers
are never deleted; a wrong opening balance is voided, not removed.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below intercept them:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() ------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|--------------------------------------------------------
CogsAllocation    | ALWAYS immutable: no UPDATE, no DELETE
ReceiptLayer      | No DELETE.  sku, quantity_received, unit_cost,
                  | received_at, source_type frozen after insert.
                  | quantity_remaining and the void fields stay mutable
                  | (LayerStore owns them).

Audit metadata (updated_at, updated_by_id) may always change.

===============================================================================
USAGE
===============================================================================

    from costing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that must violate the rules on purpose call
unregister_immutability_listeners() and re-register afterwards.
===============================================================================
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from costing_kernel.exceptions import ImmutabilityViolationError
from costing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

LAYER_FROZEN_FIELDS = frozenset({
    "sku",
    "quantity_received",
    "unit_cost",
    "received_at",
    "source_type",
})


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_cogs_allocation_immutability(mapper, connection, target):
    """Prevent any update to a ledger row."""
    _block(
        "CogsAllocation",
        target.id,
        "UPDATE",
        "COGS allocation rows are append-only; record a reversal instead",
    )


def _check_cogs_allocation_delete(mapper, connection, target):
    """Prevent deletion of a ledger row."""
    _block(
        "CogsAllocation",
        target.id,
        "DELETE",
        "COGS allocation rows cannot be deleted; record a reversal instead",
    )


def _check_receipt_layer_immutability(mapper, connection, target):
    """Prevent changes to a layer's frozen fields."""
    for field in sorted(LAYER_FROZEN_FIELDS):
        if get_history(target, field).has_changes():
            _block(
                "ReceiptLayer",
                target.id,
                "UPDATE",
                f"Field {field!r} cannot change after the layer is created",
            )


def _check_receipt_layer_delete(mapper, connection, target):
    """Prevent deletion of a layer."""
    _block(
        "ReceiptLayer",
        target.id,
        "DELETE",
        "Receipt layers are never deleted; void the layer instead",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    from costing_kernel.models.cogs_allocation import CogsAllocationModel
    from costing_kernel.models.receipt_layer import ReceiptLayerModel

    for target, event_name, fn in _listeners(CogsAllocationModel, ReceiptLayerModel):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    from costing_kernel.models.cogs_allocation import CogsAllocationModel
    from costing_kernel.models.receipt_layer import ReceiptLayerModel

    for target, event_name, fn in _listeners(CogsAllocationModel, ReceiptLayerModel):
        _safe_remove_listener(target, event_name, fn)


def _listeners(allocation_model, layer_model):
    return (
        (allocation_model, "before_update", _check_cogs_allocation_immutability),
        (allocation_model, "before_delete", _check_cogs_allocation_delete),
        (layer_model, "before_update", _check_receipt_layer_immutability),
        (layer_model, "before_delete", _check_receipt_layer_delete),
    )
