"""
costing_services.layer_store -- Receipt layer persistence and FIFO selection.

Responsibility:
    Owns the receipt layers of every SKU: exposes consumable layers in FIFO
    order, applies consumption and restoration of quantity_remaining, and
    handles the stock-in / opening-balance / void maintenance flows.

Architecture position:
    Services -- stateful, over a caller-owned Session.  Flushes, never
    commits.

Invariants enforced:
    - FIFO candidate order: (received_at ASC, id ASC), non-voided,
      quantity_remaining > 0.
    - 0 <= quantity_remaining <= quantity_received after every consume and
      restore; violations raise LayerUnderflowError / LayerOverflowError.
    - Only untouched OPENING_BALANCE layers can be voided.
    - Every mutation runs under the SKU's lock (see locking.py).

Failure modes:
    - LayerNotFoundError for an unknown layer id.
    - LayerUnderflowError / LayerOverflowError (InvariantViolationError).
    - ItemNotFoundError / InvalidReceiptError from add_layer.
    - LayerVoidNotAllowedError from void_layer.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from costing_kernel.db.types import ensure_utc, to_decimal
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import LayerSourceType, LayerView
from costing_kernel.exceptions import (
    InvalidQuantityError,
    InvalidReceiptError,
    ItemNotFoundError,
    LayerNotFoundError,
    LayerOverflowError,
    LayerUnderflowError,
    LayerVoidNotAllowedError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models.cogs_allocation import CogsAllocationModel
from costing_kernel.models.inventory_item import InventoryItemModel
from costing_kernel.models.receipt_layer import ReceiptLayerModel
from costing_kernel.services.base import BaseService
from costing_services.locking import SkuLockRegistry, process_lock_registry

logger = get_logger("services.layer_store")

_ZERO = Decimal("0")


class LayerStore(BaseService[ReceiptLayerModel]):
    """
    Receipt layer store.

    Contract:
        consume/restore are the only writers of quantity_remaining.  Callers
        that plan consumption from list_consumable_layers and then consume
        while holding the same SKU lock never see an underflow.

    Non-goals:
        - Does not decide how much to consume (costing_engines.fifo does).
        - Does not write ledger rows (AllocationEngine does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        locks: SkuLockRegistry | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._locks = locks or process_lock_registry()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_consumable_layers(self, sku: str, for_update: bool = False) -> list[LayerView]:
        """
        Non-voided layers with stock left, in FIFO order.

        With ``for_update`` the rows are locked until the caller's
        transaction ends (no-op on SQLite) and refreshed from the database.
        """
        stmt = (
            select(ReceiptLayerModel)
            .where(
                ReceiptLayerModel.sku == sku,
                ReceiptLayerModel.voided.is_(False),
                ReceiptLayerModel.quantity_remaining > _ZERO,
            )
            .order_by(ReceiptLayerModel.received_at, ReceiptLayerModel.id)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return [layer.to_dto() for layer in self.session.scalars(stmt)]

    def get_layer(self, layer_id: int) -> LayerView:
        return self._load(layer_id).to_dto()

    def quantity_on_hand(self, sku: str) -> Decimal:
        """Total remaining across the SKU's non-voided layers."""
        stmt = select(
            func.coalesce(func.sum(ReceiptLayerModel.quantity_remaining), _ZERO)
        ).where(
            ReceiptLayerModel.sku == sku,
            ReceiptLayerModel.voided.is_(False),
        )
        return self.session.scalar(stmt) or _ZERO

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def consume(
        self,
        layer_id: int,
        quantity: Decimal,
        actor_id: UUID | None = None,
    ) -> LayerView:
        """Decrement quantity_remaining by ``quantity``."""
        if quantity is None or not quantity.is_finite() or quantity <= _ZERO:
            raise InvalidQuantityError(quantity, context=f"consume layer {layer_id}")

        layer = self._load(layer_id)
        with self._locks.hold(layer.sku):
            if layer.voided:
                logger.error(
                    "layer_consume_voided",
                    extra={"layer_id": layer_id, "requested": str(quantity)},
                )
                raise LayerUnderflowError(layer_id, _ZERO, quantity)

            new_remaining = layer.quantity_remaining - quantity
            if new_remaining < _ZERO:
                logger.error(
                    "layer_underflow_blocked",
                    extra={
                        "layer_id": layer_id,
                        "sku": layer.sku,
                        "remaining": str(layer.quantity_remaining),
                        "requested": str(quantity),
                    },
                )
                raise LayerUnderflowError(layer_id, layer.quantity_remaining, quantity)

            layer.quantity_remaining = new_remaining
            if actor_id is not None:
                layer.updated_by_id = actor_id
            self.session.flush()

        logger.debug(
            "layer_consumed",
            extra={
                "layer_id": layer_id,
                "quantity": str(quantity),
                "remaining": str(new_remaining),
            },
        )
        return layer.to_dto()

    def restore(
        self,
        layer_id: int,
        quantity: Decimal,
        actor_id: UUID | None = None,
    ) -> LayerView:
        """Increment quantity_remaining by ``quantity`` (reversal path)."""
        if quantity is None or not quantity.is_finite() or quantity <= _ZERO:
            raise InvalidQuantityError(quantity, context=f"restore layer {layer_id}")

        layer = self._load(layer_id)
        with self._locks.hold(layer.sku):
            new_remaining = layer.quantity_remaining + quantity
            if new_remaining > layer.quantity_received:
                logger.error(
                    "layer_overflow_blocked",
                    extra={
                        "layer_id": layer_id,
                        "sku": layer.sku,
                        "remaining": str(layer.quantity_remaining),
                        "received": str(layer.quantity_received),
                        "restored": str(quantity),
                    },
                )
                raise LayerOverflowError(
                    layer_id,
                    layer.quantity_remaining,
                    layer.quantity_received,
                    quantity,
                )

            layer.quantity_remaining = new_remaining
            if actor_id is not None:
                layer.updated_by_id = actor_id
            self.session.flush()

        logger.debug(
            "layer_restored",
            extra={
                "layer_id": layer_id,
                "quantity": str(quantity),
                "remaining": str(new_remaining),
            },
        )
        return layer.to_dto()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def add_layer(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        received_at: datetime,
        actor_id: UUID,
        source_type: LayerSourceType | str = LayerSourceType.STOCK_IN,
        source_ref: str | None = None,
    ) -> LayerView:
        """
        Record a stock receipt (purchase or opening balance) as a new layer.

        Raises:
            ItemNotFoundError: SKU is not in the catalog.
            InvalidReceiptError: SKU is a bundle, quantity <= 0, cost < 0 or
                unknown source type.
        """
        sku = (sku or "").strip()
        qty = to_decimal(quantity)
        cost = to_decimal(unit_cost)

        item = self.session.scalar(
            select(InventoryItemModel).where(InventoryItemModel.sku == sku)
        )
        if item is None:
            raise ItemNotFoundError(sku)
        if item.is_bundle:
            raise InvalidReceiptError(sku, "bundle SKUs hold no stock of their own")
        if qty is None or qty <= _ZERO:
            raise InvalidReceiptError(sku, f"quantity must be positive, got {quantity!r}")
        if cost is None or cost < _ZERO:
            raise InvalidReceiptError(
                sku, f"unit cost must be a non-negative number, got {unit_cost!r}"
            )
        try:
            source = LayerSourceType(source_type)
        except ValueError:
            raise InvalidReceiptError(sku, f"unknown source type {source_type!r}") from None

        with self._locks.hold(sku):
            layer = ReceiptLayerModel(
                sku=sku,
                quantity_received=qty,
                quantity_remaining=qty,
                unit_cost=cost,
                received_at=ensure_utc(received_at),
                source_type=source.value,
                source_ref=source_ref,
                voided=False,
                created_by_id=actor_id,
            )
            self.session.add(layer)
            self.session.flush()

        logger.info(
            "receipt_layer_created",
            extra={
                "layer_id": layer.id,
                "sku": sku,
                "quantity": str(qty),
                "unit_cost": str(cost),
                "source_type": source.value,
                "source_ref": source_ref,
            },
        )
        return layer.to_dto()

    def void_layer(self, layer_id: int, reason: str, actor_id: UUID) -> LayerView:
        """
        Void an opening-balance layer that nothing has consumed.

        Raises:
            LayerNotFoundError: unknown layer.
            LayerVoidNotAllowedError: not an opening balance, already voided,
                partly consumed, referenced by the ledger, or no reason given.
        """
        layer = self._load(layer_id)
        with self._locks.hold(layer.sku):
            if not reason or not reason.strip():
                raise LayerVoidNotAllowedError(layer_id, "a void reason is required")
            if layer.source_type != LayerSourceType.OPENING_BALANCE.value:
                raise LayerVoidNotAllowedError(
                    layer_id, "only opening balance layers can be voided"
                )
            if layer.voided:
                raise LayerVoidNotAllowedError(layer_id, "layer is already voided")
            if layer.quantity_remaining != layer.quantity_received:
                raise LayerVoidNotAllowedError(
                    layer_id, "layer has been partly consumed"
                )
            referenced = self.session.scalar(
                select(exists().where(CogsAllocationModel.layer_id == layer_id))
            )
            if referenced:
                raise LayerVoidNotAllowedError(
                    layer_id, "layer is referenced by COGS allocations"
                )

            layer.voided = True
            layer.voided_at = self._clock.now()
            layer.void_reason = reason.strip()
            layer.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "receipt_layer_voided",
            extra={"layer_id": layer_id, "sku": layer.sku, "reason": layer.void_reason},
        )
        return layer.to_dto()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load(self, layer_id: int) -> ReceiptLayerModel:
        layer = self.session.get(ReceiptLayerModel, layer_id)
        if layer is None:
            raise LayerNotFoundError(layer_id)
        return layer
