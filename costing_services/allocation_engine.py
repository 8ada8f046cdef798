"""
costing_services.allocation_engine -- Allocate and reverse COGS for order lines.

Responsibility:
    The central state transition: "allocate cost for one order line" and its
    inverse "reverse".  Composes BundleResolver, IdempotencyGuard, LayerStore
    and the pure FIFO / ledger engines.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Flushes into
    the caller's transaction; each line's writes sit in their own SAVEPOINT.

Invariants enforced:
    - Per-pair idempotency: a (order_id, consumed SKU) pair with an active
      allocation is skipped, not re-allocated.
    - Line atomicity: every pair of a line is planned before anything is
      written.  If any pair is short, InsufficientStockError is raised and
      nothing is written for any pair.  Writes for the line run in one
      SAVEPOINT, so an invariant violation mid-write leaves no partial rows.
    - One ledger row per layer touched; cost_allocated = quantity * unit cost
      exactly.
    - Reversal appends negated rows and restores the same layers.  Nothing
      outstanding means nothing happens.
    - The SKU locks of every consumed SKU are held across read-plan-write.

Failure modes:
    - MissingSkuError, InvalidQuantityError, UnsupportedCostMethodError on
      bad input (before any read).
    - NoRecipeError, NestedBundleError, InvalidRecipeError from bundle lines.
    - InsufficientStockError(sku, needed, available).
    - LayerUnderflowError / LayerOverflowError if layer state changed under
      us (concurrency bug or corruption).
    - ReversalExceedsAllocationError on a partial reversal that is too big.

Audit relevance:
    Every allocation and reversal is logged with order_id, SKU, layer ids,
    quantities and costs.  The ledger itself is the audit trail.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_engines.bundle import ComponentDemand
from costing_engines.fifo import FifoPlan, LayerSnapshot, plan_fifo
from costing_engines.ledger import ReversalDraw, plan_reversal
from costing_kernel.db.types import ensure_utc, to_decimal
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    AllocationOutcome,
    AllocationRow,
    AllocationStatus,
    CostMethod,
    PairOutcome,
    ReversalOutcome,
    parse_cost_method,
)
from costing_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    MissingSkuError,
    ReversalExceedsAllocationError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.cogs_allocation import CogsAllocationModel
from costing_kernel.models.sales_order_line import SalesOrderLineModel
from costing_kernel.services.base import BaseService
from costing_services.bundle_resolver import BundleResolver
from costing_services.idempotency_guard import IdempotencyGuard, fold_rows
from costing_services.layer_store import LayerStore
from costing_services.locking import SkuLockRegistry, process_lock_registry

logger = get_logger("services.allocation_engine")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class _PlannedPair:
    demand: ComponentDemand
    plan: FifoPlan


class AllocationEngine(BaseService[CogsAllocationModel]):
    """
    FIFO COGS allocation for order lines.

    Contract:
        allocate() either writes every pending pair of the line or nothing.
        reverse() writes negated rows for what is outstanding (or the
        requested part of it) and restores the layers.

    Non-goals:
        - Does not authorize callers (CostingOrchestrator does).
        - Does not classify batch skips (BatchRunner does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        locks: SkuLockRegistry | None = None,
        layer_store: LayerStore | None = None,
        resolver: BundleResolver | None = None,
        guard: IdempotencyGuard | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._locks = locks or process_lock_registry()
        self._layers = layer_store or LayerStore(session, self._clock, self._locks)
        self._resolver = resolver or BundleResolver(session)
        self._guard = guard or IdempotencyGuard(session)

    # ------------------------------------------------------------------
    # Allocate
    # ------------------------------------------------------------------

    def allocate(
        self,
        order_id: str,
        sku: str,
        quantity: Decimal | int | str | None,
        shipped_at: datetime,
        actor_id: UUID,
        method: CostMethod | str = CostMethod.FIFO,
    ) -> AllocationOutcome:
        """
        Allocate COGS for one shipped order line.

        Args:
            order_id: Sales order identifier.
            sku: Line SKU (plain item or bundle).
            quantity: Units shipped; must be > 0.
            shipped_at: Ship instant, copied onto every ledger row.
            actor_id: Actor recorded as created_by on ledger rows.
            method: Cost method; only FIFO is accepted.

        Returns:
            AllocationOutcome with one PairOutcome per consumed SKU.

        Raises:
            InsufficientStockError: some pair cannot be covered; nothing written.
        """
        line_sku = (sku or "").strip()
        if not line_sku:
            raise MissingSkuError(order_id)
        qty = to_decimal(quantity)
        if qty is None or qty <= _ZERO:
            raise InvalidQuantityError(quantity, context=f"order {order_id} sku {line_sku}")
        cost_method = parse_cost_method(method)
        shipped_at = ensure_utc(shipped_at)

        with LogContext.bind(order_id=order_id, sku=line_sku):
            t0 = time.monotonic()
            logger.info(
                "fifo_allocation_started",
                extra={"quantity": str(qty), "method": cost_method.value},
            )

            is_bundle, demands = self._resolver.resolve_line(line_sku, qty)

            with self._locks.hold(*(d.sku for d in demands)):
                skipped: dict[str, PairOutcome] = {}
                pending: list[ComponentDemand] = []
                for demand in demands:
                    if self._guard.has_active_allocation(order_id, demand.sku):
                        skipped[demand.sku] = PairOutcome(
                            sku=demand.sku,
                            required_quantity=demand.required_quantity,
                            status=AllocationStatus.ALREADY_ALLOCATED,
                        )
                    else:
                        pending.append(demand)

                planned = [self._plan(demand) for demand in pending]
                written = self._write_allocation(
                    order_id, shipped_at, actor_id, cost_method, planned,
                )

            pairs = tuple(skipped.get(d.sku) or written[d.sku] for d in demands)
            status = (
                AllocationStatus.ALLOCATED if written
                else AllocationStatus.ALREADY_ALLOCATED
            )
            outcome = AllocationOutcome(
                order_id=order_id,
                line_sku=line_sku,
                quantity=qty,
                is_bundle=is_bundle,
                status=status,
                pairs=pairs,
            )

            logger.info(
                "fifo_allocation_completed",
                extra={
                    "status": status.value,
                    "is_bundle": is_bundle,
                    "rows_written": len(outcome.rows),
                    "allocated_skus": list(outcome.allocated_skus),
                    "skipped_skus": list(outcome.skipped_skus),
                    "total_cost": str(outcome.total_cost),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return outcome

    def _plan(self, demand: ComponentDemand) -> _PlannedPair:
        layers = self._layers.list_consumable_layers(demand.sku, for_update=True)
        plan = plan_fifo(
            sku=demand.sku,
            needed=demand.required_quantity,
            layers=[
                LayerSnapshot(
                    layer_id=layer.id,
                    received_at=layer.received_at,
                    remaining=layer.quantity_remaining,
                    unit_cost=layer.unit_cost,
                )
                for layer in layers
            ],
        )
        if not plan.is_satisfied:
            logger.warning(
                "fifo_allocation_insufficient_stock",
                extra={
                    "consumed_sku": demand.sku,
                    "needed": str(plan.needed),
                    "available": str(plan.available),
                },
            )
            raise InsufficientStockError(demand.sku, plan.needed, plan.available)
        return _PlannedPair(demand=demand, plan=plan)

    def _write_allocation(
        self,
        order_id: str,
        shipped_at: datetime,
        actor_id: UUID,
        method: CostMethod,
        planned: list[_PlannedPair],
    ) -> dict[str, PairOutcome]:
        if not planned:
            return {}

        written: dict[str, PairOutcome] = {}
        savepoint = self.session.begin_nested()
        try:
            for item in planned:
                models: list[CogsAllocationModel] = []
                for draw in item.plan.draws:
                    self._layers.consume(draw.layer_id, draw.quantity, actor_id=actor_id)
                    row = CogsAllocationModel(
                        order_id=order_id,
                        sku=item.demand.sku,
                        shipped_at=shipped_at,
                        quantity_allocated=draw.quantity,
                        unit_cost_used=draw.unit_cost,
                        cost_allocated=draw.cost,
                        layer_id=draw.layer_id,
                        is_reversal=False,
                        method=method.value,
                        created_by_id=actor_id,
                    )
                    self.session.add(row)
                    models.append(row)
                self.session.flush()
                written[item.demand.sku] = PairOutcome(
                    sku=item.demand.sku,
                    required_quantity=item.demand.required_quantity,
                    status=AllocationStatus.ALLOCATED,
                    rows=tuple(m.to_dto() for m in models),
                )
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.error("fifo_allocation_rolled_back", exc_info=True)
            raise
        return written

    # ------------------------------------------------------------------
    # Reverse
    # ------------------------------------------------------------------

    def reverse(
        self,
        order_id: str,
        sku: str,
        actor_id: UUID,
        quantity: Decimal | int | str | None = None,
        reversed_at: datetime | None = None,
        reason: str | None = None,
    ) -> ReversalOutcome:
        """
        Reverse the outstanding allocation of a consumed SKU on an order.

        Args:
            order_id: Sales order identifier.
            sku: Consumed SKU (component SKU for bundle lines).
            actor_id: Actor recorded as created_by on reversal rows.
            quantity: Units to give back; None reverses everything outstanding.
            reversed_at: Instant stamped on reversal rows.  Defaults to the
                ship instant of the first allocation row, so a cancellation
                nets out on the day it was charged.
            reason: Free-text reason stored on reversal rows.

        Returns:
            ReversalOutcome; ``is_noop`` when nothing was outstanding.

        Raises:
            InvalidQuantityError: quantity given and <= 0.
            ReversalExceedsAllocationError: quantity above outstanding.
        """
        qty = to_decimal(quantity)
        if quantity is not None and (qty is None or qty <= _ZERO):
            raise InvalidQuantityError(quantity, context=f"reverse order {order_id} sku {sku}")

        with LogContext.bind(order_id=order_id, sku=sku), self._locks.hold(sku):
            rows = self._guard.ledger_rows(order_id, sku)
            state = fold_rows(rows)
            if not state.is_active:
                logger.info("cogs_reversal_noop", extra={"ledger_rows": len(rows)})
                return ReversalOutcome(order_id=order_id, sku=sku)

            if qty is not None and qty > state.outstanding_quantity:
                raise ReversalExceedsAllocationError(
                    order_id, sku, qty, state.outstanding_quantity,
                )

            draws = plan_reversal(state=state, quantity=qty)
            effective_at = (
                ensure_utc(reversed_at) if reversed_at is not None
                else rows[0].shipped_at
            )
            written = self._write_reversal(
                order_id, sku, actor_id, effective_at, reason, draws,
            )

            outcome = ReversalOutcome(order_id=order_id, sku=sku, rows=written)
            logger.info(
                "cogs_reversal_completed",
                extra={
                    "partial": qty is not None,
                    "reversed_quantity": str(outcome.reversed_quantity),
                    "reversed_cost": str(outcome.reversed_cost),
                    "layers": [d.layer_id for d in draws],
                },
            )
            return outcome

    def _write_reversal(
        self,
        order_id: str,
        sku: str,
        actor_id: UUID,
        effective_at: datetime,
        reason: str | None,
        draws: tuple[ReversalDraw, ...],
    ) -> tuple[AllocationRow, ...]:
        models: list[CogsAllocationModel] = []
        savepoint = self.session.begin_nested()
        try:
            for draw in draws:
                self._layers.restore(draw.layer_id, draw.quantity, actor_id=actor_id)
                row = CogsAllocationModel(
                    order_id=order_id,
                    sku=sku,
                    shipped_at=effective_at,
                    quantity_allocated=-draw.quantity,
                    unit_cost_used=draw.unit_cost,
                    cost_allocated=-draw.cost,
                    layer_id=draw.layer_id,
                    is_reversal=True,
                    method=CostMethod.FIFO.value,
                    reversal_reason=reason,
                    created_by_id=actor_id,
                )
                self.session.add(row)
                models.append(row)
            self.session.flush()
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.error("cogs_reversal_rolled_back", exc_info=True)
            raise
        return tuple(m.to_dto() for m in models)

    def reverse_line(
        self,
        order_id: str,
        line_sku: str,
        actor_id: UUID,
        quantity: Decimal | int | str | None = None,
        reversed_at: datetime | None = None,
        reason: str | None = None,
    ) -> tuple[ReversalOutcome, ...]:
        """
        Reverse an order line as it was sold: bundles through their components.

        A full bundle reversal works from the ledger, so components dropped
        from the recipe after the sale are still given back.  With
        ``quantity`` (units of the line SKU) a bundle return reverses
        quantity * ratio of each component of the current recipe.  All
        component reversals land together or not at all.
        """
        qty = to_decimal(quantity)
        if quantity is not None and (qty is None or qty <= _ZERO):
            raise InvalidQuantityError(quantity, context=f"reverse order {order_id} sku {line_sku}")

        if self._resolver.is_bundle(line_sku):
            if qty is None:
                targets = [
                    (sku, None) for sku in self._bundle_charges(order_id, line_sku)
                ]
            else:
                targets = [
                    (d.sku, d.required_quantity)
                    for d in self._resolver.resolve(line_sku, qty)
                ]
        else:
            targets = [(line_sku, qty)]

        savepoint = self.session.begin_nested()
        try:
            outcomes = tuple(
                self.reverse(
                    order_id,
                    target_sku,
                    actor_id,
                    quantity=target_qty,
                    reversed_at=reversed_at,
                    reason=reason,
                )
                for target_sku, target_qty in targets
            )
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise
        return outcomes

    def _bundle_charges(self, order_id: str, bundle_sku: str) -> tuple[str, ...]:
        # Ledger SKUs of the order that belong to the bundle line: current
        # recipe components, plus anything charged that no other line of the
        # order sells on its own.
        recipe = {line.component_sku for line in self._resolver.get_recipe(bundle_sku)}
        other_lines = set(
            self.session.scalars(
                select(SalesOrderLineModel.sku).where(
                    SalesOrderLineModel.order_id == order_id,
                    SalesOrderLineModel.sku.is_not(None),
                    SalesOrderLineModel.sku != bundle_sku,
                )
            )
        )
        return tuple(
            sku for sku in self._guard.charged_skus(order_id)
            if sku in recipe or sku not in other_lines
        )
