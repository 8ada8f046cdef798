"""
CostingOrchestrator -- DI container and entry point for COGS runs.

Contract:
    ``from_session()`` wires LayerStore, BundleResolver, IdempotencyGuard,
    AllocationEngine, BatchRunner and RunLogService over one session, clock
    and configuration.  The public operations check the actor's capability
    first, then delegate.

Architecture: costing_batch (top-level).  This is the canonical entry point
    for applying and reversing COGS.

Invariants enforced:
    - Capability checks live here, never in the engine: ``cogs.apply`` for
      batch runs, ``cogs.reverse`` for reversals, ``inventory.layers.manage``
      for receipts and voids.
    - Clock injection: every service receives the same Clock.
    - Validation errors raise before a run log row is written.
    - A run that fails unexpectedly is rolled back to its SAVEPOINT and
      recorded as FAILED; the failure is returned, not raised.
    - Does NOT commit; the caller controls the transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from costing_batch.domain.types import BatchSummary, RunRecord, TriggerSource
from costing_batch.services.run_log import RunLogService
from costing_batch.services.runner import BatchRunner
from costing_config import get_active_config
from costing_config.schema import CostingConfig
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dates import business_date_range, business_day_of, month_to_date
from costing_kernel.domain.dtos import (
    CostMethod,
    LayerSourceType,
    LayerView,
    ReversalOutcome,
    parse_cost_method,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_services.allocation_engine import AllocationEngine
from costing_services.authority import (
    COGS_APPLY,
    COGS_REVERSE,
    LAYERS_MANAGE,
    require_permission,
)
from costing_services.bundle_resolver import BundleResolver
from costing_services.idempotency_guard import IdempotencyGuard
from costing_services.layer_store import LayerStore
from costing_services.locking import SkuLockRegistry, process_lock_registry

logger = get_logger("batch.orchestrator")


@dataclass(frozen=True)
class ApplyCogsResult:
    """Run log entry plus the summary (None when the run failed)."""

    run: RunRecord
    summary: BatchSummary | None = None

    @property
    def succeeded(self) -> bool:
        return self.summary is not None


class CostingOrchestrator:
    """DI container for the costing system.

    Non-goals:
        - Does NOT resolve actor identity; callers pass ``actor_roles``.
        - Does NOT manage session lifecycle; caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        config: CostingConfig,
        clock: Clock,
        layer_store: LayerStore,
        resolver: BundleResolver,
        guard: IdempotencyGuard,
        engine: AllocationEngine,
        run_log: RunLogService,
    ) -> None:
        self._session = session
        self._config = config
        self._clock = clock
        self.layer_store = layer_store
        self.resolver = resolver
        self.guard = guard
        self.engine = engine
        self.run_log = run_log

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        locks: SkuLockRegistry | None = None,
    ) -> CostingOrchestrator:
        """Create a fully wired orchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            clock: Optional clock for deterministic testing.
            config: Optional configuration; defaults to get_active_config().
            locks: Optional SKU lock registry; defaults to the process-wide one.
        """
        effective_clock = clock or SystemClock()
        effective_config = config or get_active_config()
        effective_locks = locks or process_lock_registry()

        layer_store = LayerStore(session, effective_clock, effective_locks)
        resolver = BundleResolver(session)
        guard = IdempotencyGuard(session)
        engine = AllocationEngine(
            session,
            clock=effective_clock,
            locks=effective_locks,
            layer_store=layer_store,
            resolver=resolver,
            guard=guard,
        )
        return cls(
            session=session,
            config=effective_config,
            clock=effective_clock,
            layer_store=layer_store,
            resolver=resolver,
            guard=guard,
            engine=engine,
            run_log=RunLogService(session, effective_clock),
        )

    def create_runner(self) -> BatchRunner:
        return BatchRunner(
            self._session,
            self._config,
            engine=self.engine,
            guard=self.guard,
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Apply COGS
    # -------------------------------------------------------------------------

    def apply_cogs(
        self,
        start_date: date | str,
        end_date: date | str,
        actor_id: UUID,
        actor_roles: Iterable[str],
        method: CostMethod | str | None = None,
        trigger: TriggerSource = TriggerSource.DATE_RANGE,
    ) -> ApplyCogsResult:
        """Run FIFO COGS allocation for a business-date range and log the run.

        Raises:
            NotAuthorizedError: roles do not grant ``cogs.apply``.
            InvalidDateFormatError / InvalidDateRangeError /
            UnsupportedCostMethodError: before any run row is written.
        """
        require_permission(self._config, actor_id, actor_roles, COGS_APPLY)
        window = business_date_range(
            start_date, end_date, self._config.business_timezone,
        )
        cost_method = parse_cost_method(method or self._config.default_method)

        correlation_id = str(uuid4())
        run = self.run_log.start_run(
            window.start_date,
            window.end_date,
            cost_method.value,
            trigger,
            actor_id,
            correlation_id=correlation_id,
        )

        with LogContext.bind(
            correlation_id=correlation_id,
            run_id=run.run_id,
            actor_id=actor_id,
        ):
            savepoint = self._session.begin_nested()
            try:
                summary = self.create_runner().run(
                    window.start_date, window.end_date, actor_id, method=cost_method,
                )
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                logger.exception("cogs_apply_failed")
                failed = self.run_log.complete_failed(
                    run.run_id, f"{type(exc).__name__}: {exc}", actor_id,
                )
                return ApplyCogsResult(run=failed)

            completed = self.run_log.complete_success(run.run_id, summary, actor_id)
            return ApplyCogsResult(run=completed, summary=summary)

    def apply_cogs_month_to_date(
        self,
        actor_id: UUID,
        actor_roles: Iterable[str],
        method: CostMethod | str | None = None,
    ) -> ApplyCogsResult:
        """Apply COGS from the first of the current business month to today."""
        today = business_day_of(self._clock.now(), self._config.business_timezone)
        start, end = month_to_date(today)
        return self.apply_cogs(
            start, end, actor_id, actor_roles, method=method, trigger=TriggerSource.MTD,
        )

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    def reverse_order_line(
        self,
        order_id: str,
        line_sku: str,
        actor_id: UUID,
        actor_roles: Iterable[str],
        quantity: Decimal | int | str | None = None,
        reversed_at: datetime | None = None,
        reason: str | None = None,
    ) -> tuple[ReversalOutcome, ...]:
        """Reverse (part of) an order line's COGS, e.g. for a return.

        Raises:
            NotAuthorizedError: roles do not grant ``cogs.reverse``.
            ReversalExceedsAllocationError: quantity exceeds what is outstanding.
        """
        require_permission(self._config, actor_id, actor_roles, COGS_REVERSE)
        with LogContext.bind(actor_id=actor_id):
            return self.engine.reverse_line(
                order_id,
                line_sku,
                actor_id,
                quantity=quantity,
                reversed_at=reversed_at,
                reason=reason,
            )

    # -------------------------------------------------------------------------
    # Receipt layers
    # -------------------------------------------------------------------------

    def receive_stock(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        received_at: datetime,
        actor_id: UUID,
        actor_roles: Iterable[str],
        source_type: LayerSourceType = LayerSourceType.STOCK_IN,
        source_ref: str | None = None,
    ) -> LayerView:
        require_permission(self._config, actor_id, actor_roles, LAYERS_MANAGE)
        return self.layer_store.add_layer(
            sku,
            quantity,
            unit_cost,
            received_at,
            actor_id,
            source_type=source_type,
            source_ref=source_ref,
        )

    def void_opening_balance(
        self,
        layer_id: int,
        reason: str,
        actor_id: UUID,
        actor_roles: Iterable[str],
    ) -> LayerView:
        require_permission(self._config, actor_id, actor_roles, LAYERS_MANAGE)
        return self.layer_store.void_layer(layer_id, reason, actor_id)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> CostingConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock
