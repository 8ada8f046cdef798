"""
costing_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure costing engines with a database
    session: receipt layers, bundle recipes, the idempotency guard, the
    allocation engine, per-SKU locks and the capability check.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        costing_services/ -> costing_engines/  (allowed)
        costing_services/ -> costing_kernel/   (allowed)
        costing_engines/  -> costing_services/ (FORBIDDEN)
        costing_kernel/   -> costing_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from costing_services.allocation_engine import AllocationEngine
from costing_services.authority import (
    COGS_APPLY,
    COGS_REVERSE,
    LAYERS_MANAGE,
    check_permission,
    require_permission,
)
from costing_services.bundle_resolver import BundleResolver
from costing_services.idempotency_guard import IdempotencyGuard, fold_rows
from costing_services.layer_store import LayerStore
from costing_services.locking import SkuLockRegistry, process_lock_registry

__all__ = [
    "AllocationEngine",
    "BundleResolver",
    "COGS_APPLY",
    "COGS_REVERSE",
    "IdempotencyGuard",
    "LAYERS_MANAGE",
    "LayerStore",
    "SkuLockRegistry",
    "check_permission",
    "fold_rows",
    "process_lock_registry",
    "require_permission",
]
