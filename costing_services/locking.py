"""
costing_services.locking -- Per-SKU mutual exclusion.

Responsibility:
    ``ReceiptLayer.quantity_remaining`` is the one piece of shared mutable
    state that concurrent allocations contend for.  The read-plan-write of an
    order line runs while holding the in-process lock of every SKU it
    touches.  On PostgreSQL the candidate layer rows are additionally locked
    with SELECT ... FOR UPDATE, which covers other processes until the
    caller's transaction commits.

Invariants enforced:
    - Multi-SKU acquisition is always in sorted SKU order, so two bundle
      lines sharing components cannot deadlock each other.
    - Locks are reentrant per thread: LayerStore can re-acquire a SKU that
      the AllocationEngine already holds.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from costing_kernel.logging_config import get_logger

logger = get_logger("services.locking")


class SkuLockRegistry:
    """Lazily created reentrant lock per SKU."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, sku: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(sku)
            if lock is None:
                lock = threading.RLock()
                self._locks[sku] = lock
            return lock

    @contextmanager
    def hold(self, *skus: str) -> Iterator[tuple[str, ...]]:
        """Hold the locks of ``skus`` (deduplicated, sorted) for the block."""
        ordered = tuple(sorted(set(skus)))
        acquired: list[threading.RLock] = []
        try:
            for sku in ordered:
                lock = self._lock_for(sku)
                lock.acquire()
                acquired.append(lock)
            logger.debug("sku_locks_acquired", extra={"skus": list(ordered)})
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def known_skus(self) -> frozenset[str]:
        with self._guard:
            return frozenset(self._locks)


_process_registry = SkuLockRegistry()


def process_lock_registry() -> SkuLockRegistry:
    """The registry shared by every service in this process."""
    return _process_registry
