"""Tests for the fold-based idempotency guard."""

from decimal import Decimal

from tests.conftest import CLOCK_START


class TestIdempotencyGuard:
    def test_no_rows_means_not_allocated(self, idempotency_guard):
        assert not idempotency_guard.has_active_allocation("SO-1", "A")

    def test_allocation_makes_pair_active(
        self, idempotency_guard, allocation_engine, make_layer, test_actor_id,
    ):
        make_layer("A", 10, "1")
        allocation_engine.allocate("SO-1", "A", 2, CLOCK_START, test_actor_id)

        assert idempotency_guard.has_active_allocation("SO-1", "A")
        assert not idempotency_guard.has_active_allocation("SO-1", "B")
        assert not idempotency_guard.has_active_allocation("SO-2", "A")

    def test_partial_reversal_stays_active(
        self, idempotency_guard, allocation_engine, make_layer, test_actor_id,
    ):
        make_layer("A", 10, "1")
        allocation_engine.allocate("SO-1", "A", 2, CLOCK_START, test_actor_id)
        allocation_engine.reverse("SO-1", "A", test_actor_id, quantity=1)

        state = idempotency_guard.ledger_state("SO-1", "A")
        assert state.is_active
        assert state.outstanding_quantity == Decimal("1")

    def test_active_skus(self, idempotency_guard, allocation_engine, make_layer, test_actor_id):
        make_layer("A", 10, "1")
        make_layer("B", 10, "1")
        allocation_engine.allocate("SO-1", "A", 1, CLOCK_START, test_actor_id)

        assert idempotency_guard.active_skus("SO-1", ["A", "B"]) == frozenset({"A"})
