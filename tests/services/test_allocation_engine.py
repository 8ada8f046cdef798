"""
Tests for AllocationEngine.allocate.

Tests cover:
- FIFO consumption across layers
- Idempotence per (order, consumed SKU)
- Insufficient stock leaves no trace
- Bundle explosion and line atomicity
- Same-timestamp tie-break by layer id
- Input validation
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from costing_kernel.domain.dtos import AllocationStatus
from costing_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    MissingSkuError,
    NestedBundleError,
    NoRecipeError,
    UnsupportedCostMethodError,
)
from tests.conftest import CLOCK_START

SHIPPED = CLOCK_START


class TestFifoAllocation:
    def test_allocation_spans_layers_oldest_first(
        self, allocation_engine, layer_store, make_layer, test_actor_id,
    ):
        old = make_layer("A", 10, "5.00", received_at=SHIPPED - timedelta(days=10))
        new = make_layer("A", 10, "6.00", received_at=SHIPPED - timedelta(days=5))

        outcome = allocation_engine.allocate("SO-1", "A", 15, SHIPPED, test_actor_id)

        assert outcome.status == AllocationStatus.ALLOCATED
        assert [(r.layer_id, r.quantity) for r in outcome.rows] == [
            (old.id, Decimal("10")),
            (new.id, Decimal("5")),
        ]
        assert outcome.total_cost == Decimal("80.00")
        assert layer_store.get_layer(old.id).quantity_remaining == Decimal("0")
        assert layer_store.get_layer(new.id).quantity_remaining == Decimal("5")

    def test_row_cost_is_quantity_times_unit_cost(
        self, allocation_engine, make_layer, test_actor_id,
    ):
        make_layer("A", 10, "3.25")

        outcome = allocation_engine.allocate("SO-1", "A", 4, SHIPPED, test_actor_id)

        for row in outcome.rows:
            assert row.cost == row.quantity * row.unit_cost
            assert row.shipped_at == SHIPPED
            assert not row.is_reversal

    def test_same_timestamp_layers_consumed_by_id(
        self, allocation_engine, make_layer, test_actor_id,
    ):
        received = SHIPPED - timedelta(days=1)
        first = make_layer("A", 2, "1.00", received_at=received)
        second = make_layer("A", 2, "9.00", received_at=received)

        outcome = allocation_engine.allocate("SO-1", "A", 3, SHIPPED, test_actor_id)

        assert [r.layer_id for r in outcome.rows] == [first.id, second.id]
        assert outcome.total_cost == Decimal("11.00")

    def test_quantity_accepted_as_string(
        self, allocation_engine, make_layer, test_actor_id,
    ):
        make_layer("A", 10, "2")
        outcome = allocation_engine.allocate("SO-1", "A", "2.5", SHIPPED, test_actor_id)
        assert outcome.total_cost == Decimal("5.0")


class TestIdempotence:
    def test_second_allocation_is_skipped(
        self, allocation_engine, layer_store, allocation_selector, make_layer, test_actor_id,
    ):
        layer = make_layer("A", 10, "5")
        allocation_engine.allocate("SO-1", "A", 3, SHIPPED, test_actor_id)

        again = allocation_engine.allocate("SO-1", "A", 3, SHIPPED, test_actor_id)

        assert again.status == AllocationStatus.ALREADY_ALLOCATED
        assert again.rows == ()
        assert len(allocation_selector.rows_for("SO-1", "A")) == 1
        assert layer_store.get_layer(layer.id).quantity_remaining == Decimal("7")

    def test_other_orders_are_independent(
        self, allocation_engine, make_layer, test_actor_id,
    ):
        make_layer("A", 10, "5")
        allocation_engine.allocate("SO-1", "A", 3, SHIPPED, test_actor_id)

        other = allocation_engine.allocate("SO-2", "A", 3, SHIPPED, test_actor_id)
        assert other.status == AllocationStatus.ALLOCATED


class TestInsufficientStock:
    def test_short_stock_raises_and_writes_nothing(
        self, allocation_engine, layer_store, allocation_selector, make_layer, test_actor_id,
    ):
        layer = make_layer("X", 5, "2")

        with pytest.raises(InsufficientStockError) as exc_info:
            allocation_engine.allocate("SO-1", "X", 10, SHIPPED, test_actor_id)

        err = exc_info.value
        assert err.code == "INSUFFICIENT_STOCK"
        assert (err.sku, err.needed, err.available) == ("X", Decimal("10"), Decimal("5"))
        assert allocation_selector.rows_for("SO-1") == []
        assert layer_store.get_layer(layer.id).quantity_remaining == Decimal("5")

    def test_unknown_sku_has_no_stock(self, allocation_engine, test_actor_id):
        with pytest.raises(InsufficientStockError) as exc_info:
            allocation_engine.allocate("SO-1", "GHOST", 1, SHIPPED, test_actor_id)
        assert exc_info.value.available == Decimal("0")


class TestBundles:
    def test_bundle_consumes_components_by_ratio(
        self, allocation_engine, make_bundle, make_layer, test_actor_id,
    ):
        make_bundle("SET", {"A": 2, "B": 1})
        make_layer("A", 20, "1.00")
        make_layer("B", 20, "4.00")

        outcome = allocation_engine.allocate("SO-1", "SET", 3, SHIPPED, test_actor_id)

        assert outcome.is_bundle
        by_sku = {p.sku: p for p in outcome.pairs}
        assert by_sku["A"].allocated_quantity == Decimal("6")
        assert by_sku["B"].allocated_quantity == Decimal("3")
        assert outcome.total_cost == Decimal("18.00")
        assert {r.sku for r in outcome.rows} == {"A", "B"}

    def test_short_component_rolls_back_whole_line(
        self, allocation_engine, layer_store, allocation_selector,
        make_bundle, make_layer, test_actor_id,
    ):
        make_bundle("SET", {"A": 2, "B": 1})
        a_layer = make_layer("A", 20, "1.00")
        make_layer("B", 1, "4.00")

        with pytest.raises(InsufficientStockError) as exc_info:
            allocation_engine.allocate("SO-1", "SET", 3, SHIPPED, test_actor_id)

        assert exc_info.value.sku == "B"
        assert allocation_selector.rows_for("SO-1") == []
        assert layer_store.get_layer(a_layer.id).quantity_remaining == Decimal("20")

    def test_already_allocated_components_are_skipped(
        self, allocation_engine, make_bundle, make_layer, test_actor_id,
    ):
        make_bundle("SET", {"A": 1, "B": 1})
        make_layer("A", 10, "1")
        make_layer("B", 10, "1")
        allocation_engine.allocate("SO-1", "A", 1, SHIPPED, test_actor_id)

        outcome = allocation_engine.allocate("SO-1", "SET", 1, SHIPPED, test_actor_id)

        assert outcome.status == AllocationStatus.ALLOCATED
        assert outcome.skipped_skus == ("A",)
        assert outcome.allocated_skus == ("B",)

    def test_fully_allocated_bundle_reports_already_allocated(
        self, allocation_engine, make_bundle, make_layer, test_actor_id,
    ):
        make_bundle("SET", {"A": 1, "B": 1})
        make_layer("A", 10, "1")
        make_layer("B", 10, "1")
        allocation_engine.allocate("SO-1", "SET", 1, SHIPPED, test_actor_id)

        again = allocation_engine.allocate("SO-1", "SET", 1, SHIPPED, test_actor_id)
        assert again.status == AllocationStatus.ALREADY_ALLOCATED

    def test_nested_bundle_rejected(
        self, allocation_engine, make_bundle, test_actor_id,
    ):
        make_bundle("INNER", {"A": 1})
        make_bundle("OUTER", {"INNER": 1})

        with pytest.raises(NestedBundleError) as exc_info:
            allocation_engine.allocate("SO-1", "OUTER", 1, SHIPPED, test_actor_id)
        assert exc_info.value.code == "NESTED_BUNDLE"

    def test_bundle_without_recipe_rejected(
        self, allocation_engine, make_item, test_actor_id,
    ):
        make_item("EMPTY", is_bundle=True)

        with pytest.raises(NoRecipeError):
            allocation_engine.allocate("SO-1", "EMPTY", 1, SHIPPED, test_actor_id)


class TestValidation:
    @pytest.mark.parametrize("sku", ["", "   ", None])
    def test_missing_sku(self, allocation_engine, sku, test_actor_id):
        with pytest.raises(MissingSkuError):
            allocation_engine.allocate("SO-1", sku, 1, SHIPPED, test_actor_id)

    @pytest.mark.parametrize(
        "quantity", [None, 0, -2, "abc", "", Decimal("NaN"), "Infinity", Decimal("-Infinity")],
    )
    def test_invalid_quantity(self, allocation_engine, quantity, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            allocation_engine.allocate("SO-1", "A", quantity, SHIPPED, test_actor_id)

    @pytest.mark.parametrize("quantity", [0, "abc", Decimal("NaN")])
    def test_invalid_reversal_quantity(self, allocation_engine, quantity, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            allocation_engine.reverse("SO-1", "A", test_actor_id, quantity=quantity)
        with pytest.raises(InvalidQuantityError):
            allocation_engine.reverse_line("SO-1", "A", test_actor_id, quantity=quantity)

    def test_unsupported_method(self, allocation_engine, make_layer, test_actor_id):
        make_layer("A", 10, "1")
        with pytest.raises(UnsupportedCostMethodError):
            allocation_engine.allocate("SO-1", "A", 1, SHIPPED, test_actor_id, method="LIFO")

    def test_method_name_is_case_insensitive(self, allocation_engine, make_layer, test_actor_id):
        make_layer("A", 10, "1")
        outcome = allocation_engine.allocate("SO-1", "A", 1, SHIPPED, test_actor_id, method="fifo")
        assert outcome.status == AllocationStatus.ALLOCATED


class TestAllocationLogging:
    def test_completion_logged_with_context(
        self, allocation_engine, make_layer, captured_logs, test_actor_id,
    ):
        make_layer("A", 10, "1")
        allocation_engine.allocate("SO-LOG", "A", 2, SHIPPED, test_actor_id)

        done = [r for r in captured_logs() if r["message"] == "fifo_allocation_completed"]
        assert len(done) == 1
        assert done[0]["order_id"] == "SO-LOG"
        assert done[0]["sku"] == "A"
        assert done[0]["rows_written"] == 1
