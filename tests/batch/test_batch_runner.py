"""
Tests for BatchRunner.

Covers line classification, per-line failure isolation, the business
timezone window, pagination limits and the summary report.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from costing_batch.domain.types import (
    UNHANDLED_EXCEPTION,
    BatchPhase,
    LineStatus,
    ShippedOrderLine,
    SkipReason,
)
from costing_batch.services.pager import FetchResult
from costing_batch.services.runner import BatchRunner
from costing_config.schema import BatchSettings
from costing_kernel.exceptions import (
    InvalidDateFormatError,
    InvalidDateRangeError,
    UnsupportedCostMethodError,
)
from tests.conftest import CLOCK_START

JAN_FROM = "2024-01-01"
JAN_TO = "2024-01-31"


def _runner(session, config, allocation_engine, idempotency_guard, clock, **batch):
    cfg = replace(config, batch=replace(config.batch, **batch))
    return BatchRunner(
        session, cfg, engine=allocation_engine, guard=idempotency_guard, clock=clock,
    )


def _status_by_order(summary):
    return {r.order_id: (r.status, r.reason_code) for r in summary.line_results}


class TestClassification:
    def test_skip_reasons(self, batch_runner, make_order_line, test_actor_id):
        make_order_line("SO-BLANK", "  ", 1)
        make_order_line("SO-NONE", None, 1)
        make_order_line("SO-ZERO", "A", 0)
        make_order_line("SO-NEG", "A", -2)
        make_order_line("SO-NULLQ", "A", None)

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        statuses = _status_by_order(summary)
        assert statuses["SO-BLANK"] == (LineStatus.SKIPPED, SkipReason.MISSING_SKU.value)
        assert statuses["SO-NONE"] == (LineStatus.SKIPPED, SkipReason.MISSING_SKU.value)
        for order_id in ("SO-ZERO", "SO-NEG", "SO-NULLQ"):
            assert statuses[order_id] == (
                LineStatus.SKIPPED, SkipReason.INVALID_QUANTITY.value,
            )
        assert summary.total == 5
        assert summary.eligible == 0
        assert summary.skipped_by_reason == {"invalid_quantity": 3, "missing_sku": 2}

    def test_already_allocated_checked_before_quantity(
        self, batch_runner, allocation_engine, make_layer, make_order_line, test_actor_id,
    ):
        make_layer("A", 10, "1")
        allocation_engine.allocate("SO-1", "A", 2, CLOCK_START, test_actor_id)
        make_order_line("SO-1", "A", 0)

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert _status_by_order(summary)["SO-1"] == (
            LineStatus.SKIPPED, SkipReason.ALREADY_ALLOCATED.value,
        )

    def test_bundle_with_all_components_allocated_is_skipped(
        self, batch_runner, make_bundle, make_layer, make_order_line, test_actor_id,
    ):
        make_bundle("SET", {"A": 1, "B": 1})
        make_layer("A", 10, "1")
        make_layer("B", 10, "2")
        make_order_line("SO-1", "SET", 2)

        first = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)
        second = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert first.successful == 1
        assert first.line_results[0].total_cost == Decimal("6")
        assert second.eligible == 1
        assert second.successful == 0
        assert second.skipped_by_reason == {"already_allocated": 1}
        assert second.line_results[0].detail == "all bundle components already allocated"

    def test_repeated_plain_line_detail(
        self, batch_runner, make_layer, make_order_line, test_actor_id,
    ):
        make_layer("A", 10, "1")
        make_order_line("SO-1", "A", 1)
        make_order_line("SO-1", "A", 1)

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert summary.successful == 1
        (skipped,) = [r for r in summary.line_results if r.status == LineStatus.SKIPPED]
        assert skipped.reason_code == SkipReason.ALREADY_ALLOCATED.value
        assert skipped.detail == "COGS already allocated for this order line"

    @pytest.mark.parametrize("bad", [Decimal("NaN"), Decimal("Infinity"), Decimal("-Infinity")])
    def test_non_finite_quantity_skipped(
        self, session, costing_config, allocation_engine, idempotency_guard,
        deterministic_clock, make_layer, test_actor_id, bad,
    ):
        make_layer("A", 10, "1")

        class _FixedPager:
            def fetch_all(self, window):
                return FetchResult(
                    lines=(
                        ShippedOrderLine(uuid4(), "SO-BAD", "A", bad, CLOCK_START),
                        ShippedOrderLine(uuid4(), "SO-OK", "A", Decimal("2"), CLOCK_START),
                    ),
                    pages_fetched=1,
                    page_limit_reached=False,
                )

        runner = BatchRunner(
            session, costing_config, engine=allocation_engine, guard=idempotency_guard,
            clock=deterministic_clock, pager=_FixedPager(),
        )

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        statuses = _status_by_order(summary)
        assert statuses["SO-BAD"] == (LineStatus.SKIPPED, SkipReason.INVALID_QUANTITY.value)
        assert statuses["SO-OK"] == (LineStatus.SUCCESSFUL, None)


class TestWindow:
    def test_cancelled_groups_excluded(self, batch_runner, make_order_line, test_actor_id):
        make_order_line("SO-OK", None, 1)
        make_order_line("SO-NOGROUP", None, 1, status_group=None)
        make_order_line("SO-C1", "A", 1, status_group="Cancelled")
        make_order_line("SO-C2", "A", 1, status_group="ยกเลิกแล้ว")

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert {r.order_id for r in summary.line_results} == {"SO-OK", "SO-NOGROUP"}

    def test_unshipped_lines_excluded(self, batch_runner, make_order_line, test_actor_id):
        make_order_line("SO-PENDING", "A", 1, shipped_at=None)
        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)
        assert summary.total == 0

    def test_bounds_follow_business_timezone(
        self, batch_runner, make_order_line, test_actor_id,
    ):
        # Bangkok is UTC+7.
        make_order_line(
            "SO-FIRST", None, 1,
            shipped_at=datetime(2023, 12, 31, 17, 30, tzinfo=timezone.utc),
        )
        make_order_line(
            "SO-BEFORE", None, 1,
            shipped_at=datetime(2023, 12, 31, 16, 59, tzinfo=timezone.utc),
        )
        make_order_line(
            "SO-LAST", None, 1,
            shipped_at=datetime(2024, 1, 31, 16, 59, tzinfo=timezone.utc),
        )
        make_order_line(
            "SO-AFTER", None, 1,
            shipped_at=datetime(2024, 1, 31, 17, 0, tzinfo=timezone.utc),
        )

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert [r.order_id for r in summary.line_results] == ["SO-FIRST", "SO-LAST"]


class TestFailures:
    def test_failure_does_not_abort_batch(
        self, batch_runner, make_layer, make_order_line, test_actor_id,
    ):
        make_layer("A", 2, "1")
        make_layer("B", 10, "3")
        make_order_line("SO-1", "A", 5)
        make_order_line("SO-2", "B", 2, shipped_at=CLOCK_START + timedelta(minutes=1))

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        statuses = _status_by_order(summary)
        assert statuses["SO-1"] == (LineStatus.FAILED, "INSUFFICIENT_STOCK")
        assert statuses["SO-2"] == (LineStatus.SUCCESSFUL, None)
        assert summary.failed_by_reason == {"INSUFFICIENT_STOCK": 1}
        assert summary.errors[0].order_id == "SO-1"

    def test_failed_line_leaves_no_rows(
        self, batch_runner, allocation_selector, make_layer, make_order_line, test_actor_id,
    ):
        make_layer("A", 2, "1")
        make_order_line("SO-1", "A", 5)

        batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert allocation_selector.rows_for("SO-1") == []
        assert allocation_selector.consumed_from_layers("A") == Decimal("0")

    def test_unexpected_exception_recorded(
        self, session, costing_config, idempotency_guard, make_order_line,
        test_actor_id, captured_logs,
    ):
        class _ExplodingEngine:
            def allocate(self, *args, **kwargs):
                raise RuntimeError("boom")

        runner = BatchRunner(
            session, costing_config, engine=_ExplodingEngine(), guard=idempotency_guard,
        )
        make_order_line("SO-1", "A", 1)

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        result = summary.line_results[0]
        assert result.status == LineStatus.FAILED
        assert result.reason_code == UNHANDLED_EXCEPTION
        assert result.detail == "boom"
        assert any(
            r["message"] == "batch_line_unhandled_exception" for r in captured_logs()
        )


class TestPagination:
    def test_multiple_pages(
        self, session, costing_config, allocation_engine, idempotency_guard,
        deterministic_clock, make_order_line, test_actor_id,
    ):
        for i in range(5):
            make_order_line(f"SO-{i}", None, 1, shipped_at=CLOCK_START + timedelta(minutes=i))
        runner = _runner(
            session, costing_config, allocation_engine, idempotency_guard,
            deterministic_clock, page_size=2,
        )

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert summary.total == 5
        assert summary.pages_fetched == 3
        assert not summary.page_limit_reached
        assert [r.order_id for r in summary.line_results] == [f"SO-{i}" for i in range(5)]

    def test_page_ceiling(
        self, session, costing_config, allocation_engine, idempotency_guard,
        deterministic_clock, make_order_line, test_actor_id,
    ):
        for i in range(5):
            make_order_line(f"SO-{i}", None, 1, shipped_at=CLOCK_START + timedelta(minutes=i))
        runner = _runner(
            session, costing_config, allocation_engine, idempotency_guard,
            deterministic_clock, page_size=2, max_pages=2,
        )

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert summary.total == 4
        assert summary.pages_fetched == 2
        assert summary.page_limit_reached
        assert summary.to_dict()["page_limit_reached"] is True

    def test_same_instant_ordered_by_order_id(
        self, session, costing_config, allocation_engine, idempotency_guard,
        deterministic_clock, make_order_line, test_actor_id,
    ):
        for order_id in ("SO-C", "SO-A", "SO-B"):
            make_order_line(order_id, None, 1)
        runner = _runner(
            session, costing_config, allocation_engine, idempotency_guard,
            deterministic_clock, page_size=1,
        )

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert [r.order_id for r in summary.line_results] == ["SO-A", "SO-B", "SO-C"]

    @pytest.mark.slow
    def test_exactly_one_full_default_page(
        self, batch_runner, make_order_line, test_actor_id,
    ):
        for i in range(1000):
            make_order_line(f"SO-{i:04d}", None, 1)

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert summary.total == 1000
        assert summary.pages_fetched == 2
        assert not summary.page_limit_reached


class TestSummary:
    def test_report_entries_bounded(
        self, session, costing_config, allocation_engine, idempotency_guard,
        deterministic_clock, make_order_line, test_actor_id,
    ):
        for i in range(4):
            make_order_line(f"SO-{i}", None, 1)
        runner = _runner(
            session, costing_config, allocation_engine, idempotency_guard,
            deterministic_clock, max_report_entries=3,
        )

        summary = runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert len(summary.errors) == 3
        assert summary.errors_omitted == 1
        assert summary.skipped == 4

    def test_to_dict_shape(self, batch_runner, make_layer, make_order_line, test_actor_id):
        make_layer("A", 10, "2.5")
        make_order_line("SO-1", "A", 2)
        make_order_line("SO-2", None, 1)

        report = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id).to_dict()

        assert report == {
            "date_from": "2024-01-01",
            "date_to": "2024-01-31",
            "method": "FIFO",
            "total": 2,
            "eligible": 1,
            "successful": 1,
            "skipped": 1,
            "failed": 0,
            "skipped_by_reason": {"missing_sku": 1},
            "failed_by_reason": {},
            "errors": [
                {
                    "order_id": "SO-2",
                    "reason_code": "missing_sku",
                    "detail": "order line has no SKU",
                },
            ],
            "errors_omitted": 0,
            "pages_fetched": 1,
            "page_limit_reached": False,
        }

    def test_counts_add_up(self, batch_runner, make_layer, make_order_line, test_actor_id):
        make_layer("A", 3, "1")
        make_order_line("SO-1", "A", 2)
        make_order_line("SO-2", "A", 2, shipped_at=CLOCK_START + timedelta(minutes=1))
        make_order_line("SO-3", "", 1)

        summary = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert summary.total == summary.successful + summary.skipped + summary.failed
        assert summary.eligible == summary.successful + summary.failed + (
            summary.skipped_by_reason.get("already_allocated", 0)
        )
        assert (summary.successful, summary.failed, summary.skipped) == (1, 1, 1)

    def test_phases_end_done(self, batch_runner, test_actor_id, captured_logs):
        assert batch_runner.phase == BatchPhase.PENDING
        batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)
        assert batch_runner.phase == BatchPhase.DONE

        phases = [
            r["to_phase"] for r in captured_logs()
            if r["message"] == "batch_phase_changed"
        ]
        assert phases == ["fetching", "classifying", "allocating", "aggregating", "done"]

    def test_rerun_allocates_nothing_new(
        self, batch_runner, allocation_selector, make_layer, make_order_line, test_actor_id,
    ):
        make_layer("A", 10, "1")
        make_order_line("SO-1", "A", 4)

        batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)
        second = batch_runner.run(JAN_FROM, JAN_TO, test_actor_id)

        assert second.skipped_by_reason == {"already_allocated": 1}
        assert allocation_selector.net_allocated_quantity("A") == Decimal("4")


class TestValidation:
    def test_start_after_end(self, batch_runner, test_actor_id):
        with pytest.raises(InvalidDateRangeError):
            batch_runner.run("2024-02-01", "2024-01-01", test_actor_id)

    @pytest.mark.parametrize("bad", ["2024/01/01", "20240101", "2024-02-30", ""])
    def test_bad_date_format(self, batch_runner, test_actor_id, bad):
        with pytest.raises(InvalidDateFormatError):
            batch_runner.run(bad, JAN_TO, test_actor_id)

    def test_method_other_than_fifo(self, batch_runner, test_actor_id):
        with pytest.raises(UnsupportedCostMethodError):
            batch_runner.run(JAN_FROM, JAN_TO, test_actor_id, method="LIFO")

    def test_method_case_insensitive(self, batch_runner, test_actor_id):
        assert batch_runner.run(JAN_FROM, JAN_TO, test_actor_id, method="fifo").method == "FIFO"
