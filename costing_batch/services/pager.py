"""
OrderLinePager -- Fetch shipped order lines for a business-date window.

Contract:
    Pages through ``sales_order_lines`` with LIMIT/OFFSET in the fixed order
    (shipped_at, order_id, id) until a page comes back shorter than the page
    size.  A page ceiling stops runaway loops; hitting it with a full last
    page is reported through ``FetchResult.page_limit_reached``.

Architecture: costing_batch/services.  Read-only over costing_kernel models.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from costing_batch.domain.types import ShippedOrderLine
from costing_kernel.domain.dates import BusinessDateRange
from costing_kernel.logging_config import get_logger
from costing_kernel.models.sales_order_line import SalesOrderLineModel

logger = get_logger("batch.pager")


@dataclass(frozen=True)
class FetchResult:
    lines: tuple[ShippedOrderLine, ...]
    pages_fetched: int
    page_limit_reached: bool


class OrderLinePager:
    """Deterministic, bounded paging over shipped order lines."""

    def __init__(
        self,
        session: Session,
        page_size: int,
        max_pages: int,
        cancelled_status_groups: tuple[str, ...] = (),
    ):
        if page_size <= 0 or max_pages <= 0:
            raise ValueError("page_size and max_pages must be positive")
        self._session = session
        self._page_size = page_size
        self._max_pages = max_pages
        self._cancelled = tuple(cancelled_status_groups)

    def _query(self, window: BusinessDateRange):
        m = SalesOrderLineModel
        stmt = select(m).where(
            m.shipped_at.is_not(None),
            m.shipped_at >= window.start_utc,
            m.shipped_at < window.end_utc_exclusive,
        )
        if self._cancelled:
            # NULL NOT IN (...) is NULL, so keep lines with no status group.
            stmt = stmt.where(
                or_(m.status_group.is_(None), m.status_group.not_in(self._cancelled))
            )
        return stmt.order_by(m.shipped_at, m.order_id, m.id)

    def fetch_page(self, window: BusinessDateRange, page: int) -> list[ShippedOrderLine]:
        """Fetch one zero-based page."""
        stmt = (
            self._query(window)
            .limit(self._page_size)
            .offset(page * self._page_size)
        )
        rows = self._session.execute(stmt).scalars().all()
        return [
            ShippedOrderLine(
                line_id=row.id,
                order_id=row.order_id,
                sku=row.sku,
                quantity=row.quantity,
                shipped_at=row.shipped_at,
                status_group=row.status_group,
            )
            for row in rows
        ]

    def fetch_all(self, window: BusinessDateRange) -> FetchResult:
        lines: list[ShippedOrderLine] = []
        pages = 0
        limit_reached = False
        while True:
            page = self.fetch_page(window, pages)
            pages += 1
            lines.extend(page)
            logger.debug(
                "order_line_page_fetched",
                extra={"page": pages, "rows": len(page)},
            )
            if len(page) < self._page_size:
                break
            if pages >= self._max_pages:
                limit_reached = True
                logger.warning(
                    "order_line_page_limit_reached",
                    extra={
                        "max_pages": self._max_pages,
                        "page_size": self._page_size,
                        "lines_fetched": len(lines),
                    },
                )
                break
        return FetchResult(
            lines=tuple(lines),
            pages_fetched=pages,
            page_limit_reached=limit_reached,
        )
