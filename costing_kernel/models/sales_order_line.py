"""
Module: costing_kernel.models.sales_order_line
Responsibility: ORM mapping of shipped sales-order lines as written by the
    sales import pipeline.  Read-only to the costing packages.
Architecture position: Kernel > Models.  May import from db/ only.

Contract:
    quantity and shipped_at are nullable because the importer stores what the
    channel sent.  The batch runner classifies bad rows instead of
    rejecting them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base
from costing_kernel.db.types import UTCDateTime


class SalesOrderLineModel(Base):
    """One order line as imported from a sales channel."""

    __tablename__ = "sales_order_lines"

    __table_args__ = (
        Index("idx_sales_line_shipped", "shipped_at", "order_id"),
        Index("idx_sales_line_order", "order_id"),
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status_group: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<SalesOrderLine {self.order_id}/{self.sku} x{self.quantity}>"
