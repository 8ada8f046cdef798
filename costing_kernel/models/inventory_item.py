"""
Module: costing_kernel.models.inventory_item
Responsibility: ORM persistence for the inventory catalog as the costing
    engine sees it: items (plain or bundle) and bundle recipes.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - sku is unique per item.
    - (bundle_sku, component_sku) is unique per recipe row.
    - base_cost_per_unit is display data only; allocation never reads it.

Failure modes:
    - IntegrityError on duplicate sku or duplicate recipe row.

Audit relevance:
    Items and recipes are maintained by catalog management.  The costing
    engine only reads them; a recipe change affects allocations made after
    the change, never existing ledger rows.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase


class InventoryItemModel(TrackedBase):
    """
    Catalog entry keyed by SKU.

    Contract:
        A missing row means "not a bundle" to the costing engine; stock-in
        for a missing SKU is rejected.
    """

    __tablename__ = "inventory_items"

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_bundle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    base_cost_per_unit: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )

    def __repr__(self) -> str:
        kind = "bundle" if self.is_bundle else "item"
        return f"<InventoryItem {self.sku} ({kind})>"


class BundleComponentModel(TrackedBase):
    """One line of a bundle recipe: quantity_per_unit of component per bundle."""

    __tablename__ = "inventory_bundle_components"

    __table_args__ = (
        UniqueConstraint(
            "bundle_sku", "component_sku", name="uq_bundle_component",
        ),
        Index("idx_bundle_component_bundle", "bundle_sku"),
    )

    bundle_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku", ondelete="CASCADE"),
        nullable=False,
    )
    component_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
    )
    quantity_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<BundleComponent {self.bundle_sku} -> "
            f"{self.quantity_per_unit} x {self.component_sku}>"
        )
