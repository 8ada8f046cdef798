"""
costing_services.bundle_resolver -- Bundle SKU to component demand.

Responsibility:
    Look up whether a SKU is a bundle and, if so, its recipe; validate the
    recipe; delegate the arithmetic to costing_engines.bundle.explode.

Invariants enforced:
    - A SKU with no catalog row is treated as a plain item.
    - Explosion is one level deep, and a recipe whose component is itself
      a bundle is rejected instead of being silently mis-allocated.
    - Every ratio must be > 0.

Failure modes:
    - NoRecipeError: bundle with zero component rows.
    - NestedBundleError: a component is flagged as a bundle.
    - InvalidRecipeError: a component ratio <= 0.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_engines.bundle import ComponentDemand, RecipeLine, explode
from costing_kernel.exceptions import InvalidRecipeError, NestedBundleError, NoRecipeError
from costing_kernel.logging_config import get_logger
from costing_kernel.models.inventory_item import BundleComponentModel, InventoryItemModel

logger = get_logger("services.bundle_resolver")

_ZERO = Decimal("0")


class BundleResolver:
    """Read-only recipe lookups over the inventory catalog."""

    def __init__(self, session: Session):
        self._session = session

    def is_bundle(self, sku: str) -> bool:
        flag = self._session.scalar(
            select(InventoryItemModel.is_bundle).where(InventoryItemModel.sku == sku)
        )
        return bool(flag)

    def get_recipe(self, bundle_sku: str) -> tuple[RecipeLine, ...]:
        """Recipe rows ordered by component SKU; empty when none exist."""
        rows = self._session.execute(
            select(
                BundleComponentModel.component_sku,
                BundleComponentModel.quantity_per_unit,
            )
            .where(BundleComponentModel.bundle_sku == bundle_sku)
            .order_by(BundleComponentModel.component_sku)
        ).all()
        return tuple(RecipeLine(component_sku=c, quantity_per_unit=q) for c, q in rows)

    def validate_recipe(self, bundle_sku: str) -> tuple[RecipeLine, ...]:
        """Load the recipe and reject empty, nested or non-positive recipes."""
        recipe = self.get_recipe(bundle_sku)
        if not recipe:
            logger.warning("bundle_recipe_missing", extra={"bundle_sku": bundle_sku})
            raise NoRecipeError(bundle_sku)

        for line in recipe:
            if line.quantity_per_unit is None or line.quantity_per_unit <= _ZERO:
                raise InvalidRecipeError(
                    bundle_sku, line.component_sku, line.quantity_per_unit,
                )

        nested = self._session.scalars(
            select(InventoryItemModel.sku)
            .where(
                InventoryItemModel.sku.in_([line.component_sku for line in recipe]),
                InventoryItemModel.is_bundle.is_(True),
            )
            .order_by(InventoryItemModel.sku)
        ).first()
        if nested is not None:
            logger.warning(
                "bundle_recipe_nested",
                extra={"bundle_sku": bundle_sku, "component_sku": nested},
            )
            raise NestedBundleError(bundle_sku, nested)

        return recipe

    def resolve(self, bundle_sku: str, order_quantity: Decimal) -> tuple[ComponentDemand, ...]:
        """Component demand for ``order_quantity`` units of the bundle."""
        recipe = self.validate_recipe(bundle_sku)
        demand = explode(
            bundle_sku=bundle_sku, order_quantity=order_quantity, recipe=recipe,
        )
        logger.debug(
            "bundle_resolved",
            extra={
                "bundle_sku": bundle_sku,
                "order_quantity": str(order_quantity),
                "components": {d.sku: str(d.required_quantity) for d in demand},
            },
        )
        return demand

    def resolve_line(
        self, sku: str, quantity: Decimal,
    ) -> tuple[bool, tuple[ComponentDemand, ...]]:
        """(is_bundle, demand) for an order line, plain SKUs as a single pair."""
        if self.is_bundle(sku):
            return True, self.resolve(sku, quantity)
        return False, (ComponentDemand(sku=sku, required_quantity=quantity),)
