"""
costing_engines.bundle -- Flat bundle explosion.

Responsibility:
    Turn demand for N units of a bundle SKU into demand for each component:
    required = N * quantity_per_unit, exact Decimal.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Recipe lookup and the typed
    NoRecipe / NestedBundle / InvalidRecipe checks live in
    costing_services.bundle_resolver.

Invariants enforced:
    - One level only: components are never exploded further.
    - Output keeps recipe order.

Failure modes:
    - ValueError on an empty recipe, a non-positive ratio, a duplicated
      component or a non-positive order quantity.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from costing_engines.tracer import traced_engine

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class RecipeLine:
    component_sku: str
    quantity_per_unit: Decimal


@dataclass(frozen=True, slots=True)
class ComponentDemand:
    sku: str
    required_quantity: Decimal


@traced_engine(
    "bundle_explode", "1.0",
    fingerprint_fields=("bundle_sku", "order_quantity", "recipe"),
)
def explode(
    *,
    bundle_sku: str,
    order_quantity: Decimal,
    recipe: Sequence[RecipeLine],
) -> tuple[ComponentDemand, ...]:
    """Component demand for ``order_quantity`` units of ``bundle_sku``."""
    if order_quantity <= _ZERO:
        raise ValueError(f"Order quantity must be positive, got {order_quantity}")
    if not recipe:
        raise ValueError(f"Bundle {bundle_sku} has an empty recipe")

    seen: set[str] = set()
    demand: list[ComponentDemand] = []
    for line in recipe:
        if line.quantity_per_unit <= _ZERO:
            raise ValueError(
                f"Bundle {bundle_sku} component {line.component_sku} has "
                f"non-positive ratio {line.quantity_per_unit}"
            )
        if line.component_sku in seen:
            raise ValueError(
                f"Bundle {bundle_sku} lists component {line.component_sku} twice"
            )
        seen.add(line.component_sku)
        demand.append(
            ComponentDemand(
                sku=line.component_sku,
                required_quantity=order_quantity * line.quantity_per_unit,
            )
        )
    return tuple(demand)
