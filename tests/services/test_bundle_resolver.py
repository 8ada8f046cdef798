"""Tests for BundleResolver."""

from decimal import Decimal

import pytest

from costing_engines.bundle import ComponentDemand
from costing_kernel.exceptions import InvalidRecipeError, NestedBundleError, NoRecipeError


class TestResolveLine:
    def test_plain_sku_is_single_pair(self, bundle_resolver, make_item):
        make_item("A")
        assert bundle_resolver.resolve_line("A", Decimal("4")) == (
            False,
            (ComponentDemand("A", Decimal("4")),),
        )

    def test_sku_missing_from_catalog_treated_as_plain(self, bundle_resolver):
        is_bundle, demand = bundle_resolver.resolve_line("UNKNOWN", Decimal("1"))
        assert not is_bundle
        assert demand[0].sku == "UNKNOWN"

    def test_bundle_exploded_in_component_order(self, bundle_resolver, make_bundle):
        make_bundle("SET", {"B": 1, "A": 2})

        is_bundle, demand = bundle_resolver.resolve_line("SET", Decimal("2"))

        assert is_bundle
        assert [(d.sku, d.required_quantity) for d in demand] == [
            ("A", Decimal("4")),
            ("B", Decimal("2")),
        ]


class TestValidateRecipe:
    def test_missing_recipe(self, bundle_resolver, make_item):
        make_item("EMPTY", is_bundle=True)
        with pytest.raises(NoRecipeError) as exc_info:
            bundle_resolver.validate_recipe("EMPTY")
        assert exc_info.value.code == "NO_RECIPE"

    def test_non_positive_ratio(self, bundle_resolver, make_bundle):
        make_bundle("SET", {"A": 0})
        with pytest.raises(InvalidRecipeError):
            bundle_resolver.validate_recipe("SET")

    def test_nested_bundle(self, bundle_resolver, make_bundle):
        make_bundle("INNER", {"A": 1})
        make_bundle("OUTER", {"INNER": 2, "B": 1})

        with pytest.raises(NestedBundleError) as exc_info:
            bundle_resolver.validate_recipe("OUTER")
        assert exc_info.value.component_sku == "INNER"
