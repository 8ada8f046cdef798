"""Selectors for the costing kernel (read side)."""

from costing_kernel.selectors.allocation_selector import AllocationSelector, OrderCogsDTO

__all__ = ["AllocationSelector", "OrderCogsDTO"]
