"""ORM models for the costing kernel."""

from costing_kernel.models.cogs_allocation import CogsAllocationModel
from costing_kernel.models.inventory_item import BundleComponentModel, InventoryItemModel
from costing_kernel.models.receipt_layer import ReceiptLayerModel
from costing_kernel.models.sales_order_line import SalesOrderLineModel

__all__ = [
    "InventoryItemModel",
    "BundleComponentModel",
    "ReceiptLayerModel",
    "CogsAllocationModel",
    "SalesOrderLineModel",
]
