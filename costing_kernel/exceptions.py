"""
Typed Exception Hierarchy for the Costing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The batch runner has to tell "nothing to do" apart from "something is
wrong" for every order line it touches, and it has to do so without parsing
message strings. Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, lands in run reports)
  3. Carries structured DATA (sku, needed, available, ...)

Example - RIGHT way:
    try:
        engine.allocate(order_id, sku, qty, shipped_at, actor_id)
    except InsufficientStockError as e:
        report(order_id, e.code, f"{e.sku}: needed {e.needed}, have {e.available}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidDateRangeError
    |   +-- InvalidDateFormatError
    |   +-- UnsupportedCostMethodError
    |   +-- InvalidQuantityError
    |   +-- MissingSkuError
    |
    +-- AllocationError
    |   +-- InsufficientStockError
    |   +-- NoRecipeError
    |   +-- NestedBundleError
    |   +-- InvalidRecipeError
    |
    +-- InvariantViolationError
    |   +-- LayerUnderflowError
    |   +-- LayerOverflowError
    |
    +-- LayerError
    |   +-- LayerNotFoundError
    |   +-- LayerVoidNotAllowedError
    |   +-- InvalidReceiptError
    |   +-- ItemNotFoundError
    |
    +-- ReversalError
    |   +-- ReversalExceedsAllocationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- ConfigError
    |   +-- InvalidConfigError
    |
    +-- RunError
        +-- RunNotFoundError
        +-- RunAlreadyCompletedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
Validation      | INVALID_DATE_RANGE            | start date after end date
                | INVALID_DATE_FORMAT           | date not YYYY-MM-DD
                | UNSUPPORTED_COST_METHOD       | method other than FIFO
                | INVALID_QUANTITY              | null, zero or negative quantity
                | MISSING_SKU                   | blank SKU on an order line
----------------|-------------------------------|-------------------------------------
Allocation      | INSUFFICIENT_STOCK            | layers hold less than needed
                | NO_RECIPE                     | bundle with zero component rows
                | NESTED_BUNDLE                 | bundle component is itself a bundle
                | INVALID_RECIPE                | component ratio <= 0
----------------|-------------------------------|-------------------------------------
Invariant       | LAYER_UNDERFLOW               | remaining would drop below zero
                | LAYER_OVERFLOW                | remaining would exceed received
----------------|-------------------------------|-------------------------------------
Layer           | LAYER_NOT_FOUND               | layer id does not exist
                | LAYER_VOID_NOT_ALLOWED        | void rules not satisfied
                | INVALID_RECEIPT               | bad stock-in quantity / cost / SKU
                | ITEM_NOT_FOUND                | SKU absent from the catalog
----------------|-------------------------------|-------------------------------------
Reversal        | REVERSAL_EXCEEDS_ALLOCATION   | return larger than outstanding qty
----------------|-------------------------------|-------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | editing ledger rows / deleting layers
----------------|-------------------------------|-------------------------------------
Authorization   | NOT_AUTHORIZED                | actor lacks the capability
----------------|-------------------------------|-------------------------------------
Config          | INVALID_CONFIG                | configuration value out of range
----------------|-------------------------------|-------------------------------------
Run log         | RUN_NOT_FOUND                 | run id does not exist
                | RUN_ALREADY_COMPLETED         | completing a run twice

===============================================================================
HANDLING PATTERNS
===============================================================================

Skip conditions (already allocated, missing SKU, invalid quantity) are NOT
exceptions in the batch runner; they are classified before the engine is
called. The engine itself still raises MissingSkuError / InvalidQuantityError
when called directly with such input.

Invariant violations indicate a concurrency bug or corrupted data. The batch
runner rolls back the line's savepoint and records the code; it does not
abort the run.
===============================================================================
"""

from decimal import Decimal


class CostingKernelError(Exception):
    """
    Base exception for all costing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_KERNEL_ERROR"


# Validation exceptions


class ValidationError(CostingKernelError):
    """Base exception for input rejected before any processing."""

    code: str = "VALIDATION_ERROR"


class InvalidDateRangeError(ValidationError):
    """Start date is after end date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Invalid date range: start {start_date} is after end {end_date}"
        )


class InvalidDateFormatError(ValidationError):
    """Date input is not a YYYY-MM-DD calendar date."""

    code: str = "INVALID_DATE_FORMAT"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid date format (expected YYYY-MM-DD): {value!r}")


class UnsupportedCostMethodError(ValidationError):
    """Only FIFO costing is implemented."""

    code: str = "UNSUPPORTED_COST_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unsupported cost method: {method!r}")


class InvalidQuantityError(ValidationError):
    """Quantity is missing, not a finite number, zero or negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, context: str = ""):
        self.quantity = quantity
        self.context = context
        suffix = f" ({context})" if context else ""
        super().__init__(f"Invalid quantity: {quantity}{suffix}")


class MissingSkuError(ValidationError):
    """SKU is blank."""

    code: str = "MISSING_SKU"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} line has no SKU")


# Allocation exceptions


class AllocationError(CostingKernelError):
    """Base exception for per-line allocation failures."""

    code: str = "ALLOCATION_ERROR"


class InsufficientStockError(AllocationError):
    """Consumable layers for a SKU hold less than the quantity needed."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, sku: str, needed: Decimal, available: Decimal):
        self.sku = sku
        self.needed = needed
        self.available = available
        super().__init__(
            f"Insufficient stock for {sku}: needed {needed}, available {available}"
        )


class NoRecipeError(AllocationError):
    """Bundle SKU has no component rows."""

    code: str = "NO_RECIPE"

    def __init__(self, bundle_sku: str):
        self.bundle_sku = bundle_sku
        super().__init__(f"Bundle {bundle_sku} has no recipe")


class NestedBundleError(AllocationError):
    """Bundle recipe references another bundle."""

    code: str = "NESTED_BUNDLE"

    def __init__(self, bundle_sku: str, component_sku: str):
        self.bundle_sku = bundle_sku
        self.component_sku = component_sku
        super().__init__(
            f"Bundle {bundle_sku} contains bundle {component_sku}; "
            f"nested bundles are not supported"
        )


class InvalidRecipeError(AllocationError):
    """Bundle recipe contains a non-positive ratio."""

    code: str = "INVALID_RECIPE"

    def __init__(self, bundle_sku: str, component_sku: str, quantity_per_unit: Decimal):
        self.bundle_sku = bundle_sku
        self.component_sku = component_sku
        self.quantity_per_unit = quantity_per_unit
        super().__init__(
            f"Bundle {bundle_sku} component {component_sku} has invalid "
            f"quantity per unit {quantity_per_unit}"
        )


# Invariant exceptions


class InvariantViolationError(CostingKernelError):
    """
    Base exception for states that are unreachable under correct usage.

    Raised by the layer store when consumption or restoration would break
    0 <= remaining <= received.
    """

    code: str = "INVARIANT_VIOLATION"


class LayerUnderflowError(InvariantViolationError):
    """Consumption would drive quantity_remaining below zero."""

    code: str = "LAYER_UNDERFLOW"

    def __init__(self, layer_id: int, remaining: Decimal, requested: Decimal):
        self.layer_id = layer_id
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"Layer {layer_id} underflow: remaining {remaining}, requested {requested}"
        )


class LayerOverflowError(InvariantViolationError):
    """Restoration would push quantity_remaining above quantity_received."""

    code: str = "LAYER_OVERFLOW"

    def __init__(
        self,
        layer_id: int,
        remaining: Decimal,
        received: Decimal,
        restored: Decimal,
    ):
        self.layer_id = layer_id
        self.remaining = remaining
        self.received = received
        self.restored = restored
        super().__init__(
            f"Layer {layer_id} overflow: remaining {remaining} + {restored} "
            f"exceeds received {received}"
        )


# Layer exceptions


class LayerError(CostingKernelError):
    """Base exception for receipt layer maintenance errors."""

    code: str = "LAYER_ERROR"


class LayerNotFoundError(LayerError):
    """Receipt layer does not exist."""

    code: str = "LAYER_NOT_FOUND"

    def __init__(self, layer_id: int):
        self.layer_id = layer_id
        super().__init__(f"Receipt layer not found: {layer_id}")


class LayerVoidNotAllowedError(LayerError):
    """Layer does not satisfy the voiding rules."""

    code: str = "LAYER_VOID_NOT_ALLOWED"

    def __init__(self, layer_id: int, reason: str):
        self.layer_id = layer_id
        self.reason = reason
        super().__init__(f"Cannot void layer {layer_id}: {reason}")


class InvalidReceiptError(LayerError):
    """Stock-in request is malformed."""

    code: str = "INVALID_RECEIPT"

    def __init__(self, sku: str, reason: str):
        self.sku = sku
        self.reason = reason
        super().__init__(f"Invalid receipt for {sku}: {reason}")


class ItemNotFoundError(LayerError):
    """SKU is not in the inventory catalog."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Inventory item not found: {sku}")


# Reversal exceptions


class ReversalError(CostingKernelError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class ReversalExceedsAllocationError(ReversalError):
    """Requested reversal quantity exceeds what is still allocated."""

    code: str = "REVERSAL_EXCEEDS_ALLOCATION"

    def __init__(self, order_id: str, sku: str, requested: Decimal, outstanding: Decimal):
        self.order_id = order_id
        self.sku = sku
        self.requested = requested
        self.outstanding = outstanding
        super().__init__(
            f"Cannot reverse {requested} of {sku} on order {order_id}: "
            f"only {outstanding} outstanding"
        )


# Immutability exceptions


class ImmutabilityError(CostingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify an append-only or frozen record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Authorization exceptions


class AuthorizationError(CostingKernelError):
    """Base exception for capability checks."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor's roles do not grant the required permission."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, permission: str, reason: str):
        self.actor_id = actor_id
        self.permission = permission
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} is not authorized for {permission}: {reason}"
        )


# Configuration exceptions


class ConfigError(CostingKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class InvalidConfigError(ConfigError):
    """Configuration value is missing or out of range."""

    code: str = "INVALID_CONFIG"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid config field {field!r}: {reason}")


# Run log exceptions


class RunError(CostingKernelError):
    """Base exception for batch run log errors."""

    code: str = "RUN_ERROR"


class RunNotFoundError(RunError):
    """No COGS run with this id."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"COGS run {run_id} not found")


class RunAlreadyCompletedError(RunError):
    """A run can be completed only once."""

    code: str = "RUN_ALREADY_COMPLETED"

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"COGS run {run_id} is already {status}")
