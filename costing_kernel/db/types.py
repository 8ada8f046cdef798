"""
Module: costing_kernel.db.types
Responsibility: Annotated column type aliases and decimal helpers shared by
    every model and service.  Centralizes quantity/cost precision, the
    dialect-portable ledger sequence id, and UTC timestamp normalization.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in costing.  Quantities and costs are Decimal stored
      as Numeric(38, 9); cost_allocated is the exact product, never rounded.
    - round_money() is the only sanctioned rounding function, and it is used
      for display and reporting only.
    - Timestamps are always timezone-aware on the Python side and stored as
      UTC, whatever the backend does with offsets.

Failure modes:
    - to_decimal() returns None for text that is not a number and for NaN
      or infinity, so callers classify them like a missing value.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String
from sqlalchemy.types import TypeDecorator


# Quantity and cost with high precision
# 38 digits total, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]
Money = Annotated[Decimal, Numeric(38, 9)]

# SKU / order identifiers as they arrive from the sales channels
Sku = Annotated[str, String(100)]
OrderRef = Annotated[str, String(100)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for reasons and details
LongText = Annotated[str, String(4000)]

# Autoincrementing ledger id.  SQLite only autoincrements INTEGER PRIMARY KEY.
SEQUENCE_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalized to UTC.

    Contract:
        Accepts aware datetimes (naive values are taken as UTC) and always
        returns aware UTC datetimes.

    Guarantees:
        - Bound values are converted to UTC before they reach the driver, so
          range comparisons behave the same on backends that drop offsets.
        - Loaded values carry tzinfo=UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Decimal | int | str | float | None) -> Decimal | None:
    """
    Coerce a quantity or cost into Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"), not its binary
    expansion.  None, unparseable text, NaN and infinities all come back as
    None so callers can classify them as missing.
    """
    if value is None:
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(value)
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a cost value to specified decimal places.

    This is the ONLY sanctioned rounding function.  Allocation arithmetic
    never calls it; summaries and displays do.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
