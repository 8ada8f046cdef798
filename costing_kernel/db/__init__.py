"""Database layer - engine, base classes, types, and immutability."""

from costing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from costing_kernel.db.engine import create_tables, get_engine, get_session
from costing_kernel.db.types import Money, Quantity, UTCDateTime, round_money

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "UTCDateTime",
    "Money",
    "Quantity",
    "round_money",
]
