"""
Declarative base for the costing schema.

Rows get a uuid4 key stored as text unless a table overrides ``id``; the
receipt layer and allocation ledger use integer ids because id order is
part of FIFO and ledger ordering.  Decimals are always ``Numeric(38, 9)``
and datetimes always go through ``UTCDateTime``.

Tracked tables require ``created_by_id``: every layer, allocation row and
run log entry names the actor that produced it.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from costing_kernel.db.types import UTCDateTime


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, CHAR-like String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who/when audit columns.

    These are metadata, so they may change on rows whose costing fields are
    frozen by ``db/immutability.py``.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
