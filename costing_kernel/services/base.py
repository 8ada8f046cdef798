"""
BaseService -- abstract base for all costing services.

Responsibility:
    Common constructor and session-handling contract for every service that
    writes costing state.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  LayerStore and
    AllocationEngine in ``costing_services`` extend this class.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback the outer transaction themselves.  They may
    open SAVEPOINTs (``session.begin_nested()``) to make one order line
    atomic.  The caller (batch runner, orchestrator, test harness) owns
    commit/rollback.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from costing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for costing services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.

    Non-goals:
        - Does NOT provide query-only reporting methods -- those belong
          in ``costing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
