"""Service base class for the costing kernel (write side)."""

from costing_kernel.services.base import BaseService

__all__ = ["BaseService"]
