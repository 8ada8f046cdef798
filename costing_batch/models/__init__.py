"""ORM models for COGS batch run persistence."""

from costing_batch.models.run import CogsRunItemModel, CogsRunModel

__all__ = ["CogsRunItemModel", "CogsRunModel"]
