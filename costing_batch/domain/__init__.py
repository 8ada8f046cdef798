"""Pure batch-run types (zero I/O)."""

from costing_batch.domain.types import (
    BatchPhase,
    BatchSummary,
    LineResult,
    LineStatus,
    ReportEntry,
    RunRecord,
    RunStatus,
    ShippedOrderLine,
    SkipReason,
    TriggerSource,
)

__all__ = [
    "BatchPhase",
    "BatchSummary",
    "LineResult",
    "LineStatus",
    "ReportEntry",
    "RunRecord",
    "RunStatus",
    "ShippedOrderLine",
    "SkipReason",
    "TriggerSource",
]
