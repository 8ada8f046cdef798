"""Batch run services: order line paging, the runner and the run log."""

from costing_batch.services.pager import FetchResult, OrderLinePager
from costing_batch.services.run_log import RunLogService
from costing_batch.services.runner import BatchRunner

__all__ = ["BatchRunner", "FetchResult", "OrderLinePager", "RunLogService"]
