"""
costing_batch -- Date-range COGS batch runs.

Drives the allocation engine across every shipped, non-cancelled order line
in a business-date range: fetches pages in deterministic order, classifies
each line, allocates eligible lines in their own SAVEPOINT and aggregates a
summary report.  Each run is recorded in ``cogs_apply_runs``.

Architecture:
    costing_batch/ is a top-level package.  Nothing in costing_kernel/,
    costing_engines/ or costing_services/ imports from it.

Invariants:
    - SAVEPOINT isolation per line: one failure never aborts the run.
    - Reruns are safe: already allocated lines are skipped.
    - Clock injection: run timestamps and month-to-date ranges come from
      the injected Clock.
"""
