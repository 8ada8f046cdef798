"""
Configuration schema (``costing_config.schema``).

Frozen dataclasses describing the runtime knobs of the costing engine and
batch runner.  Parsing and validation live in ``costing_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PERMISSION_APPLY_COGS = "cogs.apply"
PERMISSION_REVERSE_COGS = "cogs.reverse"
PERMISSION_MANAGE_LAYERS = "inventory.layers.manage"

PERMISSION_TAXONOMY: frozenset[str] = frozenset({
    PERMISSION_APPLY_COGS,
    PERMISSION_REVERSE_COGS,
    PERMISSION_MANAGE_LAYERS,
})


@dataclass(frozen=True)
class BatchSettings:
    """Pagination and reporting limits for a batch run."""

    page_size: int = 1000
    max_pages: int = 100
    max_report_entries: int = 200


@dataclass(frozen=True)
class CostingConfig:
    """
    Everything the costing packages read at runtime.

    ``role_permissions`` is a tuple of (role, permissions) pairs so the
    whole object stays hashable and immutable.
    """

    business_timezone: str = "Asia/Bangkok"
    default_method: str = "FIFO"
    cancelled_status_groups: tuple[str, ...] = ("Cancelled", "ยกเลิกแล้ว")
    batch: BatchSettings = field(default_factory=BatchSettings)
    role_permissions: tuple[tuple[str, frozenset[str]], ...] = ()
    checksum: str = ""
    source: str = ""

    def permissions_for(self, role: str) -> frozenset[str]:
        for name, perms in self.role_permissions:
            if name == role:
                return perms
        return frozenset()
