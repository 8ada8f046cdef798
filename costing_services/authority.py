"""
costing_services.authority -- Capability check at the caller boundary.

Responsibility:
    Decide whether an actor holding ``roles`` may perform an action that
    requires ``permission``.  The role -> permission map comes from
    ``CostingConfig.role_permissions``.

Architecture position:
    Services layer.  Called by CostingOrchestrator before a batch run or a
    reversal; the allocation engine itself is actor-agnostic.

Invariants:
    - Fail closed: an actor with no roles is denied.
    - This module does not resolve actor identity; the caller supplies roles.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from costing_config.schema import (
    PERMISSION_APPLY_COGS,
    PERMISSION_MANAGE_LAYERS,
    PERMISSION_REVERSE_COGS,
)
from costing_kernel.exceptions import NotAuthorizedError
from costing_kernel.logging_config import get_logger

logger = get_logger("services.authority")

COGS_APPLY = PERMISSION_APPLY_COGS
COGS_REVERSE = PERMISSION_REVERSE_COGS
LAYERS_MANAGE = PERMISSION_MANAGE_LAYERS


def check_permission(
    config: "CostingConfig",
    roles: Iterable[str],
    permission: str,
) -> tuple[bool, str]:
    """Check whether any of ``roles`` grants ``permission``.

    Returns:
        (allowed, reason).  reason is empty when allowed, or a short message
        when denied.
    """
    acting_roles = tuple(r for r in roles if r and r.strip())
    if not acting_roles:
        return (False, "AUTHZ: no roles supplied")

    granted: set[str] = set()
    for role in acting_roles:
        granted |= config.permissions_for(role)

    if permission not in granted:
        return (False, f"AUTHZ: permission '{permission}' not granted to actor")
    return (True, "")


def require_permission(
    config: "CostingConfig",
    actor_id: UUID | str,
    roles: Iterable[str],
    permission: str,
) -> None:
    """Raise NotAuthorizedError unless ``roles`` grant ``permission``."""
    roles = tuple(roles)
    allowed, reason = check_permission(config, roles, permission)
    if not allowed:
        logger.warning(
            "authorization_denied",
            extra={
                "actor_id": str(actor_id),
                "permission": permission,
                "roles": list(roles),
                "reason": reason,
            },
        )
        raise NotAuthorizedError(str(actor_id), permission, reason)


from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from costing_config.schema import CostingConfig
