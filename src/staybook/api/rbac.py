"""Property-scoped role checks.

Roles, least to most privileged: viewer < staff < manager < owner.
Every ledger endpoint takes ?property_id=... and requires a minimum role on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Query

from staybook.api.auth import CurrentUser, get_current_user
from staybook.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

ROLE_HIERARCHY = ("viewer", "staff", "manager", "owner")


def role_level(role: str) -> int:
    """Rank of a role (-1 for unknown roles)."""
    return ROLE_HIERARCHY.index(role) if role in ROLE_HIERARCHY else -1


@dataclass
class PropertyRoleContext:
    user: CurrentUser
    property_id: str
    role: str

    def at_least(self, role: str) -> bool:
        return role_level(self.role) >= role_level(role)


def _get_user_role_for_property(user_id: str, property_id: str) -> str | None:
    from staybook.infra.db import txn

    with txn() as cur:
        cur.execute(
            "SELECT role FROM user_property_roles WHERE user_id = %s AND property_id = %s",
            (user_id, property_id),
        )
        row = cur.fetchone()
    return row[0] if row else None


def require_property_role(min_role: str) -> Callable[..., PropertyRoleContext]:
    """Dependency factory: authenticated user with at least min_role on ?property_id.

    Usage:
        @router.post("/folios/{folio_id}/close")
        def close(ctx: PropertyRoleContext = Depends(require_property_role("staff"))):
            ...
    """
    min_level = role_level(min_role)
    if min_level < 0:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(
        property_id: str = Query(..., description="Property ID"),
        user: CurrentUser = Depends(get_current_user),
    ) -> PropertyRoleContext:
        role = _get_user_role_for_property(user.id, property_id)
        if role is None or role_level(role) < min_level:
            logger.warning(
                "property access denied",
                extra=log_fields(user_id=user.id, property_id=property_id, role=role, required=min_role),
            )
            detail = "No access to property" if role is None else "Insufficient role"
            raise HTTPException(status_code=403, detail=detail)
        return PropertyRoleContext(user=user, property_id=property_id, role=role)

    return dependency
