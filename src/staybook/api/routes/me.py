"""Current user and the properties they can work on."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from staybook.api.auth import CurrentUser, get_current_user

router = APIRouter(tags=["me"])


def _list_user_property_roles(user_id: str) -> list[dict]:
    from staybook.infra.db import txn

    with txn() as cur:
        cur.execute(
            """
            SELECT upr.property_id, p.code, upr.role
            FROM user_property_roles upr
            JOIN properties p ON p.id = upr.property_id
            WHERE upr.user_id = %s
            ORDER BY p.code
            """,
            (user_id,),
        )
        return [
            {"property_id": row[0], "property_code": row[1], "role": row[2]}
            for row in cur.fetchall()
        ]


@router.get("/me")
def get_me(user: CurrentUser = Depends(get_current_user)) -> dict:
    """Authenticated user with one entry per property role."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "properties": _list_user_property_roles(user.id),
    }
