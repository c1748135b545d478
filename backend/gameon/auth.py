"""
Caller identity for room routes.

Authentication happens upstream (API gateway / auth service); it forwards the
verified identity in headers, which these dependencies turn into actors:

- ``X-User-Id``: participant user id
- ``X-Admin-Id`` and ``X-Admin-Scopes`` (comma-separated): administrator
"""

from typing import Optional

from fastapi import Header, HTTPException

from gameon.services.room_access import Administrator, Participant


def _parse_scopes(raw: Optional[str]) -> frozenset:
    if not raw:
        return frozenset()
    return frozenset(s.strip() for s in raw.split(",") if s.strip())


def get_participant(x_user_id: Optional[str] = Header(default=None)) -> Participant:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail={"kind": "Unauthenticated", "message": "Login required"})
    return Participant(user_id=x_user_id.strip())


def get_administrator(
    x_admin_id: Optional[str] = Header(default=None),
    x_admin_scopes: Optional[str] = Header(default=None),
) -> Administrator:
    if not x_admin_id or not x_admin_id.strip():
        raise HTTPException(status_code=401, detail={"kind": "Unauthenticated", "message": "Admin login required"})
    return Administrator(admin_id=x_admin_id.strip(), scopes=_parse_scopes(x_admin_scopes))


def administrator_from_query(admin_id: Optional[str], scopes: Optional[str]) -> Optional[Administrator]:
    """WebSocket variant: browsers cannot set headers on the upgrade request."""
    if not admin_id:
        return None
    return Administrator(admin_id=admin_id, scopes=_parse_scopes(scopes))
