"""
Caller identity.

The gateway in front of this service authenticates the user and forwards
the id in ``X-User-Id``; every document, attempt and review is scoped to it.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Return the stripped user id, 401 when the header is absent or blank."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required.",
        )
    return user_id
