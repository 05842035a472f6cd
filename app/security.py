# app/security.py
"""Security dependencies: API key validation and the explicit caller identity."""
from __future__ import annotations

from datetime import UTC, datetime

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.actor import Actor
from app.db import get_db
from app.models.api_key import ApiKey
from app.models.user import User, UserRole
from app.utils.apikey import find_valid_key
from app.utils.errors import error_response


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    key.last_used_at = datetime.now(UTC)
    db.add(key)
    db.commit()
    return key


def require_actor(
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db),
) -> Actor:
    """Resolve the key's owner into the ``Actor`` passed to every service call."""

    user = db.get(User, api_key.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_INACTIVE", "User not found or inactive for API key."),
        )
    return Actor(user_id=user.id, role=user.role, label=f"user:{user.id}")


def require_role(*roles: UserRole):
    """Enforce that the caller holds one of ``roles``."""

    if not roles:
        raise RuntimeError("require_role needs at least one role")

    def _dep(actor: Actor = Depends(require_actor)) -> Actor:
        if actor.role in roles:
            return actor
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_ROLE",
                f"Requires one of: {[role.value for role in roles]}",
            ),
        )

    return _dep


__all__ = ["require_actor", "require_api_key", "require_role"]
