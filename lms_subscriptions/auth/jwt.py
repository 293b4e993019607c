"""Bearer-token authentication and permission checks."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Set
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, status

from lms_subscriptions.core.config import settings

ADMIN_ROLE = "admin"


def _permissions(payload: Dict[str, Any]) -> Set[str]:
    raw = payload.get("permissions") or []
    if isinstance(raw, str):
        raw = raw.split()
    return {str(item) for item in raw}


def require_auth(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    """Validate a bearer token and return the caller's identity."""

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier",
        ) from exc

    return {
        "user_id": user_id,
        "is_admin": payload.get("role") == ADMIN_ROLE,
        "permissions": _permissions(payload),
        "claims": payload,
    }


def require_permission(permission: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory: the caller must hold ``permission`` or be an admin."""

    def _check(auth: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
        if auth["is_admin"] or permission in auth["permissions"]:
            return auth
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {permission}",
        )

    return _check
