# slotgate/auth.py
"""
Caller identity.
Login lives upstream; the gateway in front of this service forwards the
authenticated user as X-User-Id / X-User-Role headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from slotgate.errors import AuthorizationError

ROLE_USER = "USER"
ROLE_OWNER = "OWNER"


@dataclass
class Actor:
    user_id: int
    role: str

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER


def current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=ROLE_USER),
) -> Actor:
    try:
        user_id = int(x_user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return Actor(user_id=user_id, role=(x_user_role or ROLE_USER).upper())


def require_user(actor: Actor = Depends(current_actor)) -> Actor:
    if actor.role != ROLE_USER:
        raise AuthorizationError("Access denied")
    return actor


def require_owner(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_owner:
        raise AuthorizationError("Access denied")
    return actor
