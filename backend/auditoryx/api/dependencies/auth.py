# backend/auditoryx/api/dependencies/auth.py
"""
Caller identity for ledger routes.

Authentication happens upstream (gateway / session service). It forwards
the verified identity as ``X-User-Id`` and ``X-User-Role`` headers, which
are trusted here as-is.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ...core.enums import ActorRole
from ...services.booking_state_machine import Actor

logger = logging.getLogger(__name__)


def get_current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """Build the acting identity from upstream headers."""
    if not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        role = ActorRole(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown caller role: {x_user_role}",
        )
    user_id = (x_user_id or "").strip() or None
    if user_id is None and role != ActorRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    return Actor(user_id=user_id, role=role)


def require_privileged_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Admin or system callers only."""
    if not actor.is_privileged:
        logger.warning(
            "Privileged endpoint rejected caller",
            extra={"actor_uid": actor.user_id, "actor_role": actor.role.value},
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


def require_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != ActorRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor
