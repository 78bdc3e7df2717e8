"""Caller resolution for the HTTP layer.

Authentication lives in the gateway in front of this service; it forwards the
authenticated user's id in ``X-User-Id``. The engine itself only uses that id
as an opaque actor for audit stamping.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from payouts.core.database import get_db
from payouts.models.user import User, UserRole


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    user = db.query(User).filter(User.id == x_user_id).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive user",
        )
    return user


def require_admin(user: User):
    if (user.role or "").lower() != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")


def require_agent(user: User):
    if (user.role or "").lower() != UserRole.AGENT:
        raise HTTPException(status_code=403, detail="Agent access required")
