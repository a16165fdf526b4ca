from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.errors import AuthenticationError, ForbiddenError
from app.identity.models import User
from app.platform.security.context import AuthContext


def get_auth_context(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthContext:
    try:
        user_id = int(auth_user.sub)
    except ValueError as exc:
        raise AuthenticationError("Invalid token subject") from exc

    user = db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise AuthenticationError("Account no longer exists")
    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return AuthContext(
        user_id=user.id,
        role=user.role_value,
        correlation_id=get_correlation_id() or getattr(request.state, "correlation_id", None),
    )
