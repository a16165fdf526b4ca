from app.platform.security.context import AuthContext
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import (
    AdminScope,
    ManagerScope,
    SalesRepScope,
    TeamClosure,
    VisibilityScope,
    can_see_owner,
    resolve_scope,
    team_closure,
)

__all__ = [
    "AuthContext",
    "BaseRepository",
    "VisibilityScope",
    "AdminScope",
    "ManagerScope",
    "SalesRepScope",
    "TeamClosure",
    "can_see_owner",
    "resolve_scope",
    "team_closure",
]
