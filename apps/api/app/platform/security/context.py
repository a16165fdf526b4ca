from __future__ import annotations

from dataclasses import dataclass

from app.identity.models import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP


@dataclass(slots=True)
class AuthContext:
    """Authenticated actor handed to every service call."""

    user_id: int
    role: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    @property
    def is_sales_rep(self) -> bool:
        return self.role == ROLE_SALES_REP
