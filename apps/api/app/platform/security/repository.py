from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement
from sqlalchemy.sql import Select

from app import audit
from app.core.errors import ForbiddenError
from app.metrics import observe_scope_denial
from app.platform.security.context import AuthContext
from app.platform.security.visibility import VisibilityScope


class BaseRepository:
    resource = ""

    def apply_scope_query(
        self,
        query: Select[Any],
        scope: VisibilityScope,
        assignee_column: ColumnElement[Any],
    ) -> Select[Any]:
        if scope.visible_user_ids() is None:
            return query
        return query.where(scope.lead_filter(assignee_column))

    def deny(
        self,
        ctx: AuthContext,
        action: str,
        message: str,
        *,
        entity_id: int | None = None,
        details: Any = None,
    ) -> ForbiddenError:
        observe_scope_denial(ctx.role, f"{self.resource}.{action}")
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.resource,
            entity_id=entity_id,
            action=f"{action}.denied",
            before=None,
            after={"role": ctx.role, "reason": message},
            correlation_id=ctx.correlation_id,
        )
        return ForbiddenError(message, details=details)
