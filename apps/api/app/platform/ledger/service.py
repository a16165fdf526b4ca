from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import Select, func, insert, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Subquery

from app import audit, events
from app.core.config import get_settings
from app.core.errors import NotFoundError, ValidationError
from app.core.events import LEAD_ASSIGNED
from app.core.timeutils import utcnow
from app.crm.models import Lead
from app.identity.models import User
from app.metrics import observe_assignments_appended
from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.schemas import LeadAssignmentRead
from app.platform.security.context import AuthContext
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import VisibilityScope, can_see_owner, resolve_scope


logger = logging.getLogger("app.ledger")


def latest_assignment_ids(lead_ids: Iterable[int] | None = None) -> Select[tuple[int]]:
    """max(id) per lead_id, optionally restricted to ``lead_ids``."""

    stmt = select(func.max(LeadAssignment.id)).group_by(LeadAssignment.lead_id)
    if lead_ids is not None:
        stmt = stmt.where(LeadAssignment.lead_id.in_(sorted(set(lead_ids))))
    return stmt


def current_assignment_subquery(name: str = "current_assignment") -> Subquery:
    """One row per assigned lead: the ledger row holding the highest id.

    Every scoped lead query joins against this, so listing, counting, dashboards and
    bulk operations agree on who owns what.
    """

    return (
        select(
            LeadAssignment.id.label("assignment_id"),
            LeadAssignment.lead_id.label("lead_id"),
            LeadAssignment.assignee_id.label("assignee_id"),
            LeadAssignment.assigned_by.label("assigned_by"),
            LeadAssignment.assigned_at.label("assigned_at"),
        )
        .where(LeadAssignment.id.in_(latest_assignment_ids()))
        .subquery(name)
    )


class LeadAssignmentRepository(BaseRepository):
    resource = "crm.lead_assignment"


@dataclass(slots=True)
class AssignmentLedger:
    repository: LeadAssignmentRepository = LeadAssignmentRepository()

    def append(self, session: Session, *, lead_id: int, assignee_id: int, assigned_by: int | None) -> LeadAssignment:
        row = LeadAssignment(lead_id=lead_id, assignee_id=assignee_id, assigned_by=assigned_by, assigned_at=utcnow())
        session.add(row)
        session.flush()
        observe_assignments_appended("single")
        return row

    def append_many(
        self,
        session: Session,
        lead_ids: Sequence[int],
        *,
        assignee_id: int,
        assigned_by: int | None,
        chunk_size: int | None = None,
    ) -> int:
        """Insert one row per lead in fixed-size chunks. The caller owns the transaction."""

        if not lead_ids:
            return 0
        size = max(1, chunk_size or get_settings().bulk_chunk_size)
        assigned_at = utcnow()
        for start in range(0, len(lead_ids), size):
            chunk = lead_ids[start : start + size]
            session.execute(
                insert(LeadAssignment),
                [
                    {
                        "lead_id": lead_id,
                        "assignee_id": assignee_id,
                        "assigned_by": assigned_by,
                        "assigned_at": assigned_at,
                    }
                    for lead_id in chunk
                ],
            )
        observe_assignments_appended("bulk", len(lead_ids))
        return len(lead_ids)

    def latest_assignee_of(self, session: Session, lead_id: int) -> int | None:
        return session.scalar(
            select(LeadAssignment.assignee_id)
            .where(LeadAssignment.lead_id == lead_id)
            .order_by(LeadAssignment.id.desc())
            .limit(1)
        )

    def latest_assignee_map(self, session: Session, lead_ids: Iterable[int]) -> dict[int, int]:
        ids = set(lead_ids)
        if not ids:
            return {}
        rows = session.execute(
            select(LeadAssignment.lead_id, LeadAssignment.assignee_id).where(
                LeadAssignment.id.in_(latest_assignment_ids(ids))
            )
        ).all()
        return {lead_id: assignee_id for lead_id, assignee_id in rows}

    def latest_assignment_map(self, session: Session, lead_ids: Iterable[int]) -> dict[int, LeadAssignment]:
        ids = set(lead_ids)
        if not ids:
            return {}
        rows = session.scalars(select(LeadAssignment).where(LeadAssignment.id.in_(latest_assignment_ids(ids)))).all()
        return {row.lead_id: row for row in rows}

    def history_of(self, session: Session, ctx: AuthContext, lead_id: int) -> list[LeadAssignmentRead]:
        self.require_visible_lead(session, ctx, lead_id)
        rows = session.scalars(
            select(LeadAssignment)
            .where(LeadAssignment.lead_id == lead_id)
            .order_by(LeadAssignment.id.desc())
        ).all()
        return [LeadAssignmentRead.model_validate(row) for row in rows]

    def assign(self, session: Session, ctx: AuthContext, lead_id: int, assignee_id: int | None) -> LeadAssignmentRead:
        if assignee_id is None:
            raise ValidationError("assignee_id is required", details={"field": "assignee_id"})
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "assign", "Sales reps cannot assign leads.", entity_id=lead_id)

        scope = resolve_scope(session, ctx)
        lead, previous_assignee_id = self.require_visible_lead(session, ctx, lead_id, scope=scope)

        assignee = session.get(User, assignee_id)
        if assignee is None:
            raise NotFoundError(f"User {assignee_id} not found", details={"assignee_id": assignee_id})
        if not scope.can_assign_to(assignee):
            raise self.repository.deny(
                ctx,
                "assign",
                "Assignee is not an eligible target for this actor.",
                entity_id=lead.id,
                details={"assignee_id": assignee_id},
            )

        row = self.append(session, lead_id=lead.id, assignee_id=assignee.id, assigned_by=ctx.user_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="crm.lead",
            entity_id=lead.id,
            action="assign",
            before={"assignee_id": previous_assignee_id},
            after={"assignee_id": assignee.id},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                LEAD_ASSIGNED,
                ctx.user_id,
                {"lead_id": lead.id, "assignee_id": assignee.id, "previous_assignee_id": previous_assignee_id},
            )
        )
        session.commit()
        session.refresh(row)
        logger.info("lead_assigned", extra={"lead_id": lead.id, "assignee_id": assignee.id})
        return LeadAssignmentRead.model_validate(row)

    def require_visible_lead(
        self,
        session: Session,
        ctx: AuthContext,
        lead_id: int,
        *,
        scope: VisibilityScope | None = None,
    ) -> tuple[Lead, int | None]:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found", details={"lead_id": lead_id})
        owner_id = self.latest_assignee_of(session, lead_id)
        resolved = scope if scope is not None else resolve_scope(session, ctx)
        if not can_see_owner(resolved, owner_id):
            raise NotFoundError(f"Lead {lead_id} not found", details={"lead_id": lead_id})
        return lead, owner_id


assignment_ledger = AssignmentLedger()
