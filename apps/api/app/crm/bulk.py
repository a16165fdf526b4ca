from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.orm import InstrumentedAttribute, Session

from app import audit, events
from app.core.config import get_settings
from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.core.events import LEAD_ASSIGNED, LEAD_DELETED, LEAD_UPDATED
from app.core.timeutils import utcnow
from app.crm.models import Lead, LeadSource, LeadStatus
from app.crm.queries import ScopedLeadQuery
from app.crm.repositories import LeadRepository
from app.crm.schemas import (
    BulkAssignRequest,
    BulkAssignResult,
    BulkDeleteRequest,
    BulkDeleteResult,
    BulkFieldResult,
    BulkSkip,
    BulkSourceRequest,
    BulkStatusRequest,
)
from app.identity.models import User
from app.metrics import observe_bulk_operation
from app.otel import start_span
from app.platform.ledger.service import AssignmentLedger, assignment_ledger
from app.platform.security.context import AuthContext
from app.platform.security.visibility import resolve_scope


logger = logging.getLogger("app.crm.bulk")


def _normalize_ids(lead_ids: Sequence[int] | None) -> list[int]:
    if not lead_ids:
        raise ValidationError("lead_ids is required", details={"field": "lead_ids"})
    seen: set[int] = set()
    ordered: list[int] = []
    for lead_id in lead_ids:
        if lead_id not in seen:
            seen.add(lead_id)
            ordered.append(lead_id)
    return ordered


@dataclass(slots=True)
class BulkLeadService:
    """Set-based lead operations.

    Per-row problems (missing ids, leads owned elsewhere) are reported in the result;
    store failures roll back the whole operation.
    """

    repository: LeadRepository = field(default_factory=LeadRepository)
    ledger: AssignmentLedger = field(default_factory=lambda: assignment_ledger)

    def bulk_assign(self, session: Session, ctx: AuthContext, request: BulkAssignRequest) -> BulkAssignResult:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "bulk_assign", "Sales reps cannot bulk-assign leads.")
        lead_ids = _normalize_ids(request.lead_ids)
        if request.assignee_id is None:
            raise ValidationError("assignee_id is required", details={"field": "assignee_id"})

        started = time.perf_counter()
        with start_span("crm.leads.bulk_assign", actor_role=ctx.role, requested=len(lead_ids)):
            assignee = session.get(User, request.assignee_id)
            if assignee is None:
                raise NotFoundError(
                    f"User {request.assignee_id} not found",
                    details={"assignee_id": request.assignee_id},
                )

            scope = resolve_scope(session, ctx)
            try:
                scope.check_bulk_assignee(assignee)
            except ForbiddenError as exc:
                raise self.repository.deny(ctx, "bulk_assign", exc.message, details=exc.details) from exc

            visible = ScopedLeadQuery(scope).visible_ids(session, lead_ids)
            missing = [lead_id for lead_id in lead_ids if lead_id not in visible]
            current = self.ledger.latest_assignee_map(session, visible)

            skipped: list[BulkSkip] = []
            to_create: list[int] = []
            for lead_id in lead_ids:
                if lead_id not in visible:
                    continue
                owner_id = current.get(lead_id)
                if not request.overwrite and owner_id == assignee.id:
                    skipped.append(
                        BulkSkip(lead_id=lead_id, reason="already_assigned_to_target", current_assignee_id=owner_id)
                    )
                elif not request.overwrite and owner_id is not None and owner_id != ctx.user_id:
                    skipped.append(BulkSkip(lead_id=lead_id, reason="already_assigned", current_assignee_id=owner_id))
                else:
                    to_create.append(lead_id)

            try:
                self.ledger.append_many(session, to_create, assignee_id=assignee.id, assigned_by=ctx.user_id)
                if to_create:
                    audit.record(
                        actor_user_id=ctx.user_id,
                        entity_type=self.repository.resource,
                        entity_id=None,
                        action="bulk_assign",
                        before=None,
                        after={"lead_ids": to_create, "assignee_id": assignee.id, "overwrite": request.overwrite},
                        correlation_id=ctx.correlation_id,
                    )
                    events.publish(
                        events.build_envelope(
                            LEAD_ASSIGNED,
                            ctx.user_id,
                            {"lead_ids": to_create, "assignee_id": assignee.id, "bulk": True},
                        )
                    )
                session.commit()
            except Exception:
                session.rollback()
                raise

        result = BulkAssignResult(
            total_requested=len(lead_ids),
            updated=len(to_create),
            updated_ids=to_create,
            skipped=skipped,
            missing=missing,
            assignee_id=assignee.id,
            overwrite=request.overwrite,
        )
        self._observe(
            "bulk_assign",
            {"updated": result.updated, "skipped": len(skipped), "missing": len(missing)},
            started,
            requested=result.total_requested,
            assignee_id=assignee.id,
            overwrite=request.overwrite,
        )
        return result

    def bulk_delete(self, session: Session, ctx: AuthContext, request: BulkDeleteRequest) -> BulkDeleteResult:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "bulk_delete", "Sales reps cannot delete leads.")
        lead_ids = _normalize_ids(request.lead_ids)

        started = time.perf_counter()
        with start_span("crm.leads.bulk_delete", actor_role=ctx.role, requested=len(lead_ids)):
            visible = ScopedLeadQuery(resolve_scope(session, ctx)).visible_ids(session, lead_ids)
            missing = [lead_id for lead_id in lead_ids if lead_id not in visible]
            try:
                deleted = self.repository.delete_many(session, sorted(visible)) if visible else 0
                if deleted:
                    audit.record(
                        actor_user_id=ctx.user_id,
                        entity_type=self.repository.resource,
                        entity_id=None,
                        action="bulk_delete",
                        before={"lead_ids": sorted(visible)},
                        after=None,
                        correlation_id=ctx.correlation_id,
                    )
                    events.publish(
                        events.build_envelope(LEAD_DELETED, ctx.user_id, {"lead_ids": sorted(visible), "bulk": True})
                    )
                session.commit()
            except Exception:
                session.rollback()
                raise

        result = BulkDeleteResult(requested=len(lead_ids), deleted=deleted, missing=missing)
        self._observe(
            "bulk_delete",
            {"deleted": deleted, "missing": len(missing)},
            started,
            requested=result.requested,
        )
        return result

    def bulk_update_status(self, session: Session, ctx: AuthContext, request: BulkStatusRequest) -> BulkFieldResult:
        return self._bulk_update_field(
            session,
            ctx,
            operation="bulk_status",
            lead_ids=request.lead_ids,
            column=Lead.status_id,
            model=LeadStatus,
            field_name="status_id",
            value=request.status_id,
        )

    def bulk_update_source(self, session: Session, ctx: AuthContext, request: BulkSourceRequest) -> BulkFieldResult:
        return self._bulk_update_field(
            session,
            ctx,
            operation="bulk_source",
            lead_ids=request.lead_ids,
            column=Lead.source_id,
            model=LeadSource,
            field_name="source_id",
            value=request.source_id,
        )

    def _bulk_update_field(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        operation: str,
        lead_ids: Sequence[int] | None,
        column: InstrumentedAttribute[Any],
        model: type[LeadStatus] | type[LeadSource],
        field_name: str,
        value: int | None,
    ) -> BulkFieldResult:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, operation, "Sales reps cannot bulk-update leads.")
        ids = _normalize_ids(lead_ids)
        if value is None:
            raise ValidationError(f"{field_name} is required", details={"field": field_name})
        if session.get(model, value) is None:
            raise ValidationError(f"Unknown {field_name} {value}", details={"field": field_name, "id": value})

        started = time.perf_counter()
        with start_span(f"crm.leads.{operation}", actor_role=ctx.role, requested=len(ids)):
            visible = sorted(ScopedLeadQuery(resolve_scope(session, ctx)).visible_ids(session, ids))
            visible_set = set(visible)
            missing = [lead_id for lead_id in ids if lead_id not in visible_set]
            size = max(1, get_settings().bulk_chunk_size)
            updated = 0
            try:
                now = utcnow()
                for start in range(0, len(visible), size):
                    chunk = visible[start : start + size]
                    result = session.execute(
                        update(Lead)
                        .where(Lead.id.in_(chunk), or_(column.is_(None), column != value))
                        .values({field_name: value, "updated_by": ctx.user_id, "updated_at": now})
                    )
                    updated += int(result.rowcount or 0)
                if updated:
                    audit.record(
                        actor_user_id=ctx.user_id,
                        entity_type=self.repository.resource,
                        entity_id=None,
                        action=operation,
                        before=None,
                        after={"lead_ids": visible, field_name: value},
                        correlation_id=ctx.correlation_id,
                    )
                    events.publish(
                        events.build_envelope(
                            LEAD_UPDATED,
                            ctx.user_id,
                            {"lead_ids": visible, "changed_fields": [field_name], "bulk": True},
                        )
                    )
                session.commit()
            except Exception:
                session.rollback()
                raise

        result = BulkFieldResult(requested=len(ids), matched=len(visible), updated=updated, missing=missing)
        self._observe(
            operation,
            {"updated": updated, "unchanged": len(visible) - updated, "missing": len(missing)},
            started,
            requested=result.requested,
        )
        return result

    @staticmethod
    def _observe(operation: str, outcomes: dict[str, int], started: float, **fields: Any) -> None:
        observe_bulk_operation(operation, outcomes, time.perf_counter() - started)
        logger.info(f"lead_{operation}", extra={"operation": operation, **outcomes, **fields})


bulk_lead_service = BulkLeadService()
