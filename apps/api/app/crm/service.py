from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.events import LEAD_CREATED, LEAD_DELETED, LEAD_UPDATED
from app.crm.models import Lead, LeadNote, LeadSource, LeadStatus, SavedFilter
from app.crm.queries import ScopedLeadQuery
from app.crm.repositories import (
    LeadNoteRepository,
    LeadRepository,
    ReferenceRepository,
    SavedFilterRepository,
)
from app.crm.schemas import (
    LeadCreate,
    LeadListQuery,
    LeadNoteCreate,
    LeadNoteRead,
    LeadPage,
    LeadRead,
    LeadUpdate,
    ReferenceCreate,
    ReferencePage,
    ReferenceRead,
    ReferenceUpdate,
    SavedFilterCreate,
    SavedFilterRead,
    SavedFilterUpdate,
)
from app.identity.schemas import UserBrief
from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.service import AssignmentLedger, assignment_ledger
from app.platform.security.context import AuthContext
from app.platform.security.visibility import can_see_owner, resolve_scope


logger = logging.getLogger("app.crm")

REFERENCE_VALUE_MAX_LENGTH = 40
_EDITABLE_LEAD_FIELDS = ("first_name", "last_name", "company", "email", "phone", "country", "status_id", "source_id")


def to_snake_value(label: str) -> str:
    value = re.sub(r"[^a-z0-9]+", "_", label.strip().lower()).strip("_")
    return value[:REFERENCE_VALUE_MAX_LENGTH].strip("_")


def page_count(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


def lead_snapshot(lead: Lead) -> dict[str, Any]:
    snapshot = {name: getattr(lead, name) for name in _EDITABLE_LEAD_FIELDS}
    snapshot["value"] = str(lead.value_decimal)
    return snapshot


def to_lead_read(lead: Lead, assignment: LeadAssignment | None) -> LeadRead:
    return LeadRead(
        id=lead.id,
        first_name=lead.first_name,
        last_name=lead.last_name,
        company=lead.company,
        email=lead.email,
        phone=lead.phone,
        country=lead.country,
        status=ReferenceRead.model_validate(lead.status),
        source=ReferenceRead.model_validate(lead.source) if lead.source is not None else None,
        value=Decimal(lead.value_decimal),
        created_by=UserBrief.model_validate(lead.creator) if lead.creator is not None else None,
        updated_by=UserBrief.model_validate(lead.updater) if lead.updater is not None else None,
        assignee=UserBrief.model_validate(assignment.assignee) if assignment is not None else None,
        assigned_at=assignment.assigned_at if assignment is not None else None,
        created_at=lead.created_at,
        updated_at=lead.updated_at,
    )


@dataclass(slots=True)
class LeadService:
    repository: LeadRepository = field(default_factory=LeadRepository)
    ledger: AssignmentLedger = field(default_factory=lambda: assignment_ledger)

    def to_read_models(self, session: Session, leads: list[Lead]) -> list[LeadRead]:
        assignments = self.ledger.latest_assignment_map(session, [lead.id for lead in leads])
        return [to_lead_read(lead, assignments.get(lead.id)) for lead in leads]

    def list_leads(self, session: Session, ctx: AuthContext, query: LeadListQuery) -> LeadPage:
        scoped = ScopedLeadQuery(resolve_scope(session, ctx))
        criteria = scoped.criteria(query)
        total = scoped.count(session, *criteria)

        stmt = scoped.ordered(scoped.select().where(*criteria), query.sort_by, query.sort_dir)
        offset = (query.page - 1) * query.page_size
        leads = list(session.scalars(stmt.offset(offset).limit(query.page_size)).all())
        return LeadPage(
            items=self.to_read_models(session, leads),
            page=query.page,
            page_size=query.page_size,
            total=total,
            pages=page_count(total, query.page_size),
        )

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: int) -> LeadRead:
        lead, _ = self.ledger.require_visible_lead(session, ctx, lead_id)
        return self.to_read_models(session, [lead])[0]

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        if dto.status_id is None:
            raise ValidationError("status_id is required", details={"field": "status_id"})
        _require_reference(session, LeadStatus, dto.status_id, "status_id")
        if dto.source_id is not None:
            _require_reference(session, LeadSource, dto.source_id, "source_id")

        lead = Lead(
            first_name=dto.first_name,
            last_name=dto.last_name,
            company=dto.company,
            email=str(dto.email) if dto.email is not None else None,
            phone=dto.phone,
            country=dto.country,
            status_id=dto.status_id,
            source_id=dto.source_id,
            value_decimal=dto.value,
            created_by=ctx.user_id,
            updated_by=ctx.user_id,
        )
        session.add(lead)
        session.flush()

        self.ledger.append(session, lead_id=lead.id, assignee_id=ctx.user_id, assigned_by=ctx.user_id)
        if dto.notes and dto.notes.strip():
            session.add(LeadNote(lead_id=lead.id, author_id=ctx.user_id, body=dto.notes.strip()))

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=lead.id,
            action="create",
            before=None,
            after=lead_snapshot(lead),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(LEAD_CREATED, ctx.user_id, {"lead_id": lead.id, "assignee_id": ctx.user_id})
        )
        session.commit()
        session.refresh(lead)
        logger.info("lead_created", extra={"lead_id": lead.id, "assignee_id": ctx.user_id})
        return self.to_read_models(session, [lead])[0]

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: int, dto: LeadUpdate) -> LeadRead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found", details={"lead_id": lead_id})

        owner_id = self.ledger.latest_assignee_of(session, lead.id)
        if not can_see_owner(resolve_scope(session, ctx), owner_id):
            message = (
                "You can only update leads currently assigned to you."
                if ctx.is_sales_rep
                else "Lead is outside your team scope."
            )
            raise self.repository.deny(ctx, "update", message, entity_id=lead.id, details={"lead_id": lead.id})

        payload = dto.model_dump(exclude_unset=True)
        note_body = payload.pop("notes", None)
        if "value" in payload:
            value = payload.pop("value")
            if value is None:
                raise ValidationError("value cannot be null", details={"field": "value"})
            payload["value_decimal"] = value
        if "status_id" in payload:
            if payload["status_id"] is None:
                raise ValidationError("status_id cannot be cleared", details={"field": "status_id"})
            _require_reference(session, LeadStatus, payload["status_id"], "status_id")
        if payload.get("source_id") is not None:
            _require_reference(session, LeadSource, payload["source_id"], "source_id")
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])

        before = lead_snapshot(lead)
        for name, value in payload.items():
            setattr(lead, name, value)
        lead.updated_by = ctx.user_id

        if note_body and note_body.strip():
            session.add(LeadNote(lead_id=lead.id, author_id=ctx.user_id, body=note_body.strip()))

        session.flush()
        after = lead_snapshot(lead)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=lead.id,
            action="update",
            before=before,
            after=after,
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                LEAD_UPDATED,
                ctx.user_id,
                {
                    "lead_id": lead.id,
                    "changed_fields": sorted(key for key in after if before.get(key) != after.get(key)),
                },
            )
        )
        session.commit()
        session.refresh(lead)
        return self.to_read_models(session, [lead])[0]

    def delete_lead(self, session: Session, ctx: AuthContext, lead_id: int) -> None:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "delete", "Sales reps cannot delete leads.", entity_id=lead_id)
        lead, owner_id = self.ledger.require_visible_lead(session, ctx, lead_id)
        before = lead_snapshot(lead)
        self.repository.delete_many(session, [lead.id])
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=lead_id,
            action="delete",
            before=before | {"assignee_id": owner_id},
            after=None,
            correlation_id=ctx.correlation_id,
        )
        events.publish(events.build_envelope(LEAD_DELETED, ctx.user_id, {"lead_id": lead_id}))
        session.commit()

    def assignable_targets(self, session: Session, ctx: AuthContext) -> list[UserBrief]:
        if ctx.is_sales_rep:
            raise self.repository.deny(ctx, "assign", "Sales reps cannot assign leads.")
        scope = resolve_scope(session, ctx)
        return [UserBrief.model_validate(user) for user in session.scalars(scope.eligible_assignees()).all()]


@dataclass(slots=True)
class LeadNoteService:
    repository: LeadNoteRepository = field(default_factory=LeadNoteRepository)
    ledger: AssignmentLedger = field(default_factory=lambda: assignment_ledger)

    def list_notes(self, session: Session, ctx: AuthContext, lead_id: int) -> list[LeadNoteRead]:
        self.ledger.require_visible_lead(session, ctx, lead_id)
        rows = session.scalars(
            select(LeadNote)
            .where(LeadNote.lead_id == lead_id)
            .order_by(LeadNote.created_at.desc(), LeadNote.id.desc())
        ).all()
        return [LeadNoteRead.model_validate(row) for row in rows]

    def add_note(self, session: Session, ctx: AuthContext, lead_id: int, dto: LeadNoteCreate) -> LeadNoteRead:
        body = dto.body.strip()
        if not body:
            raise ValidationError("body is required", details={"field": "body"})
        self.ledger.require_visible_lead(session, ctx, lead_id)
        note = LeadNote(lead_id=lead_id, author_id=ctx.user_id, body=body)
        session.add(note)
        session.flush()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=note.id,
            action="create",
            before=None,
            after={"lead_id": lead_id},
            correlation_id=ctx.correlation_id,
        )
        session.commit()
        session.refresh(note)
        return LeadNoteRead.model_validate(note)


class ReferenceDataService:
    """CRUD over a value/label lookup table referenced by leads."""

    def __init__(self, model: type[LeadStatus] | type[LeadSource], lead_column: str, label: str, plural: str) -> None:
        self.model = model
        self.label = label
        self.plural = plural
        self.repository = ReferenceRepository(model, lead_column)

    def list_all(self, session: Session) -> list[ReferenceRead]:
        rows = session.scalars(select(self.model).order_by(self.model.id.asc())).all()
        return [ReferenceRead.model_validate(row) for row in rows]

    def list_page(
        self,
        session: Session,
        *,
        q: str | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "label",
        sort_dir: str = "asc",
    ) -> ReferencePage:
        stmt = select(self.model)
        term = (q or "").strip()
        if term:
            stmt = stmt.where(or_(self.model.label.ilike(f"%{term}%"), self.model.value.ilike(f"%{term}%")))

        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        column = {"label": self.model.label, "value": self.model.value, "id": self.model.id}.get(sort_by, self.model.label)
        ordering = column.desc() if sort_dir == "desc" else column.asc()
        rows = session.scalars(
            stmt.order_by(ordering, self.model.id.asc()).offset((page - 1) * page_size).limit(page_size)
        ).all()
        return ReferencePage(
            items=[ReferenceRead.model_validate(row) for row in rows],
            page=page,
            page_size=page_size,
            total=total,
            pages=page_count(total, page_size),
        )

    def get(self, session: Session, reference_id: int) -> ReferenceRead:
        return ReferenceRead.model_validate(self._get_row(session, reference_id))

    def create(self, session: Session, ctx: AuthContext, dto: ReferenceCreate) -> ReferenceRead:
        self._require_admin(ctx, "create")
        label = dto.label.strip()
        value = self._derive_value(dto.value or label)
        self._ensure_unique(session, value)

        row = self.model(value=value, label=label)
        session.add(row)
        self._commit(session, value)
        session.refresh(row)
        self._audit(ctx, row.id, "create", None, {"value": value, "label": label})
        return ReferenceRead.model_validate(row)

    def update(self, session: Session, ctx: AuthContext, reference_id: int, dto: ReferenceUpdate) -> ReferenceRead:
        self._require_admin(ctx, "update")
        row = self._get_row(session, reference_id)
        before = {"value": row.value, "label": row.label}

        label = dto.label.strip() if dto.label is not None else row.label
        if dto.value is not None:
            value = self._derive_value(dto.value)
        elif dto.label is not None:
            value = self._derive_value(label)
        else:
            value = row.value
        self._ensure_unique(session, value, exclude_id=row.id)

        row.label = label
        row.value = value
        self._commit(session, row.value)
        session.refresh(row)
        self._audit(ctx, row.id, "update", before, {"value": row.value, "label": row.label})
        return ReferenceRead.model_validate(row)

    def delete(self, session: Session, ctx: AuthContext, reference_id: int) -> None:
        self._require_admin(ctx, "delete")
        row = self._get_row(session, reference_id)
        in_use_count = self.repository.usage_count(session, row.id)
        if in_use_count > 0:
            raise ConflictError(
                f"{self.label.capitalize()} '{row.label}' is used by {in_use_count} lead(s)",
                details={"in_use_count": in_use_count},
            )
        before = {"value": row.value, "label": row.label}
        session.delete(row)
        session.commit()
        self._audit(ctx, reference_id, "delete", before, None)

    def _get_row(self, session: Session, reference_id: int) -> LeadStatus | LeadSource:
        row = session.get(self.model, reference_id)
        if row is None:
            raise NotFoundError(f"Lead {self.label} {reference_id} not found", details={"id": reference_id})
        return row

    def _derive_value(self, raw: str) -> str:
        value = to_snake_value(raw)
        if not value:
            raise ValidationError("label must contain letters or digits", details={"field": "label"})
        return value

    def _ensure_unique(self, session: Session, value: str, *, exclude_id: int | None = None) -> None:
        stmt = select(self.model.id).where(self.model.value == value)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise ConflictError(f"Lead {self.label} '{value}' already exists", details={"value": value})

    def _commit(self, session: Session, value: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(f"Lead {self.label} '{value}' already exists", details={"value": value}) from exc

    def _require_admin(self, ctx: AuthContext, action: str) -> None:
        if not ctx.is_admin:
            raise self.repository.deny(ctx, action, f"Only admins can manage lead {self.plural}.")

    def _audit(
        self,
        ctx: AuthContext,
        entity_id: int,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.repository.resource,
            entity_id=entity_id,
            action=action,
            before=before,
            after=after,
            correlation_id=ctx.correlation_id,
        )


@dataclass(slots=True)
class SavedFilterService:
    repository: SavedFilterRepository = field(default_factory=SavedFilterRepository)

    def list_filters(self, session: Session, ctx: AuthContext) -> list[SavedFilterRead]:
        rows = session.scalars(
            select(SavedFilter)
            .where(or_(SavedFilter.user_id == ctx.user_id, SavedFilter.is_shared.is_(True)))
            .order_by(SavedFilter.name.asc(), SavedFilter.id.asc())
        ).all()
        return [SavedFilterRead.model_validate(row) for row in rows]

    def get_filter(self, session: Session, ctx: AuthContext, filter_id: int) -> SavedFilterRead:
        row = self._get_row(session, filter_id)
        if row.user_id != ctx.user_id and not row.is_shared:
            raise self.repository.deny(ctx, "read", "This filter is private.", entity_id=filter_id)
        return SavedFilterRead.model_validate(row)

    def create_filter(self, session: Session, ctx: AuthContext, dto: SavedFilterCreate) -> SavedFilterRead:
        name = dto.name.strip()
        self._ensure_unique_name(session, ctx.user_id, name)
        row = SavedFilter(user_id=ctx.user_id, name=name, definition_json=dto.definition, is_shared=dto.is_shared)
        session.add(row)
        self._commit(session, name)
        session.refresh(row)
        return SavedFilterRead.model_validate(row)

    def update_filter(self, session: Session, ctx: AuthContext, filter_id: int, dto: SavedFilterUpdate) -> SavedFilterRead:
        row = self._owned_row(session, ctx, filter_id, "update")
        if dto.name is not None:
            name = dto.name.strip()
            self._ensure_unique_name(session, ctx.user_id, name, exclude_id=row.id)
            row.name = name
        if dto.definition is not None:
            row.definition_json = dto.definition
        if dto.is_shared is not None:
            row.is_shared = dto.is_shared
        self._commit(session, row.name)
        session.refresh(row)
        return SavedFilterRead.model_validate(row)

    def delete_filter(self, session: Session, ctx: AuthContext, filter_id: int) -> None:
        row = self._owned_row(session, ctx, filter_id, "delete")
        session.delete(row)
        session.commit()

    def _get_row(self, session: Session, filter_id: int) -> SavedFilter:
        row = session.get(SavedFilter, filter_id)
        if row is None:
            raise NotFoundError(f"Saved filter {filter_id} not found", details={"id": filter_id})
        return row

    def _owned_row(self, session: Session, ctx: AuthContext, filter_id: int, action: str) -> SavedFilter:
        row = self._get_row(session, filter_id)
        if row.user_id != ctx.user_id:
            raise self.repository.deny(ctx, action, "Only the owner can change this filter.", entity_id=filter_id)
        return row

    def _ensure_unique_name(self, session: Session, user_id: int, name: str, *, exclude_id: int | None = None) -> None:
        stmt = select(SavedFilter.id).where(SavedFilter.user_id == user_id, SavedFilter.name == name)
        if exclude_id is not None:
            stmt = stmt.where(SavedFilter.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise ConflictError(f"A filter named '{name}' already exists", details={"name": name})

    def _commit(self, session: Session, name: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(f"A filter named '{name}' already exists", details={"name": name}) from exc


def _require_reference(session: Session, model: type[LeadStatus] | type[LeadSource], reference_id: int, field_name: str) -> None:
    if session.get(model, reference_id) is None:
        raise ValidationError(f"Unknown {field_name} {reference_id}", details={"field": field_name, "id": reference_id})


lead_service = LeadService()
lead_note_service = LeadNoteService()
status_service = ReferenceDataService(LeadStatus, "status_id", "status", "statuses")
source_service = ReferenceDataService(LeadSource, "source_id", "source", "sources")
saved_filter_service = SavedFilterService()
