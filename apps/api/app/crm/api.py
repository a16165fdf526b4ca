from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crm.bulk import bulk_lead_service
from app.crm.schemas import (
    BulkAssignRequest,
    BulkAssignResult,
    BulkDeleteRequest,
    BulkDeleteResult,
    BulkFieldResult,
    BulkSourceRequest,
    BulkStatusRequest,
    LeadCreate,
    LeadListQuery,
    LeadNoteCreate,
    LeadNoteRead,
    LeadPage,
    LeadRead,
    LeadSortField,
    LeadUpdate,
    ReferenceCreate,
    ReferencePage,
    ReferenceRead,
    ReferenceSortField,
    ReferenceUpdate,
    SavedFilterCreate,
    SavedFilterRead,
    SavedFilterUpdate,
    SortDirection,
)
from app.crm.service import (
    ReferenceDataService,
    lead_note_service,
    lead_service,
    saved_filter_service,
    source_service,
    status_service,
)
from app.identity.schemas import UserBrief
from app.platform.security.context import AuthContext
from app.platform.security.dependencies import get_auth_context


leads_router = APIRouter(prefix="/api/leads", tags=["leads"])
bulk_router = APIRouter(prefix="/api/leads/bulk", tags=["leads.bulk"])
statuses_router = APIRouter(prefix="/api/lead-statuses", tags=["lookups.statuses"])
sources_router = APIRouter(prefix="/api/lead-sources", tags=["lookups.sources"])
filters_router = APIRouter(prefix="/api/filters", tags=["filters"])


@bulk_router.post("/assign", response_model=BulkAssignResult)
def bulk_assign(
    payload: BulkAssignRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> BulkAssignResult:
    return bulk_lead_service.bulk_assign(db, ctx, payload)


@bulk_router.post("/delete", response_model=BulkDeleteResult)
def bulk_delete(
    payload: BulkDeleteRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> BulkDeleteResult:
    return bulk_lead_service.bulk_delete(db, ctx, payload)


@bulk_router.post("/status", response_model=BulkFieldResult)
def bulk_status(
    payload: BulkStatusRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> BulkFieldResult:
    return bulk_lead_service.bulk_update_status(db, ctx, payload)


@bulk_router.post("/source", response_model=BulkFieldResult)
def bulk_source(
    payload: BulkSourceRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> BulkFieldResult:
    return bulk_lead_service.bulk_update_source(db, ctx, payload)


@leads_router.get("/assignable-targets", response_model=list[UserBrief])
def list_assignable_targets(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UserBrief]:
    return lead_service.assignable_targets(db, ctx)


@leads_router.get("", response_model=LeadPage)
def list_leads(
    q: str | None = Query(default=None),
    status_id: int | None = Query(default=None),
    source_id: int | None = Query(default=None),
    assignee_id: int | None = Query(default=None),
    unassigned: bool = Query(default=False),
    scope: str | None = Query(default=None, pattern="^(all|mine)$"),
    assigned_from: datetime | None = Query(default=None),
    assigned_to: datetime | None = Query(default=None),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    sort_by: LeadSortField = Query(default="created_at"),
    sort_dir: SortDirection = Query(default="desc"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage:
    query = LeadListQuery(
        q=q,
        status_id=status_id,
        source_id=source_id,
        assignee_id=assignee_id,
        unassigned=unassigned,
        mine=scope == "mine",
        assigned_from=assigned_from,
        assigned_to=assigned_to,
        created_from=created_from,
        created_to=created_to,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )
    return lead_service.list_leads(db, ctx, query)


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead:
    return lead_service.create_lead(db, ctx, payload)


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead:
    return lead_service.get_lead(db, ctx, lead_id)


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead:
    return lead_service.update_lead(db, ctx, lead_id, payload)


@leads_router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    lead_service.delete_lead(db, ctx, lead_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@leads_router.get("/{lead_id}/notes", response_model=list[LeadNoteRead])
def list_lead_notes(
    lead_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadNoteRead]:
    return lead_note_service.list_notes(db, ctx, lead_id)


@leads_router.post("/{lead_id}/notes", response_model=LeadNoteRead, status_code=status.HTTP_201_CREATED)
def add_lead_note(
    lead_id: int,
    payload: LeadNoteCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadNoteRead:
    return lead_note_service.add_note(db, ctx, lead_id, payload)


def _register_reference_routes(router: APIRouter, service: ReferenceDataService) -> None:
    @router.get("", response_model=ReferencePage)
    def list_references(
        q: str | None = Query(default=None),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
        sort_by: ReferenceSortField = Query(default="label"),
        sort_dir: SortDirection = Query(default="asc"),
        db: Session = Depends(get_db),
        _ctx: AuthContext = Depends(get_auth_context),
    ) -> ReferencePage:
        return service.list_page(db, q=q, page=page, page_size=page_size, sort_by=sort_by, sort_dir=sort_dir)

    @router.get("/all", response_model=list[ReferenceRead])
    def list_all_references(
        db: Session = Depends(get_db),
        _ctx: AuthContext = Depends(get_auth_context),
    ) -> list[ReferenceRead]:
        return service.list_all(db)

    @router.get("/{reference_id}", response_model=ReferenceRead)
    def get_reference(
        reference_id: int,
        db: Session = Depends(get_db),
        _ctx: AuthContext = Depends(get_auth_context),
    ) -> ReferenceRead:
        return service.get(db, reference_id)

    @router.post("", response_model=ReferenceRead, status_code=status.HTTP_201_CREATED)
    def create_reference(
        payload: ReferenceCreate,
        db: Session = Depends(get_db),
        ctx: AuthContext = Depends(get_auth_context),
    ) -> ReferenceRead:
        return service.create(db, ctx, payload)

    @router.patch("/{reference_id}", response_model=ReferenceRead)
    def update_reference(
        reference_id: int,
        payload: ReferenceUpdate,
        db: Session = Depends(get_db),
        ctx: AuthContext = Depends(get_auth_context),
    ) -> ReferenceRead:
        return service.update(db, ctx, reference_id, payload)

    @router.delete("/{reference_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_reference(
        reference_id: int,
        db: Session = Depends(get_db),
        ctx: AuthContext = Depends(get_auth_context),
    ) -> Response:
        service.delete(db, ctx, reference_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


_register_reference_routes(statuses_router, status_service)
_register_reference_routes(sources_router, source_service)


@filters_router.get("", response_model=list[SavedFilterRead])
def list_filters(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[SavedFilterRead]:
    return saved_filter_service.list_filters(db, ctx)


@filters_router.post("", response_model=SavedFilterRead, status_code=status.HTTP_201_CREATED)
def create_filter(
    payload: SavedFilterCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SavedFilterRead:
    return saved_filter_service.create_filter(db, ctx, payload)


@filters_router.get("/{filter_id}", response_model=SavedFilterRead)
def get_filter(
    filter_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SavedFilterRead:
    return saved_filter_service.get_filter(db, ctx, filter_id)


@filters_router.patch("/{filter_id}", response_model=SavedFilterRead)
def update_filter(
    filter_id: int,
    payload: SavedFilterUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SavedFilterRead:
    return saved_filter_service.update_filter(db, ctx, filter_id, payload)


@filters_router.delete("/{filter_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_filter(
    filter_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    saved_filter_service.delete_filter(db, ctx, filter_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
