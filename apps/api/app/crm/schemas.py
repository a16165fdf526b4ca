from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.identity.schemas import UserBrief


LeadSortField = Literal["created_at", "updated_at", "value", "first_name", "company", "assigned_at"]
SortDirection = Literal["asc", "desc"]
ReferenceSortField = Literal["label", "value", "id"]


class ReferenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    value: str
    label: str


class ReferenceCreate(BaseModel):
    label: str = Field(min_length=1, max_length=80)
    value: str | None = Field(default=None, max_length=40)


class ReferenceUpdate(BaseModel):
    label: str | None = Field(default=None, min_length=1, max_length=80)
    value: str | None = Field(default=None, min_length=1, max_length=40)


class ReferencePage(BaseModel):
    items: list[ReferenceRead]
    page: int
    page_size: int
    total: int
    pages: int


class LeadCreate(BaseModel):
    first_name: str | None = Field(default=None, max_length=80)
    last_name: str | None = Field(default=None, max_length=80)
    company: str | None = Field(default=None, max_length=120)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=40)
    country: str | None = Field(default=None, max_length=80)
    status_id: int | None = None
    source_id: int | None = None
    value: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    notes: str | None = None


class LeadUpdate(BaseModel):
    first_name: str | None = Field(default=None, max_length=80)
    last_name: str | None = Field(default=None, max_length=80)
    company: str | None = Field(default=None, max_length=120)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=40)
    country: str | None = Field(default=None, max_length=80)
    status_id: int | None = None
    source_id: int | None = None
    value: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    notes: str | None = None


class LeadRead(BaseModel):
    id: int
    first_name: str | None
    last_name: str | None
    company: str | None
    email: str | None
    phone: str | None
    country: str | None
    status: ReferenceRead
    source: ReferenceRead | None
    value: Decimal
    created_by: UserBrief | None
    updated_by: UserBrief | None
    assignee: UserBrief | None
    assigned_at: datetime | None
    created_at: datetime
    updated_at: datetime


class LeadPage(BaseModel):
    items: list[LeadRead]
    page: int
    page_size: int
    total: int
    pages: int


class LeadListQuery(BaseModel):
    q: str | None = None
    status_id: int | None = None
    source_id: int | None = None
    assignee_id: int | None = None
    unassigned: bool = False
    mine: bool = False
    assigned_from: datetime | None = None
    assigned_to: datetime | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    sort_by: LeadSortField = "created_at"
    sort_dir: SortDirection = "desc"


class LeadNoteCreate(BaseModel):
    body: str = Field(min_length=1)


class LeadNoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    body: str
    author: UserBrief | None
    created_at: datetime
    updated_at: datetime


class BulkAssignRequest(BaseModel):
    lead_ids: list[int] | None = None
    assignee_id: int | None = None
    overwrite: bool = False


class BulkSkip(BaseModel):
    lead_id: int
    reason: Literal["already_assigned", "already_assigned_to_target"]
    current_assignee_id: int | None = None


class BulkAssignResult(BaseModel):
    total_requested: int
    updated: int
    updated_ids: list[int]
    skipped: list[BulkSkip]
    missing: list[int]
    assignee_id: int
    overwrite: bool


class BulkDeleteRequest(BaseModel):
    lead_ids: list[int] | None = None


class BulkDeleteResult(BaseModel):
    requested: int
    deleted: int
    missing: list[int]


class BulkStatusRequest(BaseModel):
    lead_ids: list[int] | None = None
    status_id: int | None = None


class BulkSourceRequest(BaseModel):
    lead_ids: list[int] | None = None
    source_id: int | None = None


class BulkFieldResult(BaseModel):
    requested: int
    matched: int
    updated: int
    missing: list[int]


class SavedFilterCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    definition: dict[str, Any] = Field(default_factory=dict)
    is_shared: bool = False


class SavedFilterUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    definition: dict[str, Any] | None = None
    is_shared: bool | None = None


class SavedFilterRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    definition: dict[str, Any] = Field(validation_alias="definition_json")
    is_shared: bool
    created_at: datetime
    updated_at: datetime
