from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel

from app.crm.schemas import LeadRead
from app.identity.schemas import UserBrief


class BreakdownRow(BaseModel):
    id: int
    value: str
    label: str
    count: int


class AdminKpis(BaseModel):
    owned_by_me: int
    new_this_week: int
    unassigned: int


class AdminDashboardRead(BaseModel):
    role: Literal["admin"] = "admin"
    generated_at: datetime
    total_leads: int
    kpis: AdminKpis
    status_breakdown: list[BreakdownRow]
    source_breakdown: list[BreakdownRow]
    recent_leads: list[LeadRead]


class MemberPipelineRow(BaseModel):
    user: UserBrief
    lead_count: int


class ManagerDashboardRead(BaseModel):
    role: Literal["manager"] = "manager"
    generated_at: datetime
    self_pipeline: int
    team_pipeline: int
    new_this_week: int
    status_breakdown: list[BreakdownRow]
    source_breakdown: list[BreakdownRow]
    members: list[MemberPipelineRow]
    recent_leads: list[LeadRead]


class IntakeDay(BaseModel):
    day: date
    count: int


class SalesRepDashboardRead(BaseModel):
    role: Literal["sales_rep"] = "sales_rep"
    generated_at: datetime
    pipeline_total: int
    new_this_week: int
    inbox: int
    average_age_days: float
    status_breakdown: list[BreakdownRow]
    source_breakdown: list[BreakdownRow]
    recently_assigned: list[LeadRead]
    recently_updated: list[LeadRead]
    intake_from: date
    intake_to: date
    intake: list[IntakeDay]


DashboardRead = AdminDashboardRead | ManagerDashboardRead | SalesRepDashboardRead


class AssignmentActivityRead(BaseModel):
    assignment_id: int
    lead_id: int
    lead_name: str
    company: str | None
    status_label: str
    assigned_at: datetime
    assigned_by: UserBrief | None
    is_current: bool
