from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.identity.schemas import UserBrief


class AssignRequest(BaseModel):
    assignee_id: int | None = None


class LeadAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    assignee_id: int
    assigned_by: int | None
    assigned_at: datetime
    assignee: UserBrief | None = None
    assigner: UserBrief | None = None
