from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.platform.ledger.schemas import AssignRequest, LeadAssignmentRead
from app.platform.ledger.service import assignment_ledger
from app.platform.security.context import AuthContext
from app.platform.security.dependencies import get_auth_context


router = APIRouter(prefix="/api/leads", tags=["leads.assignments"])


@router.post("/{lead_id}/assign", response_model=LeadAssignmentRead, status_code=status.HTTP_201_CREATED)
def assign_lead(
    lead_id: int,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadAssignmentRead:
    return assignment_ledger.assign(db, ctx, lead_id, payload.assignee_id)


@router.get("/{lead_id}/assignments", response_model=list[LeadAssignmentRead])
def list_assignment_history(
    lead_id: int,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadAssignmentRead]:
    return assignment_ledger.history_of(db, ctx, lead_id)
