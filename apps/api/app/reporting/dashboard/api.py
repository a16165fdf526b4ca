from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.platform.security.context import AuthContext
from app.platform.security.dependencies import get_auth_context
from app.reporting.dashboard.schemas import (
    AdminDashboardRead,
    AssignmentActivityRead,
    ManagerDashboardRead,
    SalesRepDashboardRead,
)
from app.reporting.dashboard.service import dashboard_service


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/summary", response_model=AdminDashboardRead | ManagerDashboardRead | SalesRepDashboardRead)
def summary(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> AdminDashboardRead | ManagerDashboardRead | SalesRepDashboardRead:
    return dashboard_service.summary(db, ctx)


@router.get("/summary/admin", response_model=AdminDashboardRead)
def admin_summary(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> AdminDashboardRead:
    return dashboard_service.admin_summary(db, ctx)


@router.get("/summary/manager", response_model=ManagerDashboardRead)
def manager_summary(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ManagerDashboardRead:
    return dashboard_service.manager_summary(db, ctx)


@router.get("/summary/sales-rep", response_model=SalesRepDashboardRead)
def sales_rep_summary(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SalesRepDashboardRead:
    return dashboard_service.sales_rep_summary(db, ctx)


@router.get("/assignments", response_model=list[AssignmentActivityRead])
def my_assignments(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[AssignmentActivityRead]:
    return dashboard_service.my_assignments(db, ctx)
