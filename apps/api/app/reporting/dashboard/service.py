from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.timeutils import as_utc, utc_today, utcnow
from app.crm.models import Lead, LeadSource, LeadStatus
from app.crm.queries import ScopedLeadQuery
from app.crm.schemas import LeadRead
from app.crm.service import LeadService, lead_service
from app.identity.models import User
from app.identity.schemas import UserBrief
from app.metrics import observe_dashboard_build
from app.otel import start_span
from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.service import AssignmentLedger, assignment_ledger
from app.platform.security.context import AuthContext
from app.platform.security.visibility import resolve_scope
from app.reporting.dashboard.repository import DashboardRepository
from app.reporting.dashboard.schemas import (
    AdminDashboardRead,
    AdminKpis,
    AssignmentActivityRead,
    BreakdownRow,
    DashboardRead,
    IntakeDay,
    ManagerDashboardRead,
    MemberPipelineRow,
    SalesRepDashboardRead,
)


logger = logging.getLogger("app.reporting.dashboard")


def _day_key(raw: Any) -> date:
    # func.date() returns a date on PostgreSQL and an ISO string on SQLite.
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


@dataclass(slots=True)
class DashboardService:
    """Role-scoped summaries. Status and source breakdowns always list every known row."""

    repository: DashboardRepository = field(default_factory=DashboardRepository)
    leads: LeadService = field(default_factory=lambda: lead_service)
    ledger: AssignmentLedger = field(default_factory=lambda: assignment_ledger)

    def summary(self, session: Session, ctx: AuthContext) -> DashboardRead:
        if ctx.is_admin:
            return self.admin_summary(session, ctx)
        if ctx.is_manager:
            return self.manager_summary(session, ctx)
        return self.sales_rep_summary(session, ctx)

    def admin_summary(self, session: Session, ctx: AuthContext) -> AdminDashboardRead:
        if not ctx.is_admin:
            raise self.repository.deny(ctx, "admin_summary", "Only admins can view the admin dashboard.")
        started = time.perf_counter()
        with start_span("reporting.dashboard.admin", actor_role=ctx.role):
            scoped = ScopedLeadQuery(resolve_scope(session, ctx))
            result = AdminDashboardRead(
                generated_at=utcnow(),
                total_leads=scoped.count(session),
                kpis=AdminKpis(
                    owned_by_me=scoped.count(session, scoped.assignee_id == ctx.user_id),
                    new_this_week=scoped.count(session, self._new_lead_criterion()),
                    unassigned=scoped.count(session, scoped.current.c.assignment_id.is_(None)),
                ),
                status_breakdown=self._breakdown(session, scoped, LeadStatus, Lead.status_id),
                source_breakdown=self._breakdown(session, scoped, LeadSource, Lead.source_id),
                recent_leads=self._recent(session, scoped, Lead.created_at),
            )
        self._observe(ctx, started, total=result.total_leads)
        return result

    def manager_summary(self, session: Session, ctx: AuthContext) -> ManagerDashboardRead:
        if not ctx.is_manager:
            raise self.repository.deny(ctx, "manager_summary", "Only managers can view the manager dashboard.")
        started = time.perf_counter()
        with start_span("reporting.dashboard.manager", actor_role=ctx.role):
            scope = resolve_scope(session, ctx)
            scoped = ScopedLeadQuery(scope)
            per_user = scoped.grouped_counts(session, scoped.assignee_id)
            member_ids = sorted((scope.visible_user_ids() or frozenset()) - {ctx.user_id})
            members = session.scalars(select(User).where(User.id.in_(member_ids))).all() if member_ids else []
            rows = [
                MemberPipelineRow(user=UserBrief.model_validate(user), lead_count=per_user.get(user.id, 0))
                for user in members
            ]
            rows.sort(key=lambda row: (-row.lead_count, row.user.full_name.lower(), row.user.id))

            result = ManagerDashboardRead(
                generated_at=utcnow(),
                self_pipeline=per_user.get(ctx.user_id, 0),
                team_pipeline=scoped.count(session),
                new_this_week=scoped.count(session, self._new_lead_criterion()),
                status_breakdown=self._breakdown(session, scoped, LeadStatus, Lead.status_id),
                source_breakdown=self._breakdown(session, scoped, LeadSource, Lead.source_id),
                members=rows,
                recent_leads=self._recent(session, scoped, Lead.created_at),
            )
        self._observe(ctx, started, total=result.team_pipeline)
        return result

    def sales_rep_summary(self, session: Session, ctx: AuthContext) -> SalesRepDashboardRead:
        if not ctx.is_sales_rep:
            raise self.repository.deny(ctx, "sales_rep_summary", "Only sales reps can view the sales rep dashboard.")
        settings = get_settings()
        started = time.perf_counter()
        with start_span("reporting.dashboard.sales_rep", actor_role=ctx.role):
            scoped = ScopedLeadQuery(resolve_scope(session, ctx))
            inbox_ids = self.repository.status_ids_matching(session, settings.inbox_status_value)
            intake_to = utc_today()
            intake_from = intake_to - timedelta(days=max(1, settings.dashboard_intake_days) - 1)

            result = SalesRepDashboardRead(
                generated_at=utcnow(),
                pipeline_total=scoped.count(session),
                new_this_week=scoped.count(session, self._new_lead_criterion()),
                inbox=scoped.count(session, Lead.status_id.in_(inbox_ids)) if inbox_ids else 0,
                average_age_days=self._average_age_days(session, scoped),
                status_breakdown=self._breakdown(session, scoped, LeadStatus, Lead.status_id),
                source_breakdown=self._breakdown(session, scoped, LeadSource, Lead.source_id),
                recently_assigned=self._recent(session, scoped, scoped.assigned_at),
                recently_updated=self._recent(session, scoped, Lead.updated_at),
                intake_from=intake_from,
                intake_to=intake_to,
                intake=self._intake(session, scoped, intake_from, intake_to),
            )
        self._observe(ctx, started, total=result.pipeline_total)
        return result

    def my_assignments(self, session: Session, ctx: AuthContext) -> list[AssignmentActivityRead]:
        limit = get_settings().dashboard_assignments_limit
        rows = session.execute(
            select(LeadAssignment, Lead)
            .join(Lead, Lead.id == LeadAssignment.lead_id)
            .where(LeadAssignment.assignee_id == ctx.user_id)
            .order_by(LeadAssignment.id.desc())
            .limit(limit)
        ).unique().all()
        current = self.ledger.latest_assignment_map(session, [lead.id for _, lead in rows])
        result: list[AssignmentActivityRead] = []
        for assignment, lead in rows:
            name = " ".join(part for part in (lead.first_name, lead.last_name) if part)
            latest = current.get(lead.id)
            result.append(
                AssignmentActivityRead(
                    assignment_id=assignment.id,
                    lead_id=lead.id,
                    lead_name=name or lead.email or f"Lead {lead.id}",
                    company=lead.company,
                    status_label=lead.status.label,
                    assigned_at=assignment.assigned_at,
                    assigned_by=UserBrief.model_validate(assignment.assigner) if assignment.assigner is not None else None,
                    is_current=latest is not None and latest.id == assignment.id,
                )
            )
        return result

    def _breakdown(
        self,
        session: Session,
        scoped: ScopedLeadQuery,
        model: type[LeadStatus] | type[LeadSource],
        column: Any,
    ) -> list[BreakdownRow]:
        return self.repository.zero_filled(session, model, scoped.grouped_counts(session, column))

    def _recent(self, session: Session, scoped: ScopedLeadQuery, order_column: Any) -> list[LeadRead]:
        limit = get_settings().dashboard_recent_limit
        stmt = scoped.select().order_by(order_column.desc(), Lead.id.desc()).limit(limit)
        leads = list(session.scalars(stmt).unique().all())
        return self.leads.to_read_models(session, leads)

    def _intake(self, session: Session, scoped: ScopedLeadQuery, start: date, end: date) -> list[IntakeDay]:
        day = func.date(Lead.created_at)
        lower = datetime.combine(start, dt_time.min, tzinfo=timezone.utc)
        upper = datetime.combine(end + timedelta(days=1), dt_time.min, tzinfo=timezone.utc)
        counts: dict[date, int] = {}
        for raw, total in scoped.grouped_counts(session, day, Lead.created_at >= lower, Lead.created_at < upper).items():
            key = _day_key(raw)
            counts[key] = counts.get(key, 0) + total
        span = (end - start).days + 1
        return [
            IntakeDay(day=start + timedelta(days=offset), count=counts.get(start + timedelta(days=offset), 0))
            for offset in range(span)
        ]

    @staticmethod
    def _average_age_days(session: Session, scoped: ScopedLeadQuery) -> float:
        created = session.scalars(scoped.select(Lead.created_at)).all()
        if not created:
            return 0.0
        now = utcnow()
        total = sum((now - as_utc(value)).total_seconds() for value in created)
        return round(total / len(created) / 86400, 1)

    @staticmethod
    def _new_lead_criterion() -> Any:
        return Lead.created_at >= utcnow() - timedelta(days=get_settings().dashboard_new_lead_days)

    @staticmethod
    def _observe(ctx: AuthContext, started: float, *, total: int) -> None:
        duration = time.perf_counter() - started
        observe_dashboard_build(ctx.role, duration)
        logger.info(
            "dashboard_built",
            extra={"actor_role": ctx.role, "duration_ms": round(duration * 1000, 2), "lead_count": total},
        )


dashboard_service = DashboardService()
