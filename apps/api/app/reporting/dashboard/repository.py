from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.crm.models import LeadSource, LeadStatus
from app.platform.security.repository import BaseRepository
from app.reporting.dashboard.schemas import BreakdownRow


class DashboardRepository(BaseRepository):
    resource = "reporting.dashboard"

    def zero_filled(
        self,
        session: Session,
        model: type[LeadStatus] | type[LeadSource],
        counts: dict[int | None, int],
    ) -> list[BreakdownRow]:
        rows = session.scalars(select(model).order_by(model.id.asc())).all()
        return [BreakdownRow(id=row.id, value=row.value, label=row.label, count=counts.get(row.id, 0)) for row in rows]

    def status_ids_matching(self, session: Session, needle: str) -> list[int]:
        key = needle.strip().lower()
        stmt = select(LeadStatus.id).where(or_(func.lower(LeadStatus.value) == key, func.lower(LeadStatus.label) == key))
        return list(session.scalars(stmt).all())
