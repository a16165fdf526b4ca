from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utcnow
from app.identity.models import User


class LeadAssignment(Base):
    """One ownership transition. Rows are only ever inserted; the row with the
    highest id per lead names the current owner."""

    __tablename__ = "crm_lead_assignment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False)
    assignee_id: Mapped[int] = mapped_column(Integer, ForeignKey("identity_user.id", ondelete="RESTRICT"), nullable=False)
    assigned_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("identity_user.id", ondelete="SET NULL"), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    assignee: Mapped[User] = relationship("User", foreign_keys=[assignee_id], lazy="joined")
    assigner: Mapped[User | None] = relationship("User", foreign_keys=[assigned_by], lazy="joined")

    __table_args__ = (
        Index("ix_crm_lead_assignment_lead_id", "lead_id", "id"),
        Index("ix_crm_lead_assignment_assignee", "assignee_id", "assigned_at"),
    )
