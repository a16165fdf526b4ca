from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.crm.models import Lead, LeadNote, LeadSource, LeadStatus, SavedFilter
from app.platform.ledger.models import LeadAssignment
from app.platform.security.repository import BaseRepository


class LeadRepository(BaseRepository):
    resource = "crm.lead"

    def delete_many(self, session: Session, lead_ids: Sequence[int]) -> int:
        """Delete leads with their ledger rows and notes. The caller owns the transaction."""

        deleted = 0
        for chunk in _chunks(sorted(set(lead_ids))):
            session.execute(delete(LeadAssignment).where(LeadAssignment.lead_id.in_(chunk)))
            session.execute(delete(LeadNote).where(LeadNote.lead_id.in_(chunk)))
            result = session.execute(delete(Lead).where(Lead.id.in_(chunk)))
            deleted += int(result.rowcount or 0)
        return deleted


class LeadNoteRepository(BaseRepository):
    resource = "crm.lead_note"


class SavedFilterRepository(BaseRepository):
    resource = "crm.saved_filter"


class ReferenceRepository(BaseRepository):
    def __init__(self, model: type[LeadStatus] | type[LeadSource], column: str) -> None:
        self.model = model
        self.column = column
        self.resource = f"crm.{model.__tablename__.removeprefix('crm_')}"

    def usage_count(self, session: Session, reference_id: int) -> int:
        column = getattr(Lead, self.column)
        return int(session.scalar(select(func.count(Lead.id)).where(column == reference_id)) or 0)


def _chunks(values: Sequence[int]) -> list[Sequence[int]]:
    size = max(1, get_settings().bulk_chunk_size)
    return [values[start : start + size] for start in range(0, len(values), size)]
