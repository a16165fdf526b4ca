from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.crm.models import LeadSource, LeadStatus
from app.identity.service import seed_roles


DEFAULT_STATUSES: tuple[tuple[str, str], ...] = (
    ("new", "New"),
    ("contacted", "Contacted"),
    ("qualified", "Qualified"),
    ("proposal", "Proposal"),
    ("won", "Won"),
    ("lost", "Lost"),
)

DEFAULT_SOURCES: tuple[tuple[str, str], ...] = (
    ("website", "Website"),
    ("referral", "Referral"),
    ("cold_call", "Cold Call"),
    ("event", "Event"),
)


def _ensure(session: Session, model: type[LeadStatus] | type[LeadSource], rows: tuple[tuple[str, str], ...]) -> None:
    existing = set(session.scalars(select(model.value)).all())
    for value, label in rows:
        if value not in existing:
            session.add(model(value=value, label=label))


def seed_reference_data(session: Session) -> None:
    """Insert roles and the default statuses/sources that are not present yet."""

    seed_roles(session)
    _ensure(session, LeadStatus, DEFAULT_STATUSES)
    _ensure(session, LeadSource, DEFAULT_SOURCES)
    session.commit()
