"""In-process audit trail.

Every CRM mutation and every scope denial lands here as a plain dict so tests and
log shippers can read it without a database round trip.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id

audit_entries: list[dict[str, Any]] = []


def _entity_key(entity_id: str | int | None) -> str | None:
    return None if entity_id is None else str(entity_id)


def record(
    actor_user_id: int | None,
    entity_type: str,
    entity_id: str | int | None,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    entry = dict(
        id=uuid.uuid4().hex,
        occurred_at=datetime.now(timezone.utc).isoformat(),
        correlation_id=correlation_id or get_correlation_id(),
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=_entity_key(entity_id),
        action=action,
        before=before,
        after=after,
    )
    audit_entries.append(entry)
    return entry


def entries_for(entity_type: str, entity_id: str | int | None = None) -> list[dict[str, Any]]:
    key = _entity_key(entity_id)
    matches = (entry for entry in audit_entries if entry["entity_type"] == entity_type)
    return [entry for entry in matches if key is None or entry["entity_id"] == key]
