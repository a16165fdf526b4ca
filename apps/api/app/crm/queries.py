from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import ColumnElement, Select, distinct, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Subquery

from app.crm.models import Lead
from app.crm.schemas import LeadListQuery
from app.platform.ledger.service import current_assignment_subquery
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import VisibilityScope


_PHONE_QUERY_RE = re.compile(r"^[\d\s().+-]+$")
_PHONE_SEPARATORS = (" ", "-", "(", ")", "+", ".")
SHORT_PHONE_QUERY_DIGITS = 4


def digits_only(column: ColumnElement[Any]) -> ColumnElement[Any]:
    expr: ColumnElement[Any] = func.coalesce(column, "")
    for separator in _PHONE_SEPARATORS:
        expr = func.replace(expr, separator, "")
    return expr


def search_predicate(raw: str | None) -> ColumnElement[bool] | None:
    term = (raw or "").strip()
    if not term:
        return None

    if _PHONE_QUERY_RE.match(term):
        digits = re.sub(r"\D", "", term)
        if digits:
            phone_digits = digits_only(Lead.phone)
            # Short numeric queries are treated as the tail of a phone number.
            if len(digits) <= SHORT_PHONE_QUERY_DIGITS:
                return phone_digits.like(f"%{digits}")
            return or_(phone_digits.like(f"%{digits}%"), Lead.phone.ilike(f"%{term}%"))

    like = f"%{term}%"
    full_name = func.coalesce(Lead.first_name, "").concat(" ").concat(func.coalesce(Lead.last_name, ""))
    return or_(
        Lead.first_name.ilike(like),
        Lead.last_name.ilike(like),
        full_name.ilike(like),
        Lead.company.ilike(like),
        Lead.email.ilike(like),
        Lead.phone.ilike(like),
    )


class LeadScopeRepository(BaseRepository):
    resource = "crm.lead"


@dataclass(slots=True)
class ScopedLeadQuery:
    """Lead selects joined to the current ledger row and narrowed to an actor's scope.

    Counts always use ``count(DISTINCT lead.id)`` so a lead is counted once regardless
    of how the statement is joined.
    """

    scope: VisibilityScope
    current: Subquery = field(default_factory=current_assignment_subquery)
    repository: LeadScopeRepository = field(default_factory=LeadScopeRepository)

    @property
    def assignee_id(self) -> ColumnElement[Any]:
        return self.current.c.assignee_id

    @property
    def assigned_at(self) -> ColumnElement[Any]:
        return self.current.c.assigned_at

    def select(self, *columns: Any) -> Select[Any]:
        targets = columns or (Lead,)
        stmt = select(*targets).select_from(Lead).outerjoin(self.current, self.current.c.lead_id == Lead.id)
        return self.repository.apply_scope_query(stmt, self.scope, self.assignee_id)

    def count(self, session: Session, *criteria: ColumnElement[bool]) -> int:
        stmt = self.select(func.count(distinct(Lead.id)))
        if criteria:
            stmt = stmt.where(*criteria)
        return int(session.scalar(stmt) or 0)

    def grouped_counts(self, session: Session, column: ColumnElement[Any], *criteria: ColumnElement[bool]) -> dict[Any, int]:
        stmt = self.select(column, func.count(distinct(Lead.id))).group_by(column)
        if criteria:
            stmt = stmt.where(*criteria)
        return {key: int(total) for key, total in session.execute(stmt).all()}

    def visible_ids(self, session: Session, lead_ids: list[int]) -> set[int]:
        if not lead_ids:
            return set()
        rows = session.scalars(self.select(Lead.id).where(Lead.id.in_(sorted(set(lead_ids))))).all()
        return set(rows)

    def criteria(self, query: LeadListQuery) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if query.status_id is not None:
            clauses.append(Lead.status_id == query.status_id)
        if query.source_id is not None:
            clauses.append(Lead.source_id == query.source_id)
        if query.assignee_id is not None:
            clauses.append(self.assignee_id == query.assignee_id)
        if query.unassigned:
            clauses.append(self.current.c.assignment_id.is_(None))
        if query.mine:
            clauses.append(self.assignee_id == self.scope.actor_id)
        if query.assigned_from is not None:
            clauses.append(self.assigned_at >= query.assigned_from)
        if query.assigned_to is not None:
            clauses.append(self.assigned_at <= query.assigned_to)
        if query.created_from is not None:
            clauses.append(Lead.created_at >= query.created_from)
        if query.created_to is not None:
            clauses.append(Lead.created_at <= query.created_to)
        predicate = search_predicate(query.q)
        if predicate is not None:
            clauses.append(predicate)
        return clauses

    def sort_column(self, sort_by: str) -> ColumnElement[Any]:
        columns: dict[str, ColumnElement[Any]] = {
            "created_at": Lead.created_at,
            "updated_at": Lead.updated_at,
            "value": Lead.value_decimal,
            "first_name": Lead.first_name,
            "company": Lead.company,
            "assigned_at": self.assigned_at,
        }
        return columns.get(sort_by, Lead.created_at)

    def ordered(self, stmt: Select[Any], sort_by: str, sort_dir: str) -> Select[Any]:
        column = self.sort_column(sort_by)
        if sort_dir == "asc":
            return stmt.order_by(column.asc(), Lead.id.asc())
        return stmt.order_by(column.desc(), Lead.id.desc())
