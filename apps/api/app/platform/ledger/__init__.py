from app.platform.ledger.models import LeadAssignment
from app.platform.ledger.service import (
    AssignmentLedger,
    assignment_ledger,
    current_assignment_subquery,
    latest_assignment_ids,
)

__all__ = [
    "LeadAssignment",
    "AssignmentLedger",
    "assignment_ledger",
    "current_assignment_subquery",
    "latest_assignment_ids",
]
