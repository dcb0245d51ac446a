"""Workflow exception taxonomy.

Every error raised by the review workflow derives from WorkflowError so the
API layer can map the whole family in one place. Errors are local to the
operation that raised them; nothing is rolled back automatically.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence


class WorkflowError(Exception):
    """Base class for reimbursement workflow failures."""


class Unauthenticated(WorkflowError):
    """Raised when no acting user can be resolved for a mutating operation."""

    def __init__(self, message: str = "No authenticated user for this operation"):
        super().__init__(message)


class InvalidTransition(WorkflowError):
    """Raised when (current, target) is not an edge of the transition table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move reimbursement from {current} to {target}")


class GatingFailure(WorkflowError):
    """Raised when an edge is legal but its precondition does not hold.

    pending_receipt_ids lists the receipts the actor still has to audit.
    """

    def __init__(self, actor_id: str, pending_receipt_ids: Iterable[str]):
        self.actor_id = actor_id
        self.pending_receipt_ids: List[str] = list(pending_receipt_ids)
        super().__init__(
            f"Reviewer {actor_id} must audit remaining receipts before approval: "
            f"{', '.join(self.pending_receipt_ids)}"
        )


class ValidationError(WorkflowError):
    """Raised for bad input: note length, empty reason, amounts, submission fields."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ConcurrencyConflict(WorkflowError):
    """Raised when a versioned write loses against a concurrent writer."""

    def __init__(self, collection: str, record_id: str, expected_version: Optional[int] = None,
                 actual_version: Optional[int] = None):
        self.collection = collection
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {collection}/{record_id}: "
            f"expected {expected_version}, found {actual_version}"
        )


class PartialFailure(WorkflowError):
    """Raised when a composite operation completed some of its writes but not all.

    Attributes:
        operation: Name of the composite operation (e.g. "reject")
        record_id: Record the writes targeted
        completed: Steps that were written successfully
        pending: Steps that still need to be applied
        context: Whatever the operation needs to resume the pending steps
        cause: The exception that stopped the operation
    """

    def __init__(self, operation: str, record_id: str, completed: Sequence[str],
                 pending: Sequence[str], cause: BaseException, context: Optional[dict] = None):
        self.operation = operation
        self.record_id = record_id
        self.completed = list(completed)
        self.pending = list(pending)
        self.cause = cause
        self.context = dict(context or {})
        super().__init__(
            f"{operation} on {record_id} partially applied: completed={self.completed}, "
            f"pending={self.pending} ({cause})"
        )


class RecordNotFound(WorkflowError):
    """Raised when a store lookup finds no record."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


class CorruptRecord(WorkflowError):
    """Raised when a stored JSON array field cannot be decoded."""

    def __init__(self, collection: str, record_id: str, field: str):
        self.collection = collection
        self.record_id = record_id
        self.field = field
        super().__init__(f"Field {field} of {collection}/{record_id} is not a valid JSON array")
