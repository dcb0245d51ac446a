"""Reimbursement request, audit notes and audit log entries.

Key Principles:
- A request is created once by its submitter with at least one receipt
- Only reviewers change status, notes and logs afterwards
- audit_notes and audit_logs are append-only; entries are frozen models
- Every status change and every new receipt audit adds exactly one log entry
- Requests are never deleted; the lifecycle ends at PAID or REJECTED
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

NOTE_MAX_LENGTH = 500
NOTE_PREVIEW_LENGTH = 50


class ReimbursementStatus(str, Enum):
    """Reimbursement lifecycle states.

    SUBMITTED:
        - Initial state set by the submission flow
    UNDER_REVIEW:
        - A reviewer has picked the request up
        - Approval is gated on the reviewer auditing every receipt
    APPROVED / IN_PROGRESS:
        - Payment is being arranged
    PAID / REJECTED:
        - Terminal states (no further transitions)
    """

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    PAID = "paid"


TERMINAL_STATUSES = frozenset({ReimbursementStatus.PAID, ReimbursementStatus.REJECTED})


class Department(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    PROJECTS = "projects"
    EVENTS = "events"
    OTHER = "other"


class PaymentMethod(str, Enum):
    PERSONAL_CREDIT_CARD = "Personal Credit Card"
    PERSONAL_DEBIT_CARD = "Personal Debit Card"
    CASH = "Cash"
    PERSONAL_CHECK = "Personal Check"
    OTHER = "Other"


class AuditAction(str, Enum):
    """Kinds of system-generated audit log entries."""

    STATUS_CHANGE = "status_change"
    RECEIPT_AUDIT = "receipt_audit"
    NOTE_ADDED = "note_added"


class AuditNote(BaseModel):
    """User-visible note written by a reviewer.

    Private notes are meant for reviewers only; public notes are also shown to
    the submitter. Filtering happens at read time, never on write.
    """

    model_config = ConfigDict(frozen=True)

    note: str = Field(..., min_length=1, max_length=NOTE_MAX_LENGTH)
    auditor_id: str
    timestamp: datetime
    is_private: bool = True


class StatusChangeLog(BaseModel):
    """Log entry for a status transition; persisted with "from"/"to" keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action: Literal["status_change"] = "status_change"
    from_status: ReimbursementStatus = Field(..., alias="from")
    to_status: ReimbursementStatus = Field(..., alias="to")
    auditor_id: str
    timestamp: datetime


class ReceiptAuditLog(BaseModel):
    """Log entry for a reviewer auditing one receipt for the first time."""

    model_config = ConfigDict(frozen=True)

    action: Literal["receipt_audit"] = "receipt_audit"
    receipt_id: str
    receipt_name: str = ""
    receipt_date: Optional[str] = None
    receipt_amount: Decimal
    auditor_id: str
    timestamp: datetime


class NoteAddedLog(BaseModel):
    """Log entry mirroring an appended audit note (preview only)."""

    model_config = ConfigDict(frozen=True)

    action: Literal["note_added"] = "note_added"
    note_preview: str = Field(..., max_length=NOTE_PREVIEW_LENGTH)
    is_private: bool
    auditor_id: str
    timestamp: datetime


AuditLogEntry = Annotated[
    Union[StatusChangeLog, ReceiptAuditLog, NoteAddedLog],
    Field(discriminator="action"),
]


class ReimbursementRequest(BaseModel):
    """A member's reimbursement request as seen by the workflow.

    Attributes:
        id: Store-assigned identifier
        title: Short description entered by the submitter
        total_amount: Sum of the linked receipts' totals, computed at submission
        date_of_purchase: Purchase date entered by the submitter
        payment_method: How the submitter paid
        status: Current lifecycle state
        submitted_by: User id of the submitter
        department: Budget the expense belongs to
        additional_info: Free-form text from the submitter
        receipt_ids: Linked receipt ids, ordered and unique (stored as "receipts")
        audit_notes: Append-only reviewer notes
        audit_logs: Append-only system log
        version: Store-managed version used for optimistic concurrency
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    id: str = ""
    title: str
    total_amount: Decimal = Decimal("0")
    date_of_purchase: date
    payment_method: PaymentMethod
    status: ReimbursementStatus = ReimbursementStatus.SUBMITTED
    submitted_by: str
    department: Department = Department.OTHER
    additional_info: str = ""
    receipt_ids: List[str] = Field(default_factory=list, alias="receipts")
    audit_notes: List[AuditNote] = Field(default_factory=list)
    audit_logs: List[AuditLogEntry] = Field(default_factory=list)
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    version: int = 0

    def is_terminal(self) -> bool:
        """Check if the request reached PAID or REJECTED."""
        return self.status in TERMINAL_STATUSES

    def logs_of(self, action: AuditAction) -> List[AuditLogEntry]:
        return [entry for entry in self.audit_logs if entry.action == action.value]


# ============================================================================
# Status Transition Contract
# ============================================================================
#
#   submitted     → under_review   any reviewer
#   under_review  → approved       reviewer has audited every linked receipt
#   approved      → in_progress    any reviewer
#   in_progress   → paid           any reviewer
#   submitted, under_review,
#   approved, in_progress → rejected   non-empty reason, recorded as public note
#
#   Everything else is rejected with InvalidTransition, including any edge
#   leaving paid or rejected and self-transitions.
#
#   The table itself lives in reimburse.services.transitions and is the only
#   copy; the API exposes allowed targets from it.
#
# ============================================================================
