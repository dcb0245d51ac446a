"""Models package for the reimbursement review workflow.

Receipt: itemized receipt with its audited_by set
ReimbursementRequest: request, status and append-only audit trail
User: identity and reviewer role
"""

from reimburse.models.receipt import ExpenseCategory, ExpenseItem, Receipt
from reimburse.models.reimbursement import (
    AuditAction,
    AuditLogEntry,
    AuditNote,
    Department,
    NoteAddedLog,
    PaymentMethod,
    ReceiptAuditLog,
    ReimbursementRequest,
    ReimbursementStatus,
    StatusChangeLog,
)
from reimburse.models.user import User, UserRole

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "AuditNote",
    "Department",
    "ExpenseCategory",
    "ExpenseItem",
    "NoteAddedLog",
    "PaymentMethod",
    "Receipt",
    "ReceiptAuditLog",
    "ReimbursementRequest",
    "ReimbursementStatus",
    "StatusChangeLog",
    "User",
    "UserRole",
]
