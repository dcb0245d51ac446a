"""Wiring for the workflow components.

WorkflowEngine is not an orchestrator; it only builds every component over
one repository and one identity provider so callers do not repeat the wiring.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from reimburse.auth.identity import CurrentUserProvider
from reimburse.repositories.record_store import RecordStore
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.services.audit_trail import AuditTrailRecorder
from reimburse.services.listing import ReimbursementListing
from reimburse.services.receipt_audit import ReceiptAuditTracker
from reimburse.services.rejection import RejectionWorkflow
from reimburse.services.submission_service import SubmissionService
from reimburse.services.transitions import TransitionValidator


@dataclass
class WorkflowEngine:
    repository: ReimbursementRepository
    user_provider: CurrentUserProvider
    audit_trail: AuditTrailRecorder = field(init=False)
    receipt_audits: ReceiptAuditTracker = field(init=False)
    transitions: TransitionValidator = field(init=False)
    rejections: RejectionWorkflow = field(init=False)
    submissions: SubmissionService = field(init=False)
    listing: ReimbursementListing = field(init=False)

    def __post_init__(self) -> None:
        self.audit_trail = AuditTrailRecorder(self.repository, self.user_provider)
        self.receipt_audits = ReceiptAuditTracker(self.repository, self.user_provider)
        self.transitions = TransitionValidator(self.repository, self.user_provider, self.audit_trail)
        self.rejections = RejectionWorkflow(
            self.repository, self.user_provider, self.transitions, self.audit_trail
        )
        self.submissions = SubmissionService(self.repository, self.user_provider)
        self.listing = ReimbursementListing(self.repository, self.user_provider)

    @classmethod
    def for_store(cls, store: RecordStore, user_provider: CurrentUserProvider, **repository_options) -> "WorkflowEngine":
        return cls(ReimbursementRepository(store, **repository_options), user_provider)
