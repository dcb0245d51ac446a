"""Receipt audit tracking and the approval gate.

A reviewer audits a receipt by adding themselves to its audited_by set. The
first audit by a given reviewer also appends one receipt_audit entry to the
owning request's log (receipts carry no log of their own).

The approval gate is per reviewer: the acting reviewer must personally have
audited every receipt linked to the request. A request without receipts
passes vacuously.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.receipt import Receipt
from reimburse.models.reimbursement import AuditAction, ReceiptAuditLog, ReimbursementRequest
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.utils.helpers.date_utils import format_receipt_date, utc_now
from reimburse.utils.helpers.exceptions import PartialFailure, ValidationError
from reimburse.utils.logging_utils import log_trail_event

logger = logging.getLogger(__name__)


def unaudited_receipts(reviewer_id: str, receipts: Iterable[Receipt]) -> List[str]:
    """Ids of receipts the reviewer has not audited yet, in request order."""
    return [receipt.id for receipt in receipts if not receipt.is_audited_by(reviewer_id)]


def can_approve(reviewer_id: str, receipts: Iterable[Receipt]) -> bool:
    """True iff every receipt lists reviewer_id in audited_by (vacuous for none)."""
    return not unaudited_receipts(reviewer_id, receipts)


def has_audit_log(request: ReimbursementRequest, receipt_id: str, reviewer_id: str) -> bool:
    return any(
        entry.receipt_id == receipt_id and entry.auditor_id == reviewer_id
        for entry in request.logs_of(AuditAction.RECEIPT_AUDIT)
    )


class ReceiptAuditTracker:
    """Records which reviewers audited which receipts."""

    def __init__(self, repository: ReimbursementRepository, user_provider: CurrentUserProvider):
        self.repository = repository
        self.user_provider = user_provider

    async def audit_receipt(self, request_id: str, receipt_id: str) -> Receipt:
        """Mark a receipt as audited by the acting reviewer.

        Idempotent: auditing again neither changes audited_by nor adds a log
        entry. If an earlier call added the reviewer but never wrote its log
        entry, this call writes only the missing entry.

        Raises:
            Unauthenticated: no acting user
            RecordNotFound: request or receipt missing
            ValidationError: receipt is not linked to the request
            PartialFailure: receipt updated but the request log write failed
        """
        reviewer_id = require_actor(self.user_provider)

        request = await self.repository.get_request(request_id)
        if receipt_id not in request.receipt_ids:
            raise ValidationError(
                f"Receipt {receipt_id} is not attached to reimbursement {request_id}",
                field="receipt_id",
            )

        async def add_reviewer(receipt: Receipt) -> Optional[Dict]:
            if receipt.is_audited_by(reviewer_id):
                return None
            return {"audited_by": receipt.audited_by + [reviewer_id]}

        receipt = await self.repository.update_receipt(receipt_id, add_reviewer)

        try:
            logged = await self._append_audit_log(request_id, receipt, reviewer_id)
        except Exception as exc:
            logger.error(
                "Receipt audited but request log write failed",
                extra={"request_id": request_id, "receipt_id": receipt_id, "auditor_id": reviewer_id},
            )
            raise PartialFailure(
                "audit_receipt",
                request_id,
                completed=["receipt"],
                pending=["log"],
                cause=exc,
                context={"receipt_id": receipt_id, "auditor_id": reviewer_id},
            ) from exc

        if logged:
            log_trail_event({
                "action": AuditAction.RECEIPT_AUDIT.value,
                "request_id": request_id,
                "receipt_id": receipt_id,
                "auditor_id": reviewer_id,
                "receipt_amount": float(receipt.total_amount),
            })
        else:
            logger.debug(
                "Receipt already audited by reviewer",
                extra={"request_id": request_id, "receipt_id": receipt_id, "auditor_id": reviewer_id},
            )
        return receipt

    async def _append_audit_log(self, request_id: str, receipt: Receipt, reviewer_id: str) -> bool:
        """Append the receipt_audit entry unless this reviewer already has one."""
        appended = False

        async def append(request: ReimbursementRequest) -> Optional[Dict]:
            nonlocal appended
            if has_audit_log(request, receipt.id, reviewer_id):
                appended = False
                return None
            entry = ReceiptAuditLog(
                receipt_id=receipt.id,
                receipt_name=receipt.location_name,
                receipt_date=format_receipt_date(receipt.date),
                receipt_amount=receipt.total_amount,
                auditor_id=reviewer_id,
                timestamp=utc_now(),
            )
            appended = True
            return {"audit_logs": request.audit_logs + [entry]}

        await self.repository.update_request(request_id, append)
        return appended

    async def can_approve(self, reviewer_id: str, request: ReimbursementRequest) -> bool:
        """Per-reviewer gate: reviewer_id has audited every linked receipt."""
        receipts = await self.repository.get_receipts(request.receipt_ids)
        return can_approve(reviewer_id, receipts)

    async def audit_progress(self, reviewer_id: str, request: ReimbursementRequest) -> Dict[str, bool]:
        """Per-receipt audited flag for one reviewer, in request order."""
        receipts = await self.repository.get_receipts(request.receipt_ids)
        return {receipt.id: receipt.is_audited_by(reviewer_id) for receipt in receipts}
