"""Submission flow: receipts and new reimbursement requests.

Key Responsibilities:
- Validate itemized expenses and tax before a receipt is stored
- Require at least one receipt, owned by the submitter, per request
- Compute total_amount from the linked receipts at submission time
- Start every request at status=submitted with empty audit trails
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.receipt import ExpenseItem, Receipt
from reimburse.models.reimbursement import (
    Department,
    PaymentMethod,
    ReimbursementRequest,
    ReimbursementStatus,
)
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.utils.helpers.exceptions import RecordNotFound, ValidationError
from reimburse.utils.logging_utils import log_trail_event

logger = logging.getLogger(__name__)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


class SubmissionService:
    """Creates receipts and submits reimbursement requests for the acting member."""

    def __init__(self, repository: ReimbursementRepository, user_provider: CurrentUserProvider):
        self.repository = repository
        self.user_provider = user_provider

    async def create_receipt(
        self,
        itemized_expenses: Sequence[Dict[str, Any]],
        receipt_date: date,
        tax: Decimal = Decimal("0"),
        location_name: str = "",
        location_address: str = "",
        notes: str = "",
        file_ref: Optional[str] = None,
    ) -> Receipt:
        """Store a receipt created by the acting user.

        Raises:
            Unauthenticated: no acting user
            ValidationError: no items, non-positive amount, unknown category, negative tax
        """
        created_by = require_actor(self.user_provider)
        if not itemized_expenses:
            raise ValidationError("A receipt needs at least one itemized expense", field="itemized_expenses")

        try:
            items = [ExpenseItem.model_validate(item) for item in itemized_expenses]
            receipt = Receipt(
                created_by=created_by,
                itemized_expenses=items,
                tax=tax,
                date=receipt_date,
                location_name=location_name,
                location_address=location_address,
                notes=notes,
                file_ref=file_ref,
                audited_by=[],
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid receipt: {_first_error(exc)}") from exc

        saved = await self.repository.create_receipt(receipt)
        log_trail_event({
            "action": "receipt_created",
            "receipt_id": saved.id,
            "created_by": created_by,
            "receipt_amount": float(saved.total_amount),
        })
        return saved

    async def submit_request(
        self,
        title: str,
        date_of_purchase: date,
        payment_method: str,
        receipt_ids: List[str],
        department: str = Department.OTHER.value,
        additional_info: str = "",
    ) -> ReimbursementRequest:
        """Create a reimbursement request in status=submitted.

        total_amount is the sum of the receipts' itemized amounts plus tax.

        Raises:
            Unauthenticated: no acting user
            ValidationError: missing title, bad payment method/department, no or
                duplicate receipts, receipt missing or owned by someone else
        """
        submitted_by = require_actor(self.user_provider)

        if not (title or "").strip():
            raise ValidationError("Title is required", field="title")
        if not receipt_ids:
            raise ValidationError("At least one receipt is required", field="receipts")
        if len(set(receipt_ids)) != len(receipt_ids):
            raise ValidationError("Receipts must not be listed twice", field="receipts")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method}", field="payment_method") from None
        try:
            dept = Department(department)
        except ValueError:
            raise ValidationError(f"Unknown department: {department}", field="department") from None

        try:
            receipts = await self.repository.get_receipts(receipt_ids)
        except RecordNotFound as exc:
            raise ValidationError(f"Receipt not found: {exc.record_id}", field="receipts") from exc

        foreign = [receipt.id for receipt in receipts if receipt.created_by != submitted_by]
        if foreign:
            raise ValidationError(
                f"Receipts belong to another user: {', '.join(foreign)}", field="receipts"
            )

        total = sum((receipt.total_amount for receipt in receipts), Decimal("0"))
        request = ReimbursementRequest(
            title=title.strip(),
            total_amount=total,
            date_of_purchase=date_of_purchase,
            payment_method=method,
            status=ReimbursementStatus.SUBMITTED,
            submitted_by=submitted_by,
            department=dept,
            additional_info=additional_info,
            receipt_ids=list(receipt_ids),
        )
        saved = await self.repository.create_request(request)

        logger.info(
            "Reimbursement submitted",
            extra={"request_id": saved.id, "submitted_by": submitted_by, "receipt_count": len(receipt_ids)},
        )
        log_trail_event({
            "action": "submitted",
            "request_id": saved.id,
            "submitted_by": submitted_by,
            "total_amount": float(total),
        })
        return saved
