"""Receipt model and itemized expenses.

A receipt is created by a member on its own, then linked by id from one
reimbursement request. After creation only the receipt audit tracker mutates
it, and only by growing the audited_by set.
"""

from __future__ import annotations

from datetime import date as calendar_date
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExpenseCategory(str, Enum):
    """Categories offered on the receipt form."""

    TRAVEL = "Travel"
    MEALS = "Meals"
    SUPPLIES = "Supplies"
    EQUIPMENT = "Equipment"
    SOFTWARE = "Software"
    EVENT_EXPENSES = "Event Expenses"
    OTHER = "Other"


class ExpenseItem(BaseModel):
    """One itemized line on a receipt."""

    description: str = Field(..., min_length=1)
    category: ExpenseCategory
    amount: Decimal = Field(..., gt=0, description="Line amount, strictly positive")


class Receipt(BaseModel):
    """A single receipt attached to a reimbursement request.

    Attributes:
        id: Store-assigned identifier
        created_by: User id of the member who uploaded the receipt
        itemized_expenses: Expense lines (at least one for new receipts)
        tax: Tax paid on the receipt, never negative
        date: Purchase date printed on the receipt
        location_name: Merchant name, used as the receipt's display name in logs
        location_address: Merchant address
        notes: Free-form notes from the submitter
        file_ref: Reference to the uploaded image/PDF (storage is external)
        audited_by: Reviewer ids that audited this receipt. Set semantics:
            duplicates are dropped, entries are never removed.
        version: Store-managed version used for optimistic concurrency
    """

    model_config = ConfigDict(use_enum_values=False)

    id: str = ""
    created_by: str
    itemized_expenses: List[ExpenseItem] = Field(default_factory=list)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    date: calendar_date
    location_name: str = ""
    location_address: str = ""
    notes: str = ""
    file_ref: Optional[str] = None
    audited_by: List[str] = Field(default_factory=list)
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    version: int = 0

    @field_validator("audited_by")
    @classmethod
    def dedupe_auditors(cls, value: List[str]) -> List[str]:
        seen = []
        for reviewer_id in value:
            if reviewer_id not in seen:
                seen.append(reviewer_id)
        return seen

    @property
    def total_amount(self) -> Decimal:
        """Sum of itemized amounts plus tax."""
        return sum((item.amount for item in self.itemized_expenses), Decimal("0")) + self.tax

    def is_audited_by(self, reviewer_id: str) -> bool:
        return reviewer_id in self.audited_by
