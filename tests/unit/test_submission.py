"""Tests for receipt creation and request submission."""

from datetime import date
from decimal import Decimal

import pytest

from reimburse.models.reimbursement import Department, PaymentMethod, ReimbursementStatus
from reimburse.auth.identity import StaticUserProvider
from reimburse.services.workflow import WorkflowEngine
from reimburse.utils.helpers.exceptions import Unauthenticated, ValidationError


@pytest.mark.asyncio
async def test_seeded_request_shape(seeded_request):
    assert seeded_request.id
    assert seeded_request.version == 1
    assert seeded_request.status == ReimbursementStatus.SUBMITTED
    assert seeded_request.submitted_by == "member-1"
    assert seeded_request.payment_method == PaymentMethod.PERSONAL_CREDIT_CARD
    assert seeded_request.department == Department.EVENTS
    assert seeded_request.total_amount == Decimal("33.5")
    assert len(seeded_request.receipt_ids) == 2
    assert seeded_request.audit_notes == []
    assert seeded_request.audit_logs == []


@pytest.mark.asyncio
async def test_receipt_total_includes_tax(member_engine, make_receipt):
    receipt = await make_receipt(member_engine, "10.00", tax="0.80")

    assert receipt.created_by == "member-1"
    assert receipt.audited_by == []
    assert receipt.total_amount == Decimal("10.8")


@pytest.mark.asyncio
@pytest.mark.parametrize("items", [
    [],
    [{"description": "Taxi", "category": "Travel", "amount": "0"}],
    [{"description": "Taxi", "category": "Travel", "amount": "-4"}],
    [{"description": "Taxi", "category": "Teleportation", "amount": "4"}],
    [{"description": "", "category": "Travel", "amount": "4"}],
])
async def test_invalid_receipt_items(member_engine, items):
    with pytest.raises(ValidationError):
        await member_engine.submissions.create_receipt(itemized_expenses=items, receipt_date=date(2026, 2, 1))


@pytest.mark.asyncio
async def test_negative_tax_rejected(member_engine, make_receipt):
    with pytest.raises(ValidationError):
        await make_receipt(member_engine, "5.00", tax="-1")


@pytest.mark.asyncio
async def test_anonymous_receipt(anonymous_engine, make_receipt):
    with pytest.raises(Unauthenticated):
        await make_receipt(anonymous_engine, "5.00")


def _submit(engine, receipt_ids, **overrides):
    fields = {
        "title": "Client dinner",
        "date_of_purchase": date(2026, 2, 10),
        "payment_method": "Cash",
        "receipt_ids": receipt_ids,
    }
    fields.update(overrides)
    return engine.submissions.submit_request(**fields)


@pytest.mark.asyncio
async def test_submission_requires_receipts(member_engine):
    with pytest.raises(ValidationError) as exc_info:
        await _submit(member_engine, [])
    assert exc_info.value.field == "receipts"


@pytest.mark.asyncio
async def test_submission_requires_title(member_engine, make_receipt):
    receipt = await make_receipt(member_engine, "5.00")
    with pytest.raises(ValidationError) as exc_info:
        await _submit(member_engine, [receipt.id], title="  ")
    assert exc_info.value.field == "title"


@pytest.mark.asyncio
async def test_duplicate_receipts_rejected(member_engine, make_receipt):
    receipt = await make_receipt(member_engine, "5.00")
    with pytest.raises(ValidationError):
        await _submit(member_engine, [receipt.id, receipt.id])


@pytest.mark.asyncio
async def test_unknown_receipt_rejected(member_engine):
    with pytest.raises(ValidationError):
        await _submit(member_engine, ["doesnotexist"])


@pytest.mark.asyncio
async def test_foreign_receipt_rejected(member_engine, repository, make_receipt):
    other_member = WorkflowEngine(repository, StaticUserProvider("member-2"))
    receipt = await make_receipt(other_member, "5.00")

    with pytest.raises(ValidationError):
        await _submit(member_engine, [receipt.id])


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"payment_method": "Bitcoin"},
    {"department": "marketing"},
])
async def test_unknown_choices_rejected(member_engine, make_receipt, overrides):
    receipt = await make_receipt(member_engine, "5.00")
    with pytest.raises(ValidationError):
        await _submit(member_engine, [receipt.id], **overrides)


@pytest.mark.asyncio
async def test_default_department_is_other(member_engine, make_receipt):
    receipt = await make_receipt(member_engine, "5.00")
    request = await _submit(member_engine, [receipt.id], additional_info="Dinner with ACME")

    assert request.department == Department.OTHER
    assert request.additional_info == "Dinner with ACME"
    assert request.payment_method == PaymentMethod.CASH
