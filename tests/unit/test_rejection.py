"""Tests for the rejection workflow."""

from datetime import date

import pytest

from reimburse.models.reimbursement import AuditAction, ReimbursementStatus
from reimburse.repositories.reimbursement_repository import REIMBURSEMENT_COLLECTION
from reimburse.services.rejection import REJECTION_PREFIX, rejection_note
from reimburse.utils.helpers.exceptions import InvalidTransition, PartialFailure, ValidationError


def test_rejection_note_text():
    assert rejection_note("  Missing itemization ") == "Rejection Reason: Missing itemization"


def test_rejection_note_length_includes_prefix():
    longest = "r" * (500 - len(REJECTION_PREFIX))
    assert len(rejection_note(longest)) == 500
    with pytest.raises(ValidationError):
        rejection_note(longest + "r")


@pytest.mark.asyncio
async def test_reject_sets_status_and_public_note(seeded_request, reviewer_engine):
    rejected = await reviewer_engine.rejections.reject(seeded_request.id, "Missing itemization")

    assert rejected.status == ReimbursementStatus.REJECTED
    note = rejected.audit_notes[-1]
    assert note.note == "Rejection Reason: Missing itemization"
    assert note.is_private is False
    assert note.auditor_id == "reviewer-1"

    actions = [entry.action for entry in rejected.audit_logs]
    assert actions == [AuditAction.STATUS_CHANGE.value, AuditAction.NOTE_ADDED.value]
    assert rejected.audit_logs[0].to_status == ReimbursementStatus.REJECTED


@pytest.mark.asyncio
async def test_reject_from_approved(under_review_request, reviewer_engine):
    for receipt_id in under_review_request.receipt_ids:
        await reviewer_engine.receipt_audits.audit_receipt(under_review_request.id, receipt_id)
    await reviewer_engine.transitions.transition(under_review_request.id, ReimbursementStatus.APPROVED)

    rejected = await reviewer_engine.rejections.reject(under_review_request.id, "Budget frozen")
    assert rejected.status == ReimbursementStatus.REJECTED


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", ["", "   "])
async def test_empty_reason_writes_nothing(seeded_request, reviewer_engine, repository, reason):
    with pytest.raises(ValidationError):
        await reviewer_engine.rejections.reject(seeded_request.id, reason)

    unchanged = await repository.get_request(seeded_request.id)
    assert unchanged.status == ReimbursementStatus.SUBMITTED
    assert unchanged.version == seeded_request.version


@pytest.mark.asyncio
async def test_cannot_reject_twice(seeded_request, reviewer_engine):
    await reviewer_engine.rejections.reject(seeded_request.id, "Duplicate")
    with pytest.raises(InvalidTransition):
        await reviewer_engine.rejections.reject(seeded_request.id, "Duplicate again")


@pytest.mark.asyncio
async def test_note_failure_is_partial_and_resumable(
    flaky_member_engine, flaky_reviewer_engine, flaky_store, make_receipt
):
    receipt = await make_receipt(flaky_member_engine, "15.00")
    request = await flaky_member_engine.submissions.submit_request(
        title="Conference lunch",
        date_of_purchase=date(2026, 4, 1),
        payment_method="Personal Debit Card",
        receipt_ids=[receipt.id],
    )
    flaky_store.fail_when = (
        lambda collection, fields: collection == REIMBURSEMENT_COLLECTION and "audit_notes" in fields
    )

    with pytest.raises(PartialFailure) as exc_info:
        await flaky_reviewer_engine.rejections.reject(request.id, "Alcohol is not reimbursable")

    failure = exc_info.value
    assert failure.operation == "reject"
    assert failure.record_id == request.id
    assert failure.completed == ["status"]
    assert failure.pending == ["note"]
    assert isinstance(failure.cause, RuntimeError)

    halfway = await flaky_reviewer_engine.repository.get_request(request.id)
    assert halfway.status == ReimbursementStatus.REJECTED
    assert halfway.audit_notes == []

    flaky_store.fail_when = lambda collection, fields: False
    resumed = await flaky_reviewer_engine.rejections.resume(failure)

    assert [note.note for note in resumed.audit_notes] == ["Rejection Reason: Alcohol is not reimbursable"]
    assert resumed.audit_notes[0].is_private is False


@pytest.mark.asyncio
async def test_resume_rejects_foreign_operations(seeded_request, reviewer_engine):
    failure = PartialFailure("audit_receipt", seeded_request.id, ["receipt"], ["log"], RuntimeError("x"))
    with pytest.raises(ValueError):
        await reviewer_engine.rejections.resume(failure)


@pytest.mark.asyncio
async def test_reject_again_completes_missing_note(
    flaky_member_engine, flaky_reviewer_engine, flaky_store, make_receipt
):
    receipt = await make_receipt(flaky_member_engine, "9.00")
    request = await flaky_member_engine.submissions.submit_request(
        title="Taxi",
        date_of_purchase=date(2026, 4, 2),
        payment_method="Personal Credit Card",
        receipt_ids=[receipt.id],
    )
    flaky_store.fail_when = (
        lambda collection, fields: collection == REIMBURSEMENT_COLLECTION and "audit_notes" in fields
    )
    with pytest.raises(PartialFailure):
        await flaky_reviewer_engine.rejections.reject(request.id, "No receipt for the return trip")

    flaky_store.fail_when = lambda collection, fields: False
    completed = await flaky_reviewer_engine.rejections.reject(request.id, "No receipt for the return trip")

    assert completed.status == ReimbursementStatus.REJECTED
    assert [note.note for note in completed.audit_notes] == ["Rejection Reason: No receipt for the return trip"]
    actions = [entry.action for entry in completed.audit_logs]
    assert actions == [AuditAction.STATUS_CHANGE.value, AuditAction.NOTE_ADDED.value]

    with pytest.raises(InvalidTransition):
        await flaky_reviewer_engine.rejections.reject(request.id, "Once more")


@pytest.mark.asyncio
async def test_resume_after_completed_reject_adds_nothing(seeded_request, reviewer_engine):
    rejected = await reviewer_engine.rejections.reject(seeded_request.id, "Duplicate")
    failure = PartialFailure(
        "reject", seeded_request.id, ["status"], ["note"], RuntimeError("x"),
        context={"note": "Rejection Reason: Duplicate"},
    )

    resumed = await reviewer_engine.rejections.resume(failure)

    assert len(resumed.audit_notes) == 1
    assert resumed.version == rejected.version


@pytest.mark.asyncio
async def test_generic_transition_cannot_reject(seeded_request, reviewer_engine, repository):
    with pytest.raises(ValidationError) as exc_info:
        await reviewer_engine.transitions.transition(seeded_request.id, ReimbursementStatus.REJECTED)
    assert exc_info.value.field == "status"

    unchanged = await repository.get_request(seeded_request.id)
    assert unchanged.status == ReimbursementStatus.SUBMITTED
    assert unchanged.audit_logs == []
