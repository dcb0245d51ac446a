"""Concurrent writers against the same request.

Every store call yields to the event loop, so asyncio.gather interleaves the
read and write halves of competing updates.
"""

import asyncio

import pytest

from reimburse.auth.identity import StaticUserProvider
from reimburse.models.reimbursement import AuditAction, ReimbursementStatus
from reimburse.repositories.record_store import InMemoryRecordStore
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.repositories.sqlite_record_store import SQLiteRecordStore
from reimburse.services.workflow import WorkflowEngine
from reimburse.utils.helpers.exceptions import ConcurrencyConflict


class AlwaysConflictingStore(InMemoryRecordStore):
    def __init__(self):
        super().__init__()
        self.update_calls = 0

    async def update(self, collection, record_id, fields, *, expected_version=None):
        self.update_calls += 1
        raise ConcurrencyConflict(collection, record_id, expected_version, (expected_version or 0) + 1)


@pytest.mark.asyncio
async def test_concurrent_notes_are_all_kept(seeded_request, reviewer_engine, second_reviewer_engine):
    await asyncio.gather(
        reviewer_engine.audit_trail.add_audit_note(seeded_request.id, "note from reviewer one"),
        second_reviewer_engine.audit_trail.add_audit_note(seeded_request.id, "note from reviewer two"),
    )

    request = await reviewer_engine.repository.get_request(seeded_request.id)
    assert len(request.audit_notes) == len(seeded_request.audit_notes) + 2
    assert sorted(note.auditor_id for note in request.audit_notes) == ["reviewer-1", "reviewer-2"]
    assert len(request.logs_of(AuditAction.NOTE_ADDED)) == 2


@pytest.mark.asyncio
async def test_many_concurrent_writers(seeded_request, repository):
    engines = [WorkflowEngine(repository, StaticUserProvider(f"reviewer-{n}")) for n in range(4)]
    repository.max_retries = 10

    await asyncio.gather(*(
        engine.audit_trail.add_audit_note(seeded_request.id, f"note {n}")
        for n, engine in enumerate(engines)
    ))

    request = await repository.get_request(seeded_request.id)
    assert sorted(note.note for note in request.audit_notes) == [f"note {n}" for n in range(4)]


@pytest.mark.asyncio
async def test_note_and_status_change_do_not_clobber(seeded_request, reviewer_engine, second_reviewer_engine):
    await asyncio.gather(
        reviewer_engine.transitions.transition(seeded_request.id, ReimbursementStatus.UNDER_REVIEW),
        second_reviewer_engine.audit_trail.add_audit_note(seeded_request.id, "picked up"),
    )

    request = await reviewer_engine.repository.get_request(seeded_request.id)
    assert request.status == ReimbursementStatus.UNDER_REVIEW
    assert [note.note for note in request.audit_notes] == ["picked up"]
    assert len(request.audit_logs) == 2


@pytest.mark.asyncio
async def test_concurrent_audits_of_one_receipt(seeded_request, reviewer_engine, second_reviewer_engine):
    receipt_id = seeded_request.receipt_ids[0]

    await asyncio.gather(
        reviewer_engine.receipt_audits.audit_receipt(seeded_request.id, receipt_id),
        second_reviewer_engine.receipt_audits.audit_receipt(seeded_request.id, receipt_id),
    )

    receipt = await reviewer_engine.repository.get_receipt(receipt_id)
    request = await reviewer_engine.repository.get_request(seeded_request.id)
    assert sorted(receipt.audited_by) == ["reviewer-1", "reviewer-2"]
    assert len(request.logs_of(AuditAction.RECEIPT_AUDIT)) == 2


@pytest.mark.asyncio
async def test_concurrent_notes_on_sqlite(tmp_path, make_receipt):
    store = SQLiteRecordStore(db_path=str(tmp_path / "concurrent.db"))
    member = WorkflowEngine.for_store(store, StaticUserProvider("member-1"), retry_delay_ms=0)
    receipt = await make_receipt(member, "9.00")
    request = await member.submissions.submit_request(
        title="Taxi", date_of_purchase=receipt.date, payment_method="Cash", receipt_ids=[receipt.id]
    )

    reviewers = [
        WorkflowEngine.for_store(store, StaticUserProvider(f"reviewer-{n}"), max_retries=10, retry_delay_ms=0)
        for n in range(3)
    ]
    await asyncio.gather(*(
        engine.audit_trail.add_audit_note(request.id, f"sqlite note {n}")
        for n, engine in enumerate(reviewers)
    ))

    stored = await member.repository.get_request(request.id)
    assert len(stored.audit_notes) == 3


@pytest.mark.asyncio
async def test_retries_are_bounded():
    store = AlwaysConflictingStore()
    member = WorkflowEngine.for_store(store, StaticUserProvider("member-1"), retry_delay_ms=0)
    receipt = await member.submissions.create_receipt(
        itemized_expenses=[{"description": "Toner", "category": "Supplies", "amount": "30"}],
        receipt_date="2026-01-09",
    )
    request = await member.submissions.submit_request(
        title="Toner", date_of_purchase="2026-01-09", payment_method="Cash", receipt_ids=[receipt.id]
    )
    repository = ReimbursementRepository(store, max_retries=3, retry_delay_ms=0)
    reviewer = WorkflowEngine(repository, StaticUserProvider("reviewer-1"))

    with pytest.raises(ConcurrencyConflict):
        await reviewer.audit_trail.add_audit_note(request.id, "never lands")

    assert store.update_calls == 3


@pytest.mark.parametrize("max_retries", [0, -1])
def test_repository_refuses_non_positive_retry_count(max_retries):
    with pytest.raises(ValueError, match="max_retries must be at least 1"):
        ReimbursementRepository(InMemoryRecordStore(), max_retries=max_retries, retry_delay_ms=0)


@pytest.mark.asyncio
async def test_single_attempt_surfaces_conflict():
    store = AlwaysConflictingStore()
    member = WorkflowEngine.for_store(store, StaticUserProvider("member-1"), retry_delay_ms=0)
    receipt = await member.submissions.create_receipt(
        itemized_expenses=[{"description": "Stamps", "category": "Supplies", "amount": "4"}],
        receipt_date="2026-01-10",
    )
    request = await member.submissions.submit_request(
        title="Stamps", date_of_purchase="2026-01-10", payment_method="Cash", receipt_ids=[receipt.id]
    )
    reviewer = WorkflowEngine(
        ReimbursementRepository(store, max_retries=1, retry_delay_ms=0), StaticUserProvider("reviewer-1")
    )

    with pytest.raises(ConcurrencyConflict):
        await reviewer.audit_trail.add_audit_note(request.id, "never lands")

    assert store.update_calls == 1
