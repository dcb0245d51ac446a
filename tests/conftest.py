"""Pytest configuration and shared fixtures for the reimbursement review tests.

- Isolated settings, database path and workflow log per test
- In-memory record store for service tests
- Engines bound to a member and two reviewers over the same repository
- A seeded request with two receipts (A and B)
"""

from datetime import date
from decimal import Decimal
from typing import Generator

import pytest
import pytest_asyncio

from reimburse.auth.identity import StaticUserProvider
from reimburse.models.reimbursement import ReimbursementRequest
from reimburse.repositories.record_store import InMemoryRecordStore
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.services.config_service import get_settings
from reimburse.services.workflow import WorkflowEngine

MEMBER_ID = "member-1"
REVIEWER_ID = "reviewer-1"
SECOND_REVIEWER_ID = "reviewer-2"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch) -> Generator[None, None, None]:
    """Point settings and the workflow log at a per-test directory."""
    monkeypatch.setenv("REIMBURSE_DB_PATH", str(tmp_path / "reimburse.db"))
    monkeypatch.setenv("REIMBURSE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("REIMBURSE_RETRY_DELAY_MS", "0")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def workflow_log_file(tmp_path):
    return tmp_path / "logs" / "workflow.log"


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def repository(store) -> ReimbursementRepository:
    """Repository with no delay between conflicting writes."""
    return ReimbursementRepository(store, retry_delay_ms=0)


@pytest.fixture
def member_engine(repository) -> WorkflowEngine:
    return WorkflowEngine(repository, StaticUserProvider(MEMBER_ID))


@pytest.fixture
def reviewer_engine(repository) -> WorkflowEngine:
    return WorkflowEngine(repository, StaticUserProvider(REVIEWER_ID))


@pytest.fixture
def second_reviewer_engine(repository) -> WorkflowEngine:
    return WorkflowEngine(repository, StaticUserProvider(SECOND_REVIEWER_ID))


@pytest.fixture
def anonymous_engine(repository) -> WorkflowEngine:
    return WorkflowEngine(repository, StaticUserProvider(None))


async def create_receipt(engine: WorkflowEngine, amount: str, tax: str = "0", name: str = "Test Vendor"):
    return await engine.submissions.create_receipt(
        itemized_expenses=[{"description": "Item", "category": "Supplies", "amount": amount}],
        receipt_date=date(2026, 3, 14),
        tax=Decimal(tax),
        location_name=name,
    )


@pytest_asyncio.fixture
async def seeded_request(member_engine) -> ReimbursementRequest:
    """Submitted request with receipts A (12.50 + 1.00 tax) and B (20.00)."""
    receipt_a = await create_receipt(member_engine, "12.50", tax="1.00", name="Office Depot")
    receipt_b = await create_receipt(member_engine, "20.00", name="Cafe Lumen")
    return await member_engine.submissions.submit_request(
        title="Team offsite supplies",
        date_of_purchase=date(2026, 3, 14),
        payment_method="Personal Credit Card",
        receipt_ids=[receipt_a.id, receipt_b.id],
        department="events",
    )


@pytest_asyncio.fixture
async def under_review_request(seeded_request, reviewer_engine) -> ReimbursementRequest:
    return await reviewer_engine.transitions.transition(seeded_request.id, "under_review")


@pytest.fixture
def make_receipt():
    """Async factory: await make_receipt(engine, "9.99", tax="0.50")."""
    return create_receipt


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store whose updates fail while `fail_when(collection, fields)` holds."""

    def __init__(self):
        super().__init__()
        self.fail_when = lambda collection, fields: False

    async def update(self, collection, record_id, fields, *, expected_version=None):
        if self.fail_when(collection, fields):
            raise RuntimeError("store unavailable")
        return await super().update(collection, record_id, fields, expected_version=expected_version)


@pytest.fixture
def flaky_store() -> FlakyRecordStore:
    return FlakyRecordStore()


@pytest.fixture
def flaky_member_engine(flaky_store) -> WorkflowEngine:
    return WorkflowEngine.for_store(flaky_store, StaticUserProvider(MEMBER_ID), retry_delay_ms=0)


@pytest.fixture
def flaky_reviewer_engine(flaky_store) -> WorkflowEngine:
    return WorkflowEngine.for_store(flaky_store, StaticUserProvider(REVIEWER_ID), retry_delay_ms=0)
