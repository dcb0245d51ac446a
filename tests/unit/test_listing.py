"""Tests for reimbursement lists: scoping, filters, sorting and date ranges."""

from datetime import date, datetime, timedelta, timezone

import pytest

from reimburse.auth.identity import StaticUserProvider
from reimburse.models.reimbursement import Department, ReimbursementStatus
from reimburse.services.listing import created_cutoff
from reimburse.services.workflow import WorkflowEngine
from reimburse.utils.helpers.exceptions import Unauthenticated, ValidationError


@pytest.fixture
def other_member_engine(repository) -> WorkflowEngine:
    return WorkflowEngine(repository, StaticUserProvider("member-2"))


async def submit(engine, make_receipt, title, amount, department):
    receipt = await make_receipt(engine, amount)
    return await engine.submissions.submit_request(
        title=title,
        date_of_purchase=date(2026, 5, 1),
        payment_method="Cash",
        receipt_ids=[receipt.id],
        department=department,
    )


class TestCreatedCutoff:

    def test_all_and_empty_mean_no_cutoff(self):
        assert created_cutoff(None) is None
        assert created_cutoff("all") is None

    def test_windows(self):
        now = datetime(2026, 6, 30, 12, 0, tzinfo=timezone.utc)
        assert created_cutoff("week", now) == now - timedelta(days=7)
        assert created_cutoff("year", now) == now - timedelta(days=365)

    def test_unknown_range(self):
        with pytest.raises(ValidationError) as exc_info:
            created_cutoff("fortnight")
        assert exc_info.value.field == "date_range"


class TestListRequests:

    @pytest.mark.asyncio
    async def test_members_see_only_their_own(
        self, member_engine, other_member_engine, reviewer_engine, make_receipt
    ):
        mine = await submit(member_engine, make_receipt, "Badges", "9.00", "events")
        theirs = await submit(other_member_engine, make_receipt, "Cables", "14.00", "internal")

        own = await member_engine.listing.list_requests(is_reviewer=False)
        assert [request.id for request in own] == [mine.id]

        everyone = await reviewer_engine.listing.list_requests(is_reviewer=True, sort="title")
        assert [request.id for request in everyone] == [mine.id, theirs.id]

    @pytest.mark.asyncio
    async def test_status_and_department_filters(self, member_engine, reviewer_engine, make_receipt):
        badges = await submit(member_engine, make_receipt, "Badges", "9.00", "events")
        venue = await submit(member_engine, make_receipt, "Venue deposit", "250.00", "events")
        cables = await submit(member_engine, make_receipt, "Cables", "14.00", "internal")
        await reviewer_engine.rejections.reject(venue.id, "Booked twice")

        listing = reviewer_engine.listing
        events = await listing.list_requests(True, departments=[Department.EVENTS], sort="total_amount")
        assert [request.id for request in events] == [badges.id, venue.id]

        open_requests = await listing.list_requests(
            True, statuses=["submitted", ReimbursementStatus.UNDER_REVIEW], sort="-total_amount"
        )
        assert [request.id for request in open_requests] == [cables.id, badges.id]

        rejected = await listing.list_requests(True, statuses=[ReimbursementStatus.REJECTED])
        assert [request.id for request in rejected] == [venue.id]
        assert rejected[0].audit_notes[-1].note == "Rejection Reason: Booked twice"

    @pytest.mark.asyncio
    async def test_bad_filters_are_validation_errors(self, reviewer_engine):
        with pytest.raises(ValidationError) as exc_info:
            await reviewer_engine.listing.list_requests(True, sort="-audit_logs")
        assert exc_info.value.field == "sort"

        with pytest.raises(ValidationError):
            await reviewer_engine.listing.list_requests(True, statuses=["archived"])
        with pytest.raises(ValidationError) as exc_info:
            await reviewer_engine.listing.list_requests(True, departments=["marketing"])
        assert exc_info.value.field == "department"

    @pytest.mark.asyncio
    async def test_anonymous_caller(self, anonymous_engine):
        with pytest.raises(Unauthenticated):
            await anonymous_engine.listing.list_requests(is_reviewer=True)

    @pytest.mark.asyncio
    async def test_repository_date_cutoff(self, seeded_request, repository):
        recent = await repository.list_requests(created_since=datetime.now(timezone.utc) - timedelta(days=1))
        assert [request.id for request in recent] == [seeded_request.id]

        future = await repository.list_requests(created_since=datetime.now(timezone.utc) + timedelta(days=1))
        assert future == []
