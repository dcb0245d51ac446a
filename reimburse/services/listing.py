"""Reimbursement lists for the review portal and for members.

Reviewers browse every request. Members only ever get the requests they
submitted, whatever filters they send.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.reimbursement import Department, ReimbursementRequest, ReimbursementStatus
from reimburse.repositories.reimbursement_repository import DEFAULT_REQUEST_SORT, ReimbursementRepository
from reimburse.services.transitions import coerce_status
from reimburse.utils.helpers.date_utils import utc_now
from reimburse.utils.helpers.exceptions import ValidationError

logger = logging.getLogger(__name__)

# "all" (or no range) applies no cutoff.
DATE_RANGES: Dict[str, timedelta] = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def created_cutoff(date_range: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    if not date_range or date_range == "all":
        return None
    try:
        window = DATE_RANGES[date_range]
    except KeyError:
        raise ValidationError(
            f"Unknown date range {date_range!r}; use all, {', '.join(DATE_RANGES)}",
            field="date_range",
        ) from None
    return (now or utc_now()) - window


def coerce_departments(values: Iterable) -> List[Department]:
    try:
        return [Department(value) for value in values]
    except ValueError as exc:
        raise ValidationError(str(exc), field="department") from None


class ReimbursementListing:
    """Filtered, sorted reimbursement lists scoped to the acting user."""

    def __init__(self, repository: ReimbursementRepository, user_provider: CurrentUserProvider):
        self.repository = repository
        self.user_provider = user_provider

    async def list_requests(
        self,
        is_reviewer: bool,
        statuses: Optional[Iterable[ReimbursementStatus]] = None,
        departments: Optional[Iterable[Department]] = None,
        date_range: Optional[str] = None,
        sort: str = DEFAULT_REQUEST_SORT,
    ) -> List[ReimbursementRequest]:
        """List requests the caller may see.

        Args:
            is_reviewer: Reviewers see every request, members only their own
            statuses: Any of these statuses (empty means any)
            departments: Any of these departments (empty means any)
            date_range: all, week, month or year, by creation time
            sort: Field name, "-" prefix for descending

        Raises:
            Unauthenticated: no acting user
            ValidationError: unknown sort field or date range
        """
        actor_id = require_actor(self.user_provider)
        statuses = [coerce_status(value) for value in statuses or []]
        departments = coerce_departments(departments or [])

        requests = await self.repository.list_requests(
            statuses=statuses,
            departments=departments,
            submitted_by=None if is_reviewer else actor_id,
            created_since=created_cutoff(date_range),
            sort=sort,
        )
        logger.info(
            "Reimbursements listed",
            extra={
                "auditor_id": actor_id,
                "scope": "all" if is_reviewer else "own",
                "statuses": [status.value for status in statuses],
                "departments": [department.value for department in departments],
                "count": len(requests),
            },
        )
        return requests
