"""Reimbursement status state machine.

ALLOWED_TRANSITIONS is the single source of truth for legal edges. The API
and any presentation layer ask allowed_targets() instead of keeping their
own copy.

Critical Rules:
- Anything not in the table raises InvalidTransition (PAID and REJECTED have
  no outgoing edges; self-transitions are not edges)
- under_review → approved additionally requires the acting reviewer to have
  audited every linked receipt, otherwise GatingFailure
- → rejected is refused by transition(); RejectionWorkflow commits it together
  with the reason note
- Status and its status_change log entry are written together
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Union

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.reimbursement import ReimbursementRequest, ReimbursementStatus
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.services.audit_trail import AuditTrailRecorder
from reimburse.services.receipt_audit import unaudited_receipts
from reimburse.utils.helpers.exceptions import GatingFailure, InvalidTransition, ValidationError
from reimburse.utils.logging_utils import log_transition_event

logger = logging.getLogger(__name__)

Status = ReimbursementStatus

ALLOWED_TRANSITIONS: Dict[ReimbursementStatus, FrozenSet[ReimbursementStatus]] = {
    Status.SUBMITTED: frozenset({Status.UNDER_REVIEW, Status.REJECTED}),
    Status.UNDER_REVIEW: frozenset({Status.APPROVED, Status.REJECTED}),
    Status.APPROVED: frozenset({Status.IN_PROGRESS, Status.REJECTED}),
    Status.IN_PROGRESS: frozenset({Status.PAID, Status.REJECTED}),
    Status.PAID: frozenset(),
    Status.REJECTED: frozenset(),
}

# Targets whose edge is gated on the receipt audit rule.
GATED_TARGETS = frozenset({Status.APPROVED})

# Targets that need a reason from the actor.
REASON_REQUIRED_TARGETS = frozenset({Status.REJECTED})


def coerce_status(value: Union[str, ReimbursementStatus]) -> ReimbursementStatus:
    try:
        return ReimbursementStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown reimbursement status: {value}", field="status") from None


def is_legal_transition(current: ReimbursementStatus, target: ReimbursementStatus) -> bool:
    """Check the edge table only (no gating)."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_targets(current: ReimbursementStatus) -> List[ReimbursementStatus]:
    """Legal targets from `current`, in lifecycle order."""
    edges = ALLOWED_TRANSITIONS.get(current, frozenset())
    return [status for status in ReimbursementStatus if status in edges]


class TransitionValidator:
    """Validates and commits status transitions.

    Architecture:
        TransitionValidator (this class) ← edge table + approval gate
            ↓ status/log fields from
        AuditTrailRecorder
            ↓ one versioned write through
        ReimbursementRepository

    The gate is evaluated inside the versioned write loop. Receipts are
    re-read on every attempt, and every receipt audit also appends to the
    request's log, so an audit landing between check and commit changes the
    request version and forces a fresh check.
    """

    def __init__(
        self,
        repository: ReimbursementRepository,
        user_provider: CurrentUserProvider,
        audit_trail: Optional[AuditTrailRecorder] = None,
    ):
        self.repository = repository
        self.user_provider = user_provider
        self.audit_trail = audit_trail or AuditTrailRecorder(repository, user_provider)

    async def transition(
        self,
        request_id: str,
        target: Union[str, ReimbursementStatus],
    ) -> ReimbursementRequest:
        """Move a request to `target` and append a status_change entry.

        Rejection is refused here: it needs a reason note, so it only goes
        through RejectionWorkflow.reject.

        Raises:
            Unauthenticated: no acting user
            ValidationError: unknown target, or rejected
            InvalidTransition: edge not in the table
            GatingFailure: approval while receipts remain unaudited by the actor
            RecordNotFound: request missing
            ConcurrencyConflict: retries exhausted
        """
        actor_id = require_actor(self.user_provider)
        target = coerce_status(target)
        if target in REASON_REQUIRED_TARGETS:
            raise ValidationError(
                f"Moving a reimbursement to {target.value} needs a reason; use the rejection workflow",
                field="status",
            )
        return await self._commit(request_id, target, actor_id)

    async def _commit(
        self,
        request_id: str,
        target: ReimbursementStatus,
        actor_id: str,
    ) -> ReimbursementRequest:
        # RejectionWorkflow calls this directly and writes the reason note itself.
        previous: Dict[str, ReimbursementStatus] = {}

        async def apply(request: ReimbursementRequest):
            await self._validate(request, target, actor_id)
            previous["status"] = request.status
            return self.audit_trail.status_change(request, target, actor_id)

        updated = await self.repository.update_request(request_id, apply)

        logger.info(
            "Reimbursement status changed",
            extra={
                "request_id": request_id,
                "from": previous["status"].value,
                "to": target.value,
                "auditor_id": actor_id,
            },
        )
        log_transition_event({
            "request_id": request_id,
            "from": previous["status"].value,
            "to": target.value,
            "auditor_id": actor_id,
        })
        return updated

    async def _validate(
        self,
        request: ReimbursementRequest,
        target: ReimbursementStatus,
        actor_id: str,
    ) -> None:
        if not is_legal_transition(request.status, target):
            raise InvalidTransition(request.status.value, target.value)
        if target in GATED_TARGETS:
            receipts = await self.repository.get_receipts(request.receipt_ids)
            pending = unaudited_receipts(actor_id, receipts)
            if pending:
                raise GatingFailure(actor_id, pending)

    async def available_transitions(self, request: ReimbursementRequest) -> Dict[ReimbursementStatus, bool]:
        """Legal targets for the acting user, each flagged enabled/blocked by its gate.

        Presentation uses this to decide between "action unavailable" (absent)
        and "audit remaining receipts" (present but False).
        """
        actor_id = require_actor(self.user_provider)
        result: Dict[ReimbursementStatus, bool] = {}
        for target in allowed_targets(request.status):
            enabled = True
            if target in GATED_TARGETS:
                receipts = await self.repository.get_receipts(request.receipt_ids)
                enabled = not unaudited_receipts(actor_id, receipts)
            result[target] = enabled
        return result
