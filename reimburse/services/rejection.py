"""Rejection workflow: status change plus a public reason note.

The store has no cross-document or multi-call transaction, so the two halves
are separate writes:

    1. "status": transition to rejected (status + status_change log)
    2. "note":   public note "Rejection Reason: <reason>" (+ note_added log)

If the first half fails nothing was written and its error propagates as is.
If the second half fails a PartialFailure reports completed=["status"],
pending=["note"]. Either resume(failure) or calling reject() again then
writes only the note, judged from the stored state.
"""

from __future__ import annotations

import logging
from typing import Optional

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.reimbursement import NOTE_MAX_LENGTH, ReimbursementRequest, ReimbursementStatus
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.services.audit_trail import AuditTrailRecorder
from reimburse.services.transitions import TransitionValidator
from reimburse.utils.helpers.exceptions import PartialFailure, ValidationError
from reimburse.utils.logging_utils import log_trail_event

logger = logging.getLogger(__name__)

REJECTION_PREFIX = "Rejection Reason: "
STEP_STATUS = "status"
STEP_NOTE = "note"


def rejection_note(reason: Optional[str]) -> str:
    """Build the public note text, validating the reason."""
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A rejection reason is required", field="reason")
    note = REJECTION_PREFIX + cleaned
    if len(note) > NOTE_MAX_LENGTH:
        raise ValidationError(
            f"Rejection reason must be at most {NOTE_MAX_LENGTH - len(REJECTION_PREFIX)} characters",
            field="reason",
        )
    return note


def has_rejection_reason(request: ReimbursementRequest) -> bool:
    """True when a public rejection reason note is already on the request."""
    return any(
        not note.is_private and note.note.startswith(REJECTION_PREFIX)
        for note in request.audit_notes
    )


class RejectionWorkflow:
    """Rejects a reimbursement with a mandatory, submitter-visible reason."""

    def __init__(
        self,
        repository: ReimbursementRepository,
        user_provider: CurrentUserProvider,
        transitions: Optional[TransitionValidator] = None,
        audit_trail: Optional[AuditTrailRecorder] = None,
    ):
        self.repository = repository
        self.user_provider = user_provider
        self.audit_trail = audit_trail or AuditTrailRecorder(repository, user_provider)
        self.transitions = transitions or TransitionValidator(repository, user_provider, self.audit_trail)

    async def reject(self, request_id: str, reason: str) -> ReimbursementRequest:
        """Reject a request and record the reason as a public note.

        Safe to call again after a PartialFailure: a request that is already
        rejected but has no reason note only gets the note.

        Raises:
            Unauthenticated / ValidationError / InvalidTransition / RecordNotFound:
                before anything is written
            PartialFailure: status written, note not written
        """
        actor_id = require_actor(self.user_provider)
        note = rejection_note(reason)

        current = await self.repository.get_request(request_id)
        completing = current.status == ReimbursementStatus.REJECTED and not has_rejection_reason(current)
        if completing:
            logger.info(
                "Completing rejection with missing reason note",
                extra={"request_id": request_id, "auditor_id": actor_id},
            )
        else:
            await self.transitions._commit(request_id, ReimbursementStatus.REJECTED, actor_id)

        try:
            updated = await self.audit_trail.add_audit_note(
                request_id, note, is_private=False, unless=has_rejection_reason
            )
        except Exception as exc:
            logger.error(
                "Reimbursement rejected but reason note was not written",
                extra={"request_id": request_id, "auditor_id": actor_id},
            )
            raise PartialFailure(
                "reject",
                request_id,
                completed=[STEP_STATUS],
                pending=[STEP_NOTE],
                cause=exc,
                context={"note": note},
            ) from exc

        log_trail_event({
            "action": "rejected",
            "request_id": request_id,
            "auditor_id": actor_id,
            "resumed": completing,
        })
        return updated

    async def resume(self, failure: PartialFailure) -> ReimbursementRequest:
        """Complete the pending half of an earlier partially applied rejection."""
        if failure.operation != "reject":
            raise ValueError(f"Cannot resume {failure.operation} with the rejection workflow")

        request_id = failure.record_id
        updated = await self.repository.get_request(request_id)
        if updated.status != ReimbursementStatus.REJECTED:
            raise ValueError(f"Reimbursement {request_id} is {updated.status.value}, not rejected")
        if STEP_NOTE in failure.pending:
            updated = await self.audit_trail.add_audit_note(
                request_id, failure.context["note"], is_private=False, unless=has_rejection_reason
            )
            log_trail_event({"action": "rejected", "request_id": request_id, "resumed": True})
        return updated
