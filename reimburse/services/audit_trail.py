"""Audit trail recording: reviewer notes and system log entries.

Both lists on a request are append-only. Each append is computed from the
latest snapshot and written back under a version check, so concurrent
reviewers never overwrite each other's entries.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from reimburse.auth.identity import CurrentUserProvider, require_actor
from reimburse.models.reimbursement import (
    NOTE_MAX_LENGTH,
    NOTE_PREVIEW_LENGTH,
    AuditAction,
    AuditNote,
    NoteAddedLog,
    ReimbursementRequest,
    ReimbursementStatus,
    StatusChangeLog,
)
from reimburse.repositories.reimbursement_repository import ReimbursementRepository
from reimburse.utils.helpers.date_utils import utc_now
from reimburse.utils.helpers.exceptions import ValidationError
from reimburse.utils.logging_utils import log_trail_event

logger = logging.getLogger(__name__)

ELLIPSIS = "..."


def normalize_note(text: Optional[str]) -> str:
    """Strip surrounding whitespace and enforce 1..NOTE_MAX_LENGTH characters."""
    note = (text or "").strip()
    if not note:
        raise ValidationError("Audit note must not be empty", field="note")
    if len(note) > NOTE_MAX_LENGTH:
        raise ValidationError(
            f"Audit note must be at most {NOTE_MAX_LENGTH} characters (got {len(note)})",
            field="note",
        )
    return note


def note_preview(note: str) -> str:
    """Preview of at most NOTE_PREVIEW_LENGTH characters, ellipsized when cut."""
    if len(note) <= NOTE_PREVIEW_LENGTH:
        return note
    return note[: NOTE_PREVIEW_LENGTH - len(ELLIPSIS)] + ELLIPSIS


def visible_notes(request: ReimbursementRequest, viewer_id: str, is_reviewer: bool) -> List[AuditNote]:
    """Read-time projection of notes for one viewer.

    Reviewers see every note, the submitter sees public notes only, anyone
    else sees nothing. The recorder itself never filters.
    """
    if is_reviewer:
        return list(request.audit_notes)
    if viewer_id == request.submitted_by:
        return [note for note in request.audit_notes if not note.is_private]
    return []


class AuditTrailRecorder:
    """Appends audit notes and audit log entries to reimbursement requests."""

    def __init__(self, repository: ReimbursementRepository, user_provider: CurrentUserProvider):
        self.repository = repository
        self.user_provider = user_provider

    async def add_audit_note(
        self,
        request_id: str,
        text: str,
        is_private: bool = True,
        unless: Optional[Callable[[ReimbursementRequest], bool]] = None,
    ) -> ReimbursementRequest:
        """Append a note and its note_added log entry in one versioned write.

        Args:
            request_id: Target reimbursement
            text: Note body, 1..500 characters after stripping
            is_private: Hide from the submitter when True
            unless: Checked against each fresh snapshot; the note is not
                appended when it returns True

        Returns:
            The updated request

        Raises:
            Unauthenticated: no acting user
            ValidationError: note empty or too long
            RecordNotFound: request missing
            ConcurrencyConflict: retries exhausted
        """
        auditor_id = require_actor(self.user_provider)
        note = normalize_note(text)
        appended = {"done": False}

        async def append(request: ReimbursementRequest) -> Optional[Dict[str, Any]]:
            if unless is not None and unless(request):
                appended["done"] = False
                return None
            now = utc_now()
            entry = AuditNote(note=note, auditor_id=auditor_id, timestamp=now, is_private=is_private)
            log = NoteAddedLog(
                note_preview=note_preview(note),
                is_private=is_private,
                auditor_id=auditor_id,
                timestamp=now,
            )
            appended["done"] = True
            return {
                "audit_notes": request.audit_notes + [entry],
                "audit_logs": request.audit_logs + [log],
            }

        updated = await self.repository.update_request(request_id, append)

        if appended["done"]:
            log_trail_event({
                "action": AuditAction.NOTE_ADDED.value,
                "request_id": request_id,
                "auditor_id": auditor_id,
                "is_private": is_private,
                "note": note,
            })
        return updated

    def status_change(
        self,
        request: ReimbursementRequest,
        target: ReimbursementStatus,
        actor_id: str,
    ) -> Dict[str, Any]:
        """Fields that move `request` to `target` and log the change.

        Returned to the caller so status and log land in the same write.
        """
        entry = StatusChangeLog(
            from_status=request.status,
            to_status=target,
            auditor_id=actor_id,
            timestamp=utc_now(),
        )
        return {"status": target, "audit_logs": request.audit_logs + [entry]}
