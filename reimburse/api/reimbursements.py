"""Reimbursement Review API Endpoints

FastAPI routes over the workflow engine (backend only, no UI).

Endpoints:
- POST /api/reimbursements/receipts                      - Create a receipt
- POST /api/reimbursements                               - Submit a request
- GET  /api/reimbursements?status=&department=&sort=     - List requests (reviewers: all, members: own)
- GET  /api/reimbursements/{id}                          - Request with visible notes and logs
- GET  /api/reimbursements/{id}/receipts                 - Receipts with auditor names
- POST /api/reimbursements/{id}/receipts/{rid}/audit     - Audit a receipt (reviewer)
- POST /api/reimbursements/{id}/notes                    - Add an audit note (reviewer)
- POST /api/reimbursements/{id}/status                   - Change status (reviewer)
- POST /api/reimbursements/{id}/reject                   - Reject with reason (reviewer)

Security Model:
- Bearer JWT on every route
- Reviewers see every note; submitters see their own request with public notes only
- Status buttons come from allowed_transitions, never a copy of the table
"""

from __future__ import annotations

import logging
from datetime import date as calendar_date
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from reimburse.auth.dependencies import get_current_user, get_user_repository, require_reviewer, user_provider_for
from reimburse.models.receipt import Receipt
from reimburse.models.reimbursement import (
    AuditLogEntry,
    AuditNote,
    Department,
    ReimbursementRequest,
    ReimbursementStatus,
)
from reimburse.models.user import User
from reimburse.repositories.record_store import RecordStore
from reimburse.repositories.reimbursement_repository import DEFAULT_REQUEST_SORT
from reimburse.repositories.sqlite_record_store import SQLiteRecordStore
from reimburse.repositories.user_repository import UserRepository
from reimburse.services.audit_trail import visible_notes
from reimburse.services.config_service import get_settings
from reimburse.services.workflow import WorkflowEngine
from reimburse.utils.helpers.exceptions import (
    ConcurrencyConflict,
    CorruptRecord,
    GatingFailure,
    InvalidTransition,
    PartialFailure,
    RecordNotFound,
    Unauthenticated,
    ValidationError,
    WorkflowError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reimbursements", tags=["reimbursements"])

# Singleton store instance
_record_store: Optional[RecordStore] = None


def get_record_store() -> RecordStore:
    """Get or create the process-wide RecordStore."""
    global _record_store
    if _record_store is None:
        _record_store = SQLiteRecordStore(db_path=get_settings().database_path)
    return _record_store


def build_engine(store: RecordStore, user: User) -> WorkflowEngine:
    return WorkflowEngine.for_store(store, user_provider_for(user))


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    """Map a workflow error to an HTTP error with enough detail to act on."""
    if isinstance(exc, Unauthenticated):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, RecordNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, GatingFailure):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "gating_failure",
                "message": str(exc),
                "pending_receipt_ids": exc.pending_receipt_ids,
            },
        )
    if isinstance(exc, InvalidTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "invalid_transition", "message": str(exc), "from": exc.current, "to": exc.target},
        )
    if isinstance(exc, ConcurrencyConflict):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "concurrency_conflict", "message": str(exc)},
        )
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "validation_error", "message": str(exc), "field": exc.field},
        )
    if isinstance(exc, PartialFailure):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "code": "partial_failure",
                "message": str(exc),
                "completed": exc.completed,
                "pending": exc.pending,
            },
        )
    if isinstance(exc, CorruptRecord):
        logger.error("Corrupt record reached the API", extra={"record_id": exc.record_id, "field": exc.field})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# Request/Response Models
# ============================================================================

class ExpenseItemPayload(BaseModel):
    description: str
    category: str
    amount: Decimal


class CreateReceiptRequest(BaseModel):
    itemized_expenses: List[ExpenseItemPayload] = Field(..., description="At least one item")
    date: calendar_date
    tax: Decimal = Decimal("0")
    location_name: str = ""
    location_address: str = ""
    notes: str = ""
    file_ref: Optional[str] = None


class SubmitReimbursementRequest(BaseModel):
    title: str
    date_of_purchase: calendar_date
    payment_method: str
    receipts: List[str]
    department: str = "other"
    additional_info: str = ""


class AuditNoteRequest(BaseModel):
    note: str
    is_private: bool = True


class StatusChangeRequest(BaseModel):
    status: ReimbursementStatus


class RejectRequest(BaseModel):
    reason: str


class ReceiptResponse(BaseModel):
    id: str
    created_by: str
    itemized_expenses: List[Dict]
    tax: Decimal
    total_amount: Decimal
    date: calendar_date
    location_name: str
    location_address: str
    notes: str
    file_ref: Optional[str]
    audited_by: List[str]
    auditor_names: List[str] = Field(default_factory=list)


class ReimbursementResponse(BaseModel):
    id: str
    title: str
    total_amount: Decimal
    date_of_purchase: calendar_date
    payment_method: str
    status: ReimbursementStatus
    submitted_by: str
    department: str
    additional_info: str
    receipts: List[str]
    audit_notes: List[AuditNote]
    audit_logs: List[AuditLogEntry]
    allowed_transitions: Dict[str, bool] = Field(
        default_factory=dict,
        description="Legal targets for the caller; False means gated (audit remaining receipts)",
    )
    version: int


class ReimbursementSummary(BaseModel):
    """One row of a reimbursement list."""

    id: str
    title: str
    total_amount: Decimal
    date_of_purchase: calendar_date
    payment_method: str
    status: ReimbursementStatus
    submitted_by: str
    submitter_name: str
    department: str
    receipt_count: int
    created: Optional[datetime] = None


def _receipt_to_response(receipt: Receipt, auditor_names: Optional[List[str]] = None) -> ReceiptResponse:
    return ReceiptResponse(
        id=receipt.id,
        created_by=receipt.created_by,
        itemized_expenses=[item.model_dump(mode="json") for item in receipt.itemized_expenses],
        tax=receipt.tax,
        total_amount=receipt.total_amount,
        date=receipt.date,
        location_name=receipt.location_name,
        location_address=receipt.location_address,
        notes=receipt.notes,
        file_ref=receipt.file_ref,
        audited_by=receipt.audited_by,
        auditor_names=auditor_names or [],
    )


async def _request_to_response(
    engine: WorkflowEngine,
    request: ReimbursementRequest,
    viewer: User,
) -> ReimbursementResponse:
    transitions: Dict[str, bool] = {}
    if viewer.is_reviewer():
        available = await engine.transitions.available_transitions(request)
        transitions = {target.value: enabled for target, enabled in available.items()}

    return ReimbursementResponse(
        id=request.id,
        title=request.title,
        total_amount=request.total_amount,
        date_of_purchase=request.date_of_purchase,
        payment_method=request.payment_method.value,
        status=request.status,
        submitted_by=request.submitted_by,
        department=request.department.value,
        additional_info=request.additional_info,
        receipts=request.receipt_ids,
        audit_notes=visible_notes(request, viewer.user_id, viewer.is_reviewer()),
        # Logs carry only previews; private note previews stay with reviewers.
        audit_logs=[
            entry for entry in request.audit_logs
            if viewer.is_reviewer() or not getattr(entry, "is_private", False)
        ],
        allowed_transitions=transitions,
        version=request.version,
    )


async def _load_visible_request(engine: WorkflowEngine, request_id: str, viewer: User) -> ReimbursementRequest:
    request = await engine.repository.get_request(request_id)
    if not viewer.is_reviewer() and request.submitted_by != viewer.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your reimbursement")
    return request


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/receipts", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
async def create_receipt(
    payload: CreateReceiptRequest,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> ReceiptResponse:
    """Create a receipt owned by the caller."""
    engine = build_engine(store, current_user)
    try:
        receipt = await engine.submissions.create_receipt(
            itemized_expenses=[item.model_dump() for item in payload.itemized_expenses],
            receipt_date=payload.date,
            tax=payload.tax,
            location_name=payload.location_name,
            location_address=payload.location_address,
            notes=payload.notes,
            file_ref=payload.file_ref,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _receipt_to_response(receipt)


@router.post("", response_model=ReimbursementResponse, status_code=status.HTTP_201_CREATED)
async def submit_reimbursement(
    payload: SubmitReimbursementRequest,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> ReimbursementResponse:
    """Submit a reimbursement request for the caller's receipts."""
    engine = build_engine(store, current_user)
    try:
        request = await engine.submissions.submit_request(
            title=payload.title,
            date_of_purchase=payload.date_of_purchase,
            payment_method=payload.payment_method,
            receipt_ids=payload.receipts,
            department=payload.department,
            additional_info=payload.additional_info,
        )
        return await _request_to_response(engine, request, current_user)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc



@router.get("", response_model=List[ReimbursementSummary])
async def list_reimbursements(
    status_filter: List[ReimbursementStatus] = Query(default=[], alias="status"),
    department: List[Department] = Query(default=[]),
    date_range: str = Query(default="all", description="all, week, month or year"),
    sort: str = Query(default=DEFAULT_REQUEST_SORT, description="Field name, '-' prefix for descending"),
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
    users: UserRepository = Depends(get_user_repository),
) -> List[ReimbursementSummary]:
    """Reviewers list every request; members list their own."""
    engine = build_engine(store, current_user)
    try:
        requests = await engine.listing.list_requests(
            is_reviewer=current_user.is_reviewer(),
            statuses=status_filter,
            departments=department,
            date_range=date_range,
            sort=sort,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc

    names = users.get_display_names(request.submitted_by for request in requests)
    return [
        ReimbursementSummary(
            id=request.id,
            title=request.title,
            total_amount=request.total_amount,
            date_of_purchase=request.date_of_purchase,
            payment_method=request.payment_method.value,
            status=request.status,
            submitted_by=request.submitted_by,
            submitter_name=names[request.submitted_by],
            department=request.department.value,
            receipt_count=len(request.receipt_ids),
            created=request.created,
        )
        for request in requests
    ]

@router.get("/{request_id}", response_model=ReimbursementResponse)
async def get_reimbursement(
    request_id: str,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> ReimbursementResponse:
    """Get a request with the notes and logs the caller may see."""
    engine = build_engine(store, current_user)
    try:
        request = await _load_visible_request(engine, request_id, current_user)
        return await _request_to_response(engine, request, current_user)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc


@router.get("/{request_id}/receipts", response_model=List[ReceiptResponse])
async def list_reimbursement_receipts(
    request_id: str,
    current_user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
    users: UserRepository = Depends(get_user_repository),
) -> List[ReceiptResponse]:
    """Linked receipts, each with the display names of its auditors."""
    engine = build_engine(store, current_user)
    try:
        request = await _load_visible_request(engine, request_id, current_user)
        receipts = await engine.repository.get_receipts(request.receipt_ids)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc

    names = users.get_display_names(
        reviewer_id for receipt in receipts for reviewer_id in receipt.audited_by
    )
    return [
        _receipt_to_response(receipt, [names[reviewer_id] for reviewer_id in receipt.audited_by])
        for receipt in receipts
    ]


@router.post("/{request_id}/receipts/{receipt_id}/audit", response_model=ReceiptResponse)
async def audit_receipt(
    request_id: str,
    receipt_id: str,
    current_user: User = Depends(require_reviewer),
    store: RecordStore = Depends(get_record_store),
) -> ReceiptResponse:
    """Mark a receipt as audited by the calling reviewer (idempotent)."""
    engine = build_engine(store, current_user)
    try:
        receipt = await engine.receipt_audits.audit_receipt(request_id, receipt_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _receipt_to_response(receipt)


@router.post("/{request_id}/notes", response_model=ReimbursementResponse)
async def add_audit_note(
    request_id: str,
    payload: AuditNoteRequest,
    current_user: User = Depends(require_reviewer),
    store: RecordStore = Depends(get_record_store),
) -> ReimbursementResponse:
    """Append an audit note (private by default)."""
    engine = build_engine(store, current_user)
    try:
        request = await engine.audit_trail.add_audit_note(request_id, payload.note, payload.is_private)
        return await _request_to_response(engine, request, current_user)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc


@router.post("/{request_id}/status", response_model=ReimbursementResponse)
async def change_status(
    request_id: str,
    payload: StatusChangeRequest,
    current_user: User = Depends(require_reviewer),
    store: RecordStore = Depends(get_record_store),
) -> ReimbursementResponse:
    """Move a request along the lifecycle. Rejections go through /reject (422 here)."""
    engine = build_engine(store, current_user)
    try:
        request = await engine.transitions.transition(request_id, payload.status)
        return await _request_to_response(engine, request, current_user)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc


@router.post("/{request_id}/reject", response_model=ReimbursementResponse)
async def reject_reimbursement(
    request_id: str,
    payload: RejectRequest,
    current_user: User = Depends(require_reviewer),
    store: RecordStore = Depends(get_record_store),
) -> ReimbursementResponse:
    """Reject with a reason that is recorded as a public note."""
    engine = build_engine(store, current_user)
    try:
        request = await engine.rejections.reject(request_id, payload.reason)
        return await _request_to_response(engine, request, current_user)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
