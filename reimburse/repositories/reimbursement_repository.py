"""Typed access to reimbursements and receipts over a RecordStore.

This is the one place where the store's JSON-encoded array fields are decoded
and encoded. Services only ever see ReimbursementRequest and Receipt models.

Writes go through update_request / update_receipt, which implement optimistic
concurrency: read the record, let the caller compute the changed fields from
that snapshot, write them back conditioned on the snapshot's version, and on
ConcurrencyConflict re-read and recompute. After max_retries attempts the
conflict reaches the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel

from reimburse.models.receipt import Receipt
from reimburse.models.reimbursement import ReimbursementRequest
from reimburse.repositories.record_store import Document, RecordStore
from reimburse.services.config_service import get_settings
from reimburse.utils.helpers.exceptions import ConcurrencyConflict, CorruptRecord, ValidationError

logger = logging.getLogger(__name__)

REIMBURSEMENT_COLLECTION = "reimbursement"
RECEIPT_COLLECTION = "receipts"

JSON_ARRAY_FIELDS: Dict[str, tuple] = {
    REIMBURSEMENT_COLLECTION: ("receipts", "audit_notes", "audit_logs"),
    RECEIPT_COLLECTION: ("itemized_expenses", "audited_by"),
}

STORE_MANAGED_FIELDS = {"id", "version", "created", "updated"}

REQUEST_SORT_FIELDS = frozenset({"created", "updated", "date_of_purchase", "total_amount", "status", "title"})
DEFAULT_REQUEST_SORT = "-created"

RequestMutation = Callable[[ReimbursementRequest], Awaitable[Optional[Dict[str, Any]]]]
ReceiptMutation = Callable[[Receipt], Awaitable[Optional[Dict[str, Any]]]]


def _serialize_for_storage(obj: Any) -> Any:
    """Convert objects to JSON-serializable values for the store.

    Handles:
    - pydantic models → dict (by alias, so "from"/"to"/"receipts" keep their stored names)
    - Decimal → float
    - UUID → str
    - datetime / date → ISO string
    - Enum → value
    - Recursively processes dicts and lists
    """
    if isinstance(obj, BaseModel):
        return _serialize_for_storage(obj.model_dump(by_alias=True))
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, Decimal):
        return float(obj)
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {key: _serialize_for_storage(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [_serialize_for_storage(item) for item in obj]
    else:
        return obj


def encode_fields(collection: str, fields: Dict[str, Any]) -> Document:
    """Serialize model-level fields into the store's document shape."""
    document = {key: _serialize_for_storage(value) for key, value in fields.items()}
    for field in JSON_ARRAY_FIELDS.get(collection, ()):
        if field in document:
            document[field] = json.dumps(document[field] or [])
    return document


def decode_document(collection: str, document: Document) -> Document:
    """Turn JSON-encoded array fields back into lists.

    null and empty strings decode to an empty list. Anything else that is not
    a JSON array raises CorruptRecord: replacing it with [] would erase the
    append-only history on the next write.
    """
    decoded = dict(document)
    for field in JSON_ARRAY_FIELDS.get(collection, ()):
        value = decoded.get(field)
        if value is None or value == "":
            decoded[field] = []
            continue
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                logger.error(
                    "Stored array field is not valid JSON",
                    extra={"collection": collection, "record_id": document.get("id"), "field": field},
                )
                raise CorruptRecord(collection, str(document.get("id")), field) from exc
        if not isinstance(value, list):
            raise CorruptRecord(collection, str(document.get("id")), field)
        decoded[field] = value
    return decoded


class ReimbursementRepository:
    """Persistence adapter for reimbursement requests and receipts.

    Architecture:
        Workflow services (transitions, audits, notes, rejection)
            ↓
        ReimbursementRepository (this class) ← JSON codec + versioned retry loop
            ↓
        RecordStore ← InMemoryRecordStore / SQLiteRecordStore
    """

    def __init__(
        self,
        store: RecordStore,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.max_retries = max_retries if max_retries is not None else settings.max_write_retries
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else settings.retry_delay_ms
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1 (got {self.max_retries})")

    # -----------------
    # Reads
    # -----------------
    async def get_request(self, request_id: str) -> ReimbursementRequest:
        document = await self.store.get_one(REIMBURSEMENT_COLLECTION, request_id)
        return ReimbursementRequest.model_validate(decode_document(REIMBURSEMENT_COLLECTION, document))

    async def get_receipt(self, receipt_id: str) -> Receipt:
        document = await self.store.get_one(RECEIPT_COLLECTION, receipt_id)
        return Receipt.model_validate(decode_document(RECEIPT_COLLECTION, document))

    async def get_receipts(self, receipt_ids: Iterable[str]) -> List[Receipt]:
        """Fetch receipts concurrently, preserving the given order."""
        return list(await asyncio.gather(*(self.get_receipt(receipt_id) for receipt_id in receipt_ids)))

    async def list_requests(
        self,
        statuses: Optional[Iterable[Any]] = None,
        departments: Optional[Iterable[Any]] = None,
        submitted_by: Optional[str] = None,
        created_since: Optional[datetime] = None,
        sort: str = DEFAULT_REQUEST_SORT,
    ) -> List[ReimbursementRequest]:
        """Requests matching every given filter, newest first by default.

        Empty status/department selections mean "any".
        """
        if sort.lstrip("-") not in REQUEST_SORT_FIELDS:
            raise ValidationError(
                f"Cannot sort reimbursements by {sort!r}; use one of {sorted(REQUEST_SORT_FIELDS)}",
                field="sort",
            )
        filters: Dict[str, Any] = {}
        if statuses:
            filters["status"] = [_serialize_for_storage(value) for value in statuses]
        if departments:
            filters["department"] = [_serialize_for_storage(value) for value in departments]
        if submitted_by is not None:
            filters["submitted_by"] = submitted_by

        documents = await self.store.list(
            REIMBURSEMENT_COLLECTION,
            filters,
            sort,
            created_since=created_since.isoformat() if created_since else None,
        )
        return [
            ReimbursementRequest.model_validate(decode_document(REIMBURSEMENT_COLLECTION, document))
            for document in documents
        ]

    # -----------------
    # Creates
    # -----------------
    async def create_request(self, request: ReimbursementRequest) -> ReimbursementRequest:
        fields = request.model_dump(by_alias=True, exclude=STORE_MANAGED_FIELDS)
        if request.id:
            fields["id"] = request.id
        document = await self.store.create(REIMBURSEMENT_COLLECTION, encode_fields(REIMBURSEMENT_COLLECTION, fields))
        return ReimbursementRequest.model_validate(decode_document(REIMBURSEMENT_COLLECTION, document))

    async def create_receipt(self, receipt: Receipt) -> Receipt:
        fields = receipt.model_dump(by_alias=True, exclude=STORE_MANAGED_FIELDS)
        if receipt.id:
            fields["id"] = receipt.id
        document = await self.store.create(RECEIPT_COLLECTION, encode_fields(RECEIPT_COLLECTION, fields))
        return Receipt.model_validate(decode_document(RECEIPT_COLLECTION, document))

    # -----------------
    # Versioned updates
    # -----------------
    async def update_request(self, request_id: str, mutate: RequestMutation) -> ReimbursementRequest:
        """Apply `mutate` to the latest request snapshot under a version check.

        `mutate` receives a fresh snapshot on every attempt and returns the
        fields to write, or None to leave the record untouched. Domain errors
        raised by `mutate` propagate immediately without retry.
        """
        document = await self._versioned_update(
            REIMBURSEMENT_COLLECTION, request_id, self.get_request, mutate
        )
        if isinstance(document, ReimbursementRequest):
            return document
        return ReimbursementRequest.model_validate(decode_document(REIMBURSEMENT_COLLECTION, document))

    async def update_receipt(self, receipt_id: str, mutate: ReceiptMutation) -> Receipt:
        """Receipt counterpart of update_request."""
        document = await self._versioned_update(RECEIPT_COLLECTION, receipt_id, self.get_receipt, mutate)
        if isinstance(document, Receipt):
            return document
        return Receipt.model_validate(decode_document(RECEIPT_COLLECTION, document))

    async def _versioned_update(self, collection: str, record_id: str, load, mutate):
        for attempt in range(1, self.max_retries + 1):
            snapshot = await load(record_id)
            changes = await mutate(snapshot)
            if not changes:
                return snapshot
            try:
                return await self.store.update(
                    collection,
                    record_id,
                    encode_fields(collection, changes),
                    expected_version=snapshot.version,
                )
            except ConcurrencyConflict:
                if attempt == self.max_retries:
                    logger.warning(
                        "Versioned write gave up after retries",
                        extra={"collection": collection, "record_id": record_id, "max_retries": self.max_retries},
                    )
                    raise
                logger.info(
                    "Versioned write conflicted, retrying",
                    extra={
                        "collection": collection,
                        "record_id": record_id,
                        "attempt": attempt,
                        "max_retries": self.max_retries,
                    },
                )
                if self.retry_delay_ms:
                    await asyncio.sleep(self.retry_delay_ms * attempt / 1000.0)
        # Only reachable with max_retries < 1, which __init__ refuses.
        raise ValueError(f"max_retries must be at least 1 (got {self.max_retries})")
