"""Record store interface and in-memory implementation.

The workflow talks to a generic document store through four async calls:
get_one, list, create and update. Documents are plain dicts whose array
fields are JSON-encoded strings; decoding happens in ReimbursementRepository
only.

Every document carries:
    id: Store-assigned identifier
    version: Integer bumped on every update (optimistic concurrency)
    created / updated: ISO timestamps maintained by the store

list() filters are {field: value} or {field: [value, ...]}. Fields are
AND'ed, the values of one field are OR'ed. sort is a field name with an
optional "-" prefix for descending order; ties fall back to id.
"""

from __future__ import annotations

import asyncio
import copy
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from reimburse.utils.helpers.date_utils import utc_now
from reimburse.utils.helpers.exceptions import ConcurrencyConflict, RecordNotFound

Document = Dict[str, Any]
Filters = Dict[str, Any]

RESERVED_FIELDS = frozenset({"id", "version", "created", "updated"})

FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def new_record_id() -> str:
    """15-character lowercase id, the shape the hosted store issues."""
    return uuid4().hex[:15]


def check_field_name(field: str) -> str:
    if not FIELD_NAME.match(field or ""):
        raise ValueError(f"Invalid field name: {field!r}")
    return field


def parse_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """Split "-created" into ("created", True). Defaults to id ascending."""
    if not sort:
        return "id", False
    descending = sort.startswith("-")
    return check_field_name(sort.lstrip("-")), descending


def filter_values(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def matches(document: Document, filters: Optional[Filters], created_since: Optional[str] = None) -> bool:
    if created_since is not None and document.get("created", "") < created_since:
        return False
    for field, value in (filters or {}).items():
        if document.get(field) not in filter_values(value):
            return False
    return True


def sort_documents(documents: List[Document], sort: Optional[str]) -> List[Document]:
    field, descending = parse_sort(sort)
    ordered = sorted(documents, key=lambda document: document["id"])
    # Missing values sort first, as NULL does in SQL.
    return sorted(
        ordered,
        key=lambda document: (document.get(field) is not None, document.get(field)),
        reverse=descending,
    )


class RecordStore(ABC):
    """Abstract interface for the document store collaborator."""

    @abstractmethod
    async def get_one(self, collection: str, record_id: str) -> Document:
        """Return one document or raise RecordNotFound."""
        pass

    @abstractmethod
    async def list(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        sort: Optional[str] = None,
        *,
        created_since: Optional[str] = None,
    ) -> List[Document]:
        """Documents in a collection matching `filters`, ordered by `sort`.

        created_since is an ISO timestamp; older documents are left out.
        """
        pass

    @abstractmethod
    async def create(self, collection: str, data: Document) -> Document:
        """Insert a document (version 1) and return it with store fields set."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Document,
        *,
        expected_version: Optional[int] = None,
    ) -> Document:
        """Merge fields into a document and bump its version.

        When expected_version is given and differs from the stored version,
        nothing is written and ConcurrencyConflict is raised.
        """
        pass


class InMemoryRecordStore(RecordStore):
    """In-memory implementation of RecordStore for testing and development.

    Every call yields to the event loop once (or sleeps for `latency` seconds)
    so concurrent callers interleave the way they would against a remote store.
    Not suitable for production use.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    async def get_one(self, collection: str, record_id: str) -> Document:
        await self._round_trip()
        record = self._collections.get(collection, {}).get(record_id)
        if record is None:
            raise RecordNotFound(collection, record_id)
        return copy.deepcopy(record)

    async def list(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        sort: Optional[str] = None,
        *,
        created_since: Optional[str] = None,
    ) -> List[Document]:
        await self._round_trip()
        for field in filters or {}:
            check_field_name(field)
        found = [
            copy.deepcopy(record)
            for record in self._collections.get(collection, {}).values()
            if matches(record, filters, created_since)
        ]
        return sort_documents(found, sort)

    async def create(self, collection: str, data: Document) -> Document:
        await self._round_trip()
        async with self._lock:
            records = self._collections.setdefault(collection, {})
            record_id = data.get("id") or new_record_id()
            if record_id in records:
                raise ValueError(f"{collection} record already exists: {record_id}")
            now = utc_now().isoformat()
            record = {key: value for key, value in data.items() if key not in RESERVED_FIELDS}
            record.update({"id": record_id, "version": 1, "created": now, "updated": now})
            records[record_id] = copy.deepcopy(record)
            return record

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Document,
        *,
        expected_version: Optional[int] = None,
    ) -> Document:
        await self._round_trip()
        async with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                raise RecordNotFound(collection, record_id)
            if expected_version is not None and record["version"] != expected_version:
                raise ConcurrencyConflict(collection, record_id, expected_version, record["version"])
            for key, value in fields.items():
                if key not in RESERVED_FIELDS:
                    record[key] = copy.deepcopy(value)
            record["version"] += 1
            record["updated"] = utc_now().isoformat()
            return copy.deepcopy(record)
