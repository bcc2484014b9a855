"""
procurement_tracker/store.py

In-memory request store: the session's single source of truth.

Rules:
- Readers get deep copies; the only way to change a record is add() or
  replace().
- replace() is a compare-and-swap on ProcurementRequest.version. A record
  that changed after the caller's snapshot is refused with ConflictError and
  the store keeps the first write.
- Every read and write holds the store lock; requests may be served from
  several threads, each with its own event loop.
- Observers are called synchronously after every committed change.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Callable, Iterable, List, Optional, Set

from .domain import ProcurementRequest
from .errors import ConflictError, RequestNotFound, ValidationError

logger = logging.getLogger(__name__)

SOURCE_EMPTY = "empty"
SOURCE_BACKEND = "backend"
SOURCE_FALLBACK = "fallback"

EVENT_LOADED = "loaded"
EVENT_ADDED = "added"
EVENT_REPLACED = "replaced"

Observer = Callable[[str, Optional[ProcurementRequest]], None]


class RequestStore:
    def __init__(self):
        self._records: List[ProcurementRequest] = []
        self._observers: List[Observer] = []
        self._unsynced: Set[str] = set()
        # re-entrant: observers may read the store while it emits
        self._lock = threading.RLock()
        self.source = SOURCE_EMPTY
        self.loaded = False

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def all(self) -> List[ProcurementRequest]:
        with self._lock:
            return copy.deepcopy(self._records)

    def get_by_id(self, request_id: str) -> Optional[ProcurementRequest]:
        """Copy of the record, or None when absent."""
        with self._lock:
            index = self._index_of(request_id)
            if index is None:
                return None
            return copy.deepcopy(self._records[index])

    def _index_of(self, request_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == request_id:
                return index
        return None

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------
    def load(
        self,
        records: Iterable[ProcurementRequest],
        source: str,
        carry_over: Iterable[ProcurementRequest] = (),
    ) -> None:
        """
        Replace the whole collection.

        `carry_over` records are local changes the backend does not have yet:
        they win over a loaded record with the same id and stay unsynced.
        """
        with self._lock:
            self._records = copy.deepcopy(list(records))
            self._unsynced.clear()
            for record in carry_over:
                index = self._index_of(record.id)
                if index is None:
                    self._records.append(copy.deepcopy(record))
                else:
                    self._records[index] = copy.deepcopy(record)
                self._unsynced.add(record.id)
            self.source = source
            self.loaded = True
            logger.info(
                "Request store loaded %d records from %s (%d kept unsynced)",
                len(self._records),
                source,
                len(self._unsynced),
            )
            self._emit(EVENT_LOADED, None)

    def add(self, record: ProcurementRequest) -> ProcurementRequest:
        with self._lock:
            if self._index_of(record.id) is not None:
                raise ValidationError(f"Request {record.id} already exists")
            stored = copy.deepcopy(record)
            self._records.append(stored)
            self._emit(EVENT_ADDED, stored)
            return copy.deepcopy(stored)

    def replace(self, record: ProcurementRequest, expected_version: int) -> ProcurementRequest:
        """Swap in `record` if the stored version is still `expected_version`; bumps the version."""
        with self._lock:
            index = self._index_of(record.id)
            if index is None:
                raise RequestNotFound(record.id)

            current = self._records[index]
            if current.version != expected_version:
                raise ConflictError(record.id, expected=expected_version, actual=current.version)

            stored = copy.deepcopy(record)
            stored.version = expected_version + 1
            self._records[index] = stored
            self._emit(EVENT_REPLACED, stored)
            return copy.deepcopy(stored)

    # -----------------------------------------------------------------
    # Observers
    # -----------------------------------------------------------------
    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _emit(self, event: str, record: Optional[ProcurementRequest]) -> None:
        for observer in list(self._observers):
            observer(event, copy.deepcopy(record) if record is not None else None)

    # -----------------------------------------------------------------
    # Pending sync bookkeeping
    # -----------------------------------------------------------------
    def mark_unsynced(self, request_id: str) -> None:
        with self._lock:
            self._unsynced.add(request_id)

    def mark_synced(self, request_id: str) -> None:
        with self._lock:
            self._unsynced.discard(request_id)

    def unsynced_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._unsynced)

    def unsynced_records(self) -> List[ProcurementRequest]:
        """Copies of the records whose last change has not reached the backend."""
        with self._lock:
            return [copy.deepcopy(r) for r in self._records if r.id in self._unsynced]

    def is_synced(self, request_id: str) -> bool:
        with self._lock:
            return request_id not in self._unsynced
