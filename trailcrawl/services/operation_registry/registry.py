from __future__ import annotations

import threading
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import OperationHandle
from .store import OperationRecordStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOperationRegistry:
    """Thread-safe in-memory registry for running and recent acquisition operations.

    Single-process only. `cancel` sets the operation's stop event; the
    operation itself decides when in-flight work has wound down and calls
    `finish`.
    """

    def __init__(self, *, max_completed_records: int = 100):
        self._lock = threading.Lock()
        self._records = OperationRecordStore(max_completed_records=max_completed_records)
        # Stop events of operations that have not finished yet.
        self._stop_events: Dict[str, threading.Event] = {}

    def start(self, name: str, operation_id: Optional[str] = None) -> OperationHandle:
        with self._lock:
            oid = operation_id or str(uuid.uuid4())
            self._records.create_running(operation_id=oid, name=name, now=_utcnow())
            stop_event = threading.Event()
            self._stop_events[oid] = stop_event
            return OperationHandle(operation_id=oid, stop_event=stop_event)

    def update(self, operation_id: str, **counters) -> bool:
        with self._lock:
            return self._records.update(operation_id, now=_utcnow(), **counters)

    def finish(self, operation_id: str, *, status: str = "finished", error: Optional[str] = None) -> bool:
        with self._lock:
            ok = self._records.finish(operation_id, status=status, error=error, now=_utcnow())
            if ok:
                self._stop_events.pop(operation_id, None)
                self._records.evict_completed_overflow()
            return ok

    def get(self, operation_id: str) -> Optional[Dict]:
        with self._lock:
            rec = self._records.get(operation_id)
            return asdict(rec) if rec else None

    def get_stop_event(self, operation_id: str) -> Optional[threading.Event]:
        with self._lock:
            return self._stop_events.get(operation_id)

    def cancel(self, operation_id: str) -> bool:
        """Request cancellation: the stop event is set and the record marked cancelled."""
        with self._lock:
            stop_event = self._stop_events.get(operation_id)
            if stop_event is None:
                return False
            stop_event.set()
            return self._records.mark_cancel_requested(operation_id, now=_utcnow())

    def cancel_all(self) -> int:
        with self._lock:
            ids = [r.id for r in self._records.list_active()]
        return sum(1 for oid in ids if self.cancel(oid))

    def list_active(self) -> List[Dict]:
        with self._lock:
            return [asdict(r) for r in self._records.list_active()]
