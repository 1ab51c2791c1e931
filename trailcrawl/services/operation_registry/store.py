from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Dict, List, Optional

from .models import OperationRecord


class OperationRecordStore:
    def __init__(self, *, max_completed_records: int):
        if max_completed_records < 0:
            raise ValueError("max_completed_records must be >= 0")
        self._records: Dict[str, OperationRecord] = {}
        self._max_completed_records = max_completed_records
        self._completed_order = deque()

    def create_running(self, *, operation_id: str, name: str, now: datetime) -> OperationRecord:
        rec = OperationRecord(
            id=operation_id,
            name=name,
            status="running",
            started_at=now,
            last_seen=now,
        )
        self._records[operation_id] = rec
        return rec

    def evict_completed_overflow(self) -> List[str]:
        evicted: List[str] = []
        while len(self._completed_order) > self._max_completed_records:
            oldest = self._completed_order.popleft()
            if oldest in self._records:
                del self._records[oldest]
                evicted.append(oldest)
        return evicted

    def get(self, operation_id: str) -> Optional[OperationRecord]:
        return self._records.get(operation_id)

    def update(
        self,
        operation_id: str,
        *,
        targets_done: Optional[int] = None,
        delivered: Optional[int] = None,
        exhausted: Optional[int] = None,
        cancelled: Optional[int] = None,
        current_uri: Optional[str] = None,
        now: datetime,
    ) -> bool:
        rec = self._records.get(operation_id)
        if not rec:
            return False
        if targets_done is not None:
            rec.targets_done = targets_done
        if delivered is not None:
            rec.delivered = delivered
        if exhausted is not None:
            rec.exhausted = exhausted
        if cancelled is not None:
            rec.cancelled = cancelled
        if current_uri:
            rec.current_uri = current_uri
            if current_uri not in rec.recent_uris:
                rec.recent_uris.append(current_uri)
        rec.last_seen = now
        return True

    def finish(self, operation_id: str, *, status: str, error: Optional[str], now: datetime) -> bool:
        rec = self._records.get(operation_id)
        if not rec:
            return False
        already_completed = rec.finished_at is not None
        # A cancel request keeps its status even when the run finishes cleanly afterwards.
        if rec.status != "cancelled" or status == "failed":
            rec.status = status
        rec.finished_at = now
        rec.last_seen = now
        if error:
            rec.error = error
        if not already_completed:
            self._completed_order.append(operation_id)
        return True

    def mark_cancel_requested(self, operation_id: str, *, now: datetime) -> bool:
        rec = self._records.get(operation_id)
        if not rec or rec.status != "running":
            return False
        rec.status = "cancelled"
        rec.last_seen = now
        return True

    def list_active(self) -> List[OperationRecord]:
        return [r for r in self._records.values() if r.finished_at is None]
