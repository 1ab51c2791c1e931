from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Union

from trailcrawl.domain.attempt import Attempt
from trailcrawl.domain.audit_record import AuditRecord
from trailcrawl.domain.identity import Identity
from trailcrawl.domain.outcome import Outcome
from trailcrawl.exceptions import AuditWriteFailure

logger = logging.getLogger(__name__)


class AuditLog(Protocol):
    """Append-only durable sequence of audit records."""

    def append(self, records: List[AuditRecord]) -> None: ...

    def close(self) -> None: ...


class JsonlAuditLog:
    """Newline-delimited JSON file; each batch is flushed and fsynced."""

    def __init__(self, path: Union[str, Path], fsync: bool = True):
        self.path = Path(path)
        self.fsync = fsync
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8")

    def append(self, records: List[AuditRecord]) -> None:
        self._fh.write("".join(r.to_json() + "\n" for r in records))
        self._fh.flush()
        if self.fsync:
            os.fsync(self._fh.fileno())

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class InMemoryAuditLog:
    def __init__(self):
        self.records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def append(self, records: List[AuditRecord]) -> None:
        with self._lock:
            self.records.extend(records)

    def close(self) -> None:
        pass

    def for_target(self, uri: str) -> List[AuditRecord]:
        with self._lock:
            return [r for r in self.records if r.target_uri == uri]


def read_audit_log(path: Union[str, Path]) -> Iterator[AuditRecord]:
    """Replay a persisted audit trail in write order."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield AuditRecord.from_json(line)


class _FlushMarker:
    def __init__(self):
        self.done = threading.Event()


_STOP = object()


class AuditRecorder:
    """Buffers audit records and writes them from a single background thread.

    Records go through one FIFO queue and one writer, so records for a given
    target are persisted in the order the attempts were made. A failed write
    is latched: every later `record` or `flush` raises `AuditWriteFailure`.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        operation_id: Optional[str] = None,
        max_batch: int = 256,
        max_buffered: int = 10_000,
    ):
        self.audit_log = audit_log
        self.operation_id = operation_id
        self.max_batch = max_batch
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_buffered)
        self._failure: Optional[AuditWriteFailure] = None
        self._closed = False
        self._written = 0
        self._writer = threading.Thread(target=self._run, name="audit-writer", daemon=True)
        self._writer.start()

    @property
    def written(self) -> int:
        return self._written

    @property
    def failed(self) -> bool:
        return self._failure is not None

    def _raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    def record(self, attempt: Attempt, identity_snapshot: Optional[Identity], outcome: Outcome) -> AuditRecord:
        """Enqueue the record for one attempt and return it."""
        self._raise_if_failed()
        if self._closed:
            raise AuditWriteFailure(reason="audit recorder is closed")
        record = AuditRecord.from_attempt(attempt, identity_snapshot, outcome, operation_id=self.operation_id)
        while True:
            try:
                self._queue.put(record, timeout=1.0)
                return record
            except queue.Full:
                self._raise_if_failed()
                logger.warning("Audit buffer full; waiting for writer")

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every record enqueued before this call is durable."""
        self._raise_if_failed()
        if not self._writer.is_alive():
            raise AuditWriteFailure(reason="audit writer is not running")
        marker = _FlushMarker()
        self._queue.put(marker)
        if not marker.done.wait(timeout):
            raise AuditWriteFailure(reason=f"audit flush did not complete within {timeout}s")
        self._raise_if_failed()

    def close(self, timeout: Optional[float] = None) -> None:
        if self._closed:
            return
        try:
            if self._failure is None and self._writer.is_alive():
                self.flush(timeout)
        finally:
            self._closed = True
            if self._writer.is_alive():
                self._queue.put(_STOP)
                self._writer.join(timeout)
            self.audit_log.close()

    def _write(self, batch: List[AuditRecord]) -> None:
        if not batch or self._failure is not None:
            return
        try:
            self.audit_log.append(batch)
            self._written += len(batch)
        except Exception as e:
            logger.critical("Audit trail write failed after %d records: %s", self._written, e, exc_info=True)
            self._failure = AuditWriteFailure(e)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            batch: List[AuditRecord] = []
            markers: List[_FlushMarker] = []
            stop = False
            while True:
                if item is _STOP:
                    stop = True
                elif isinstance(item, _FlushMarker):
                    # Everything queued before the marker must be written first.
                    self._write(batch)
                    batch = []
                    markers.append(item)
                else:
                    batch.append(item)
                if stop or len(batch) >= self.max_batch:
                    break
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
            self._write(batch)
            for marker in markers:
                marker.done.set()
            if stop:
                return
