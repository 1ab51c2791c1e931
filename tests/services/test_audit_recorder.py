from datetime import datetime, timezone

import pytest

from trailcrawl.domain.attempt import Attempt
from trailcrawl.domain.identity import CHROME_DESKTOP, Identity, ProxyTier
from trailcrawl.domain.outcome import FailureKind, Outcome
from trailcrawl.domain.target import Target
from trailcrawl.exceptions import AuditWriteFailure
from trailcrawl.services.audit_recorder import (
    AuditRecorder,
    InMemoryAuditLog,
    JsonlAuditLog,
    read_audit_log,
)

IDENT = Identity("dc-1", ProxyTier.DATACENTER, CHROME_DESKTOP, "http://proxy.test:3128")


def _attempt(uri, n, outcome):
    return Attempt(
        target=Target.create(uri),
        attempt_number=n,
        identity=IDENT,
        timeout=5.0,
        outcome=outcome,
        started_at=datetime.now(timezone.utc),
        elapsed_seconds=0.1,
    )


def test_records_are_written_in_order_after_flush():
    log = InMemoryAuditLog()
    recorder = AuditRecorder(log, operation_id="op-1", max_batch=2)
    for n in range(1, 6):
        outcome = Outcome.retryable(FailureKind.TIMEOUT)
        recorder.record(_attempt("https://example.com/a", n, outcome), IDENT, outcome)
    recorder.flush(timeout=5)
    assert [r.attempt_number for r in log.for_target("https://example.com/a")] == [1, 2, 3, 4, 5]
    assert recorder.written == 5
    assert all(r.operation_id == "op-1" for r in log.records)
    recorder.close(timeout=5)


def test_jsonl_log_can_be_replayed(tmp_path):
    path = tmp_path / "audit.jsonl"
    recorder = AuditRecorder(JsonlAuditLog(path))
    ok = Outcome.retryable(FailureKind.BLOCKED, status_code=403)
    recorder.record(_attempt("https://example.com/", 1, ok), IDENT, ok)
    recorder.close(timeout=5)

    records = list(read_audit_log(path))
    assert len(records) == 1
    assert records[0].failure_kind == "blocked"
    assert records[0].status_code == 403
    assert records[0].proxy_id == "http://proxy.test:3128"


def test_jsonl_log_appends_across_recorders(tmp_path):
    path = tmp_path / "audit.jsonl"
    outcome = Outcome.retryable(FailureKind.TIMEOUT)
    for n in (1, 2):
        recorder = AuditRecorder(JsonlAuditLog(path))
        recorder.record(_attempt("https://example.com/", n, outcome), IDENT, outcome)
        recorder.close(timeout=5)
    assert [r.attempt_number for r in read_audit_log(path)] == [1, 2]


class FailingLog(InMemoryAuditLog):
    def append(self, records):
        raise OSError("disk full")


def test_write_failure_is_latched_and_raised():
    recorder = AuditRecorder(FailingLog())
    outcome = Outcome.retryable(FailureKind.TIMEOUT)
    recorder.record(_attempt("https://example.com/", 1, outcome), IDENT, outcome)
    with pytest.raises(AuditWriteFailure) as exc:
        recorder.flush(timeout=5)
    assert isinstance(exc.value.original, OSError)
    assert recorder.failed
    with pytest.raises(AuditWriteFailure):
        recorder.record(_attempt("https://example.com/", 2, outcome), IDENT, outcome)
    recorder.close(timeout=5)


def test_record_after_close_fails():
    recorder = AuditRecorder(InMemoryAuditLog())
    recorder.close(timeout=5)
    outcome = Outcome.retryable(FailureKind.TIMEOUT)
    with pytest.raises(AuditWriteFailure):
        recorder.record(_attempt("https://example.com/", 1, outcome), IDENT, outcome)
