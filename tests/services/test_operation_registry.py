import threading

from trailcrawl.services.operation_registry import InMemoryOperationRegistry


def test_registry_bounded_completed_retention():
    registry = InMemoryOperationRegistry(max_completed_records=2)

    a = registry.start("a")
    b = registry.start("b")
    c = registry.start("c")

    assert registry.finish(a.operation_id)
    assert registry.finish(b.operation_id)
    assert registry.finish(c.operation_id)

    assert registry.get(a.operation_id) is None
    assert registry.get(b.operation_id) is not None
    assert registry.get(c.operation_id) is not None


def test_start_with_explicit_id():
    registry = InMemoryOperationRegistry()
    handle = registry.start("docs", operation_id="op-42")
    assert handle.operation_id == "op-42"
    assert registry.get("op-42")["name"] == "docs"


def test_cancel_sets_event_and_marks_record():
    registry = InMemoryOperationRegistry(max_completed_records=10)

    handle = registry.start("x")
    assert isinstance(handle.stop_event, threading.Event)
    assert registry.get_stop_event(handle.operation_id) is handle.stop_event

    assert registry.cancel(handle.operation_id)
    assert handle.stop_event.is_set()

    rec = registry.get(handle.operation_id)
    assert rec["status"] == "cancelled"

    # finishing keeps the cancelled status and drops the event mapping
    registry.finish(handle.operation_id, status="finished")
    assert registry.get(handle.operation_id)["status"] == "cancelled"
    assert registry.get_stop_event(handle.operation_id) is None


def test_cancel_unknown_operation():
    assert not InMemoryOperationRegistry().cancel("nope")


def test_update_tracks_progress_and_recent_uris():
    registry = InMemoryOperationRegistry()
    handle = registry.start("x")
    registry.update(handle.operation_id, targets_done=1, delivered=1, current_uri="https://a.test/")
    registry.update(handle.operation_id, targets_done=2, exhausted=1, current_uri="https://b.test/")
    rec = registry.get(handle.operation_id)
    assert rec["targets_done"] == 2
    assert rec["delivered"] == 1
    assert rec["exhausted"] == 1
    assert rec["current_uri"] == "https://b.test/"
    assert list(rec["recent_uris"]) == ["https://a.test/", "https://b.test/"]


def test_cancel_all_and_list_active():
    registry = InMemoryOperationRegistry()
    a = registry.start("a")
    b = registry.start("b")
    registry.finish(b.operation_id)
    assert [r["id"] for r in registry.list_active()] == [a.operation_id]
    assert registry.cancel_all() == 1
    assert a.stop_event.is_set()
    assert not b.stop_event.is_set()


def test_failed_status_overrides_cancel():
    registry = InMemoryOperationRegistry()
    h = registry.start("x")
    registry.cancel(h.operation_id)
    registry.finish(h.operation_id, status="failed", error="audit trail unavailable")
    rec = registry.get(h.operation_id)
    assert rec["status"] == "failed"
    assert rec["error"] == "audit trail unavailable"
