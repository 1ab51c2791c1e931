import threading
import time

from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target
from trailcrawl.services.frontier import Frontier, same_site


def _frontier(**kw):
    defaults = dict(per_host_delay=0, per_host_jitter=0)
    defaults.update(kw)
    return Frontier(AcquisitionSettings(**defaults))


def test_seed_deduplicates_by_normalized_uri():
    f = _frontier()
    assert f.seed(["https://Example.com", "https://example.com/#x", "https://example.com/a"]) == 2
    assert f.pending() == 2


def test_invalid_seed_is_skipped():
    f = _frontier()
    assert f.seed(["ftp://example.com/", "https://example.com/"]) == 1


def test_discover_respects_depth_and_scope():
    f = _frontier(max_depth=1)
    f.seed(["https://example.com/"])
    origin = f.next_target()
    added = f.discover(
        [
            "https://example.com/a",
            "https://docs.example.com/b",
            "https://elsewhere.test/c",
            "mailto:someone@example.com",
        ],
        origin,
    )
    assert added == 2
    child = f.next_target()
    assert child.depth == 1
    assert child.origin == "https://example.com/"
    # depth 2 exceeds max_depth
    assert f.discover(["https://example.com/deeper"], child) == 0


def test_follow_external_links():
    f = _frontier(follow_external_links=True)
    f.seed(["https://example.com/"])
    origin = f.next_target()
    assert f.discover(["https://elsewhere.test/c"], origin) == 1


def test_max_targets_caps_admissions():
    f = _frontier(max_targets=2)
    assert f.seed(["https://a.test/", "https://b.test/", "https://c.test/"]) == 2


def test_rediscovered_uri_is_not_queued_again():
    f = _frontier()
    f.seed(["https://example.com/"])
    origin = f.next_target()
    assert f.discover(["https://example.com/"], origin) == 0


def test_per_host_capacity_limits_dispatch():
    f = _frontier(per_host_concurrency=1)
    f.seed(["https://a.test/1", "https://a.test/2", "https://b.test/1"])
    first = f.next_target()
    second = f.next_target()
    assert first.host == "a.test"
    assert second.host == "b.test"
    assert f.in_flight("a.test") == 1

    got = []
    t = threading.Thread(target=lambda: got.append(f.next_target()))
    t.start()
    time.sleep(0.1)
    assert not got
    f.complete(first)
    t.join(timeout=2)
    assert got[0].uri == "https://a.test/2"


def test_next_target_returns_none_when_finished():
    f = _frontier()
    f.seed(["https://a.test/"])
    t = f.next_target()
    f.complete(t)
    assert f.next_target() is None


def test_next_target_returns_none_when_stopped():
    f = _frontier(per_host_concurrency=1)
    f.seed(["https://a.test/1", "https://a.test/2"])
    f.next_target()
    stop = threading.Event()
    stop.set()
    assert f.next_target(stop) is None


def test_drain_returns_pending_targets():
    f = _frontier()
    f.seed(["https://a.test/", "https://b.test/"])
    drained = f.drain()
    assert [t.uri for t in drained] == ["https://a.test/", "https://b.test/"]
    assert f.pending() == 0


def test_wait_for_turn_spaces_starts_on_a_host():
    now = [100.0]
    f = Frontier(AcquisitionSettings(per_host_delay=2.0, per_host_jitter=0), clock=lambda: now[0])
    assert f.wait_for_turn("a.test") is True
    # Second start on the same host must wait 2s; a stop event cuts it short.
    stop = threading.Event()
    stop.set()
    assert f.wait_for_turn("a.test", stop) is False
    # Another host is not affected.
    assert f.wait_for_turn("b.test") is True


def test_same_site():
    assert same_site("https://example.com/", "https://www.example.com/x")
    assert not same_site("https://example.com/", "https://badexample.com/")
    assert same_site("https://Example.com/", "http://example.com:8080/")


def test_discover_expects_absolute_urls():
    f = _frontier()
    f.seed(["https://example.com/"])
    origin = f.next_target()
    assert isinstance(origin, Target)
    assert f.discover(["/relative"], origin) == 0
    assert f.pending() == 0
