import threading

import pytest

from trailcrawl.domain.acquisition_result import TargetState
from trailcrawl.domain.identity import CHROME_DESKTOP, FIREFOX_DESKTOP, Identity, ProxyTier
from trailcrawl.domain.outcome import FailureKind, FetchedContent, Outcome
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target
from trailcrawl.services.audit_recorder import AuditRecorder, InMemoryAuditLog
from trailcrawl.services.identity_pool import IdentityPool
from trailcrawl.services.retry_controller import (
    RetryAction,
    RetryController,
    TargetProgress,
    health_signal,
)

TARGET = Target.create("https://example.com/report.pdf")


class ScriptedExecutor:
    """Returns queued outcomes in order and remembers which identity was used."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.used = []

    def execute(self, target, identity, timeout=None):
        self.used.append(identity)
        return self.outcomes.pop(0)


def ok():
    return Outcome.success(200, FetchedContent(b"%PDF-1.7", "application/pdf", TARGET.uri))


def blocked():
    return Outcome.retryable(FailureKind.BLOCKED, status_code=403)


def server_error():
    return Outcome.retryable(FailureKind.SERVER_ERROR, status_code=503)


def _identities():
    return [
        Identity("dc-a", ProxyTier.DATACENTER, CHROME_DESKTOP, "http://dc-a.test:3128"),
        Identity("dc-b", ProxyTier.DATACENTER, FIREFOX_DESKTOP, "http://dc-b.test:3128"),
        Identity("res-a", ProxyTier.RESIDENTIAL, CHROME_DESKTOP, "http://res-a.test:8000"),
    ]


def _controller(outcomes, identities=None, **settings_kw):
    defaults = dict(backoff_base=0, acquire_timeout=0, escalation_threshold_per_tier=5)
    defaults.update(settings_kw)
    settings = AcquisitionSettings(**defaults)
    pool = IdentityPool(_identities() if identities is None else identities, settings)
    log = InMemoryAuditLog()
    recorder = AuditRecorder(log, operation_id="op")
    executor = ScriptedExecutor(outcomes)
    return RetryController(pool, executor, recorder, settings), executor, recorder, log


def _records(recorder, log):
    recorder.flush(timeout=5)
    return log.for_target(TARGET.uri)


def test_two_failures_then_success():
    controller, _, recorder, log = _controller([blocked(), blocked(), ok()])
    result = controller.run(TARGET)
    assert result.state is TargetState.SUCCEEDED
    assert result.attempts == 3
    assert result.attempt.reference == f"{TARGET.uri}#3"
    records = _records(recorder, log)
    assert [r.attempt_number for r in records] == [1, 2, 3]
    assert [r.outcome_kind for r in records] == ["retryable_failure", "retryable_failure", "success"]


def test_rotates_within_tier_then_escalates_at_threshold():
    controller, executor, recorder, log = _controller(
        [blocked(), blocked(), ok()], escalation_threshold_per_tier=2
    )
    result = controller.run(TARGET)
    assert result.state is TargetState.SUCCEEDED
    tiers = [i.tier for i in executor.used]
    assert tiers == [ProxyTier.DATACENTER, ProxyTier.DATACENTER, ProxyTier.RESIDENTIAL]
    # rotation picks another datacenter identity
    assert executor.used[0].identity_id != executor.used[1].identity_id
    records = _records(recorder, log)
    assert [r.identity_tier for r in records] == ["datacenter", "datacenter", "residential"]


def test_no_escalation_below_threshold():
    controller, executor, _, _ = _controller([blocked(), blocked(), blocked(), ok()], escalation_threshold_per_tier=4)
    controller.run(TARGET)
    assert all(i.tier is ProxyTier.DATACENTER for i in executor.used)


def test_server_error_retries_same_identity_once():
    controller, executor, _, _ = _controller([server_error(), server_error(), ok()])
    result = controller.run(TARGET)
    assert result.state is TargetState.SUCCEEDED
    ids = [i.identity_id for i in executor.used]
    assert ids[0] == ids[1]
    assert ids[2] != ids[1]


def test_max_attempts_exhausts_target():
    timeouts = [Outcome.retryable(FailureKind.TIMEOUT) for _ in range(3)]
    controller, _, recorder, log = _controller(timeouts, max_attempts_per_target=3)
    result = controller.run(TARGET)
    assert result.state is TargetState.EXHAUSTED
    assert result.attempts == 3
    records = _records(recorder, log)
    assert [r.outcome_kind for r in records] == ["retryable_failure", "retryable_failure", "terminal_failure"]
    assert records[-1].failure_kind == "timeout"


def test_give_up_status_stops_immediately():
    controller, _, recorder, log = _controller([Outcome.retryable(FailureKind.HTTP_STATUS, status_code=404)])
    result = controller.run(TARGET)
    assert result.state is TargetState.EXHAUSTED
    assert result.attempts == 1
    records = _records(recorder, log)
    assert records[0].outcome_kind == "terminal_failure"
    assert records[0].status_code == 404


def test_pool_exhausted_is_recorded_without_identity():
    controller, executor, recorder, log = _controller([], identities=[])
    result = controller.run(TARGET)
    assert result.state is TargetState.EXHAUSTED
    assert executor.used == []
    records = _records(recorder, log)
    assert len(records) == 1
    assert records[0].identity_tier is None
    assert records[0].proxy_id is None
    assert records[0].outcome_kind == "terminal_failure"
    assert records[0].failure_kind == "pool_exhausted"


def test_cancelled_before_first_attempt():
    controller, executor, recorder, log = _controller([ok()])
    stop = threading.Event()
    stop.set()
    result = controller.run(TARGET, stop_event=stop)
    assert result.state is TargetState.CANCELLED
    assert result.attempts == 0
    assert executor.used == []
    assert _records(recorder, log) == []


def test_before_attempt_hook_can_cancel():
    controller, executor, _, _ = _controller([blocked(), ok()])
    calls = []

    def hook(target):
        calls.append(target)
        return len(calls) < 2

    result = controller.run(TARGET, before_attempt=hook)
    assert result.state is TargetState.CANCELLED
    assert result.attempts == 1
    assert len(executor.used) == 1


def test_identities_are_returned_to_the_pool():
    controller, _, _, _ = _controller([blocked(), server_error(), server_error(), ok()])
    controller.run(TARGET)
    assert not any(row["borrowed"] for row in controller.pool.snapshot())


def test_unexpected_executor_error_counts_as_network_error():
    class Boom:
        def __init__(self):
            self.calls = 0

        def execute(self, target, identity, timeout=None):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("bug")
            return ok()

    controller, _, recorder, log = _controller([])
    controller.executor = Boom()
    assert controller.run(TARGET).state is TargetState.SUCCEEDED
    assert _records(recorder, log)[0].failure_kind == "network_error"


def test_decide_rotates_when_no_higher_tier_enabled():
    controller, _, _, _ = _controller([], escalation_threshold_per_tier=1, proxy_tiers_enabled=("datacenter",))
    progress = TargetProgress(tier=ProxyTier.DATACENTER, attempts=1)
    decision = controller.decide(blocked(), progress, None)
    assert decision.action is RetryAction.ROTATE


@pytest.mark.parametrize(
    "outcome,expected",
    [
        (ok(), True),
        (blocked(), False),
        (Outcome.retryable(FailureKind.TIMEOUT), False),
        (Outcome.retryable(FailureKind.NETWORK_ERROR), False),
        (server_error(), None),
        (Outcome.retryable(FailureKind.HTTP_STATUS, status_code=404), None),
    ],
)
def test_health_signal(outcome, expected):
    assert health_signal(outcome) is expected


def test_cancel_while_waiting_for_an_identity_starts_no_attempt():
    only = [Identity("dc-a", ProxyTier.DATACENTER, CHROME_DESKTOP, "http://dc-a.test:3128")]
    controller, executor, recorder, log = _controller([ok()], identities=only, acquire_timeout=5)
    controller.pool.acquire()  # another worker holds the only identity
    stop = threading.Event()
    threading.Timer(0.1, stop.set).start()

    result = controller.run(TARGET, stop_event=stop)

    assert result.state is TargetState.CANCELLED
    assert result.attempts == 0
    assert executor.used == []
    assert _records(recorder, log) == []
