from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, NamedTuple, Optional, Set

from trailcrawl.domain.acquisition_result import TargetState
from trailcrawl.domain.attempt import Attempt
from trailcrawl.domain.identity import Identity, ProxyTier
from trailcrawl.domain.outcome import FailureKind, Outcome
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target
from trailcrawl.exceptions import PoolExhausted
from trailcrawl.services.audit_recorder import AuditRecorder
from trailcrawl.services.identity_pool import IdentityPool
from trailcrawl.services.request_executor import RequestExecutor

logger = logging.getLogger(__name__)

# Failures that say something about the identity rather than the target.
_IDENTITY_FAILURES = frozenset({FailureKind.BLOCKED, FailureKind.TIMEOUT, FailureKind.NETWORK_ERROR})


class RetryAction(str, Enum):
    SUCCEED = "succeed"
    RETRY_SAME = "retry_same"
    ROTATE = "rotate"
    ESCALATE = "escalate"
    GIVE_UP = "give_up"


class RetryDecision(NamedTuple):
    action: RetryAction
    tier: ProxyTier
    delay: float = 0.0
    reason: Optional[str] = None


@dataclass
class TargetProgress:
    """Mutable per-target bookkeeping owned by one worker."""

    tier: ProxyTier
    attempts: int = 0
    tier_failures: int = 0
    state: TargetState = TargetState.PENDING
    same_identity_retried: Set[str] = field(default_factory=set)


class LifecycleResult(NamedTuple):
    state: TargetState
    attempts: int
    outcome: Optional[Outcome]
    attempt: Optional[Attempt]


def health_signal(outcome: Outcome) -> Optional[bool]:
    if outcome.is_success:
        return True
    if outcome.failure in _IDENTITY_FAILURES:
        return False
    return None


class RetryController:
    """Drives one target from Pending to Succeeded, Exhausted or Cancelled.

    Every attempt is recorded once the next step is decided and before that
    step is taken. Exhaustion is returned as a result, never raised; only
    `AuditWriteFailure` escapes.
    """

    def __init__(
        self,
        pool: IdentityPool,
        executor: RequestExecutor,
        recorder: AuditRecorder,
        settings: AcquisitionSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.pool = pool
        self.executor = executor
        self.recorder = recorder
        self.settings = settings
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._give_up_codes = frozenset(settings.give_up_status_codes)

    def decide(self, outcome: Outcome, progress: TargetProgress, identity: Optional[Identity]) -> RetryDecision:
        """Pick the next step after an attempt. `progress.attempts` includes that attempt."""
        tier = progress.tier
        if outcome.is_success:
            return RetryDecision(RetryAction.SUCCEED, tier)
        if not outcome.is_retryable:
            return RetryDecision(RetryAction.GIVE_UP, tier, reason=outcome.failure.value if outcome.failure else None)
        if outcome.failure is FailureKind.HTTP_STATUS and outcome.status_code in self._give_up_codes:
            return RetryDecision(RetryAction.GIVE_UP, tier, reason=f"status {outcome.status_code} is final")
        if progress.attempts >= self.settings.max_attempts_per_target:
            return RetryDecision(RetryAction.GIVE_UP, tier, reason="max attempts reached")

        delay = self.settings.backoff_delay(progress.attempts)
        if progress.tier_failures + 1 >= self.settings.escalation_threshold_per_tier:
            next_tier = self.settings.next_enabled_tier(tier)
            if next_tier is not None:
                return RetryDecision(RetryAction.ESCALATE, next_tier, delay, f"{progress.tier_failures + 1} failures on {tier.label}")
        if (
            outcome.failure is FailureKind.SERVER_ERROR
            and identity is not None
            and identity.identity_id not in progress.same_identity_retried
        ):
            return RetryDecision(RetryAction.RETRY_SAME, tier, delay, "transient server fault")
        return RetryDecision(RetryAction.ROTATE, tier, delay, outcome.failure.value if outcome.failure else None)

    def _stopped(self, stop_event: Optional[threading.Event]) -> bool:
        return stop_event is not None and stop_event.is_set()

    def _wait(self, delay: float, stop_event: Optional[threading.Event]) -> bool:
        """Sleep for the backoff delay. Returns False if stopped meanwhile."""
        if delay <= 0:
            return not self._stopped(stop_event)
        if stop_event is not None:
            return not stop_event.wait(delay)
        self._sleep(delay)
        return True

    def run(
        self,
        target: Target,
        stop_event: Optional[threading.Event] = None,
        before_attempt: Optional[Callable[[Target], bool]] = None,
    ) -> LifecycleResult:
        progress = TargetProgress(tier=self.settings.lowest_tier)
        held: Optional[Identity] = None
        last_identity_id: Optional[str] = None
        last_outcome: Optional[Outcome] = None
        last_attempt: Optional[Attempt] = None

        def cancelled() -> LifecycleResult:
            if held is not None:
                self.pool.release(held, None)
            logger.info("Target %s cancelled after %d attempts", target.uri, progress.attempts)
            return LifecycleResult(TargetState.CANCELLED, progress.attempts, last_outcome, last_attempt)

        while True:
            if self._stopped(stop_event):
                return cancelled()
            if before_attempt is not None and not before_attempt(target):
                return cancelled()

            attempt_number = progress.attempts + 1
            started_at = self._now()
            t0 = self._clock()

            identity = held
            held = None
            if identity is None:
                exclude = (last_identity_id,) if last_identity_id else ()
                try:
                    identity = self.pool.acquire(progress.tier, exclude=exclude, stop_event=stop_event)
                except PoolExhausted as e:
                    outcome = Outcome.terminal(FailureKind.POOL_EXHAUSTED, detail=e.reason)
                    attempt = Attempt(
                        target=target,
                        attempt_number=attempt_number,
                        identity=None,
                        timeout=self.settings.request_timeout,
                        outcome=outcome,
                        started_at=started_at,
                        elapsed_seconds=self._clock() - t0,
                    )
                    progress.attempts = attempt_number
                    progress.state = TargetState.EXHAUSTED
                    self.recorder.record(attempt, None, outcome)
                    logger.warning("Target %s exhausted: %s", target.uri, e)
                    return LifecycleResult(TargetState.EXHAUSTED, progress.attempts, outcome, attempt)
                if identity is None:
                    return cancelled()

            if self._stopped(stop_event):
                # Cancelled while waiting for an identity: no new attempt starts.
                held = identity
                return cancelled()

            if identity.tier > progress.tier:
                # Pool handed out a higher tier because the requested one had nothing left.
                progress.tier = identity.tier
                progress.tier_failures = 0

            progress.state = TargetState.ATTEMPTING
            try:
                try:
                    outcome = self.executor.execute(target, identity, self.settings.request_timeout)
                except Exception as e:
                    logger.error("Request error for %s via %s: %s", target.uri, identity.identity_id, e, exc_info=True)
                    outcome = Outcome.retryable(FailureKind.NETWORK_ERROR, detail=f"unexpected: {e}")

                attempt = Attempt(
                    target=target,
                    attempt_number=attempt_number,
                    identity=identity,
                    timeout=self.settings.request_timeout,
                    outcome=outcome,
                    started_at=started_at,
                    elapsed_seconds=self._clock() - t0,
                )
                progress.attempts = attempt_number
                decision = self.decide(outcome, progress, identity)
                recorded = outcome if decision.action is not RetryAction.GIVE_UP else outcome.as_terminal(decision.reason)
                self.recorder.record(attempt, identity, recorded)
            except BaseException:
                self.pool.release(identity, None)
                raise

            last_outcome, last_attempt = recorded, attempt
            signal = health_signal(outcome)

            if decision.action is RetryAction.SUCCEED:
                self.pool.release(identity, signal)
                progress.state = TargetState.SUCCEEDED
                logger.info("Fetched %s -> status %s on attempt %d", target.uri, outcome.status_code, attempt_number)
                return LifecycleResult(TargetState.SUCCEEDED, progress.attempts, outcome, attempt)

            if decision.action is RetryAction.GIVE_UP:
                self.pool.release(identity, signal)
                progress.state = TargetState.EXHAUSTED
                logger.warning(
                    "Target %s exhausted after %d attempts (%s, status %s)",
                    target.uri,
                    progress.attempts,
                    outcome.failure.value if outcome.failure else "unknown",
                    outcome.status_code,
                )
                return LifecycleResult(TargetState.EXHAUSTED, progress.attempts, recorded, attempt)

            if decision.action is RetryAction.RETRY_SAME:
                if signal is not None:
                    self.pool.observe(identity, signal)
                progress.same_identity_retried.add(identity.identity_id)
                progress.tier_failures += 1
                if self.pool.is_quarantined(identity):
                    self.pool.release(identity, None)
                    last_identity_id = identity.identity_id
                else:
                    held = identity
            elif decision.action is RetryAction.ESCALATE:
                self.pool.release(identity, signal)
                last_identity_id = identity.identity_id
                logger.info("Escalating %s from %s to %s (%s)", target.uri, progress.tier.label, decision.tier.label, decision.reason)
                progress.tier = decision.tier
                progress.tier_failures = 0
                progress.state = TargetState.ESCALATING
            else:
                self.pool.release(identity, signal)
                last_identity_id = identity.identity_id
                progress.tier_failures += 1

            logger.debug(
                "Retrying %s (%s) in %.2fs after attempt %d: %s",
                target.uri,
                decision.action.value,
                decision.delay,
                attempt_number,
                outcome.failure.value if outcome.failure else None,
            )
            if not self._wait(decision.delay, stop_event):
                return cancelled()
