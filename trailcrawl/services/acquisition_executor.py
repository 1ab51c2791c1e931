import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from trailcrawl.domain.acquisition_result import (
    AcquisitionSummary,
    DeliveryStatus,
    TargetResult,
    TargetState,
)
from trailcrawl.domain.artifact import Artifact
from trailcrawl.domain.outcome import FailureKind
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target
from trailcrawl.exceptions import AuditWriteFailure, SinkError
from trailcrawl.services.artifact_pipeline import ArtifactPipeline
from trailcrawl.services.audit_recorder import AuditRecorder
from trailcrawl.services.delivery_sink import DeliverySink
from trailcrawl.services.frontier import Frontier
from trailcrawl.services.identity_pool import IdentityPool
from trailcrawl.services.link_extractor import LinkExtractor
from trailcrawl.services.request_executor import RequestExecutor
from trailcrawl.services.retry_controller import LifecycleResult, RetryController

logger = logging.getLogger(__name__)


class AcquisitionExecutor:
    """Runs one acquisition operation over configured collaborators.

    Owns the control flow: worker threads pulling from the frontier, the
    per-target retry lifecycle, delivery, link feedback, cancellation and
    the final audit flush. It does NOT construct the collaborators (that
    stays in the DI layer). One instance serves one operation.
    """

    def __init__(
        self,
        *,
        settings: AcquisitionSettings,
        pool: IdentityPool,
        request_executor: RequestExecutor,
        recorder: AuditRecorder,
        sink: DeliverySink,
        frontier: Frontier,
        link_extractor: Optional[LinkExtractor] = None,
        artifact_pipeline: Optional[ArtifactPipeline] = None,
        controller: Optional[RetryController] = None,
        registry=None,
        operation_name: str = "acquisition",
        audit_flush_timeout: Optional[float] = 60.0,
    ):
        self.settings = settings
        self.pool = pool
        self.request_executor = request_executor
        self.recorder = recorder
        self.sink = sink
        self.frontier = frontier
        self.link_extractor = link_extractor or LinkExtractor()
        self.artifact_pipeline = artifact_pipeline or ArtifactPipeline()
        self.controller = controller or RetryController(pool, request_executor, recorder, settings)
        self.registry = registry
        self.operation_name = operation_name
        self.audit_flush_timeout = audit_flush_timeout

        self.operation_id: Optional[str] = recorder.operation_id
        self._results: List[TargetResult] = []
        self._results_lock = threading.Lock()
        self._fatal: Optional[AuditWriteFailure] = None
        self._stop_event: Optional[threading.Event] = None

    def cancel(self) -> None:
        """Operator abort: no new attempts start; in-flight ones finish or time out."""
        if self._stop_event is not None:
            logger.warning("Cancellation requested for operation %s", self.operation_id)
            self._stop_event.set()

    def _is_stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def _update_registry_progress(self, current_uri: Optional[str] = None) -> None:
        if self.registry is None or self.operation_id is None:
            return
        with self._results_lock:
            results = list(self._results)
        try:
            self.registry.update(
                self.operation_id,
                targets_done=len(results),
                delivered=sum(1 for r in results if r.delivery is DeliveryStatus.ACK),
                exhausted=sum(1 for r in results if r.state is TargetState.EXHAUSTED),
                cancelled=sum(1 for r in results if r.state is TargetState.CANCELLED),
                current_uri=current_uri,
            )
        except Exception as e:
            logger.warning("Failed to update registry progress: %s", e)

    def _add_result(self, result: TargetResult) -> None:
        with self._results_lock:
            self._results.append(result)
        self._update_registry_progress(result.target.uri)

    def deliver(self, artifact: Artifact) -> DeliveryStatus:
        """Deliver with retries. The content is already in hand, so nothing is re-fetched."""
        attempts = self.settings.sink_max_attempts
        for n in range(1, attempts + 1):
            try:
                return self.sink.deliver_or_raise(artifact)
            except SinkError as e:
                if n >= attempts:
                    logger.error(
                        "Giving up delivery of %s from %s after %d attempts: %s",
                        artifact.content_hash[:12],
                        artifact.target.uri,
                        n,
                        e.original,
                        exc_info=True,
                    )
                    return DeliveryStatus.ERROR
                delay = self.settings.backoff_delay(n)
                logger.warning("Delivery attempt %d for %s failed: %s; retrying in %.2fs", n, artifact.target.uri, e.original, delay)
                if delay > 0 and self._stop_event is not None:
                    # A stop request ends the pause; the fetched content is still delivered.
                    self._stop_event.wait(delay)
                elif delay > 0:
                    time.sleep(delay)
        return DeliveryStatus.ERROR

    def _build_artifact(self, target: Target, lifecycle: LifecycleResult) -> Artifact:
        content = lifecycle.outcome.content
        artifact = Artifact(
            content=content.body,
            target=target,
            attempt_ref=lifecycle.attempt.reference,
            content_type=content.content_type,
            metadata={"status_code": str(lifecycle.outcome.status_code)},
        )
        try:
            return self.artifact_pipeline.process(artifact)
        except Exception as e:
            logger.error("Artifact pipeline error for %s: %s", target.uri, e, exc_info=True)
            return artifact

    def process_target(self, target: Target) -> TargetResult:
        stop_event = self._stop_event
        lifecycle = self.controller.run(
            target,
            stop_event=stop_event,
            before_attempt=lambda t: self.frontier.wait_for_turn(t.host, stop_event),
        )

        if lifecycle.state is TargetState.CANCELLED:
            return TargetResult(target, TargetState.CANCELLED, lifecycle.attempts, failure=FailureKind.CANCELLED)

        if lifecycle.state is not TargetState.SUCCEEDED:
            outcome = lifecycle.outcome
            return TargetResult(
                target,
                TargetState.EXHAUSTED,
                lifecycle.attempts,
                failure=outcome.failure if outcome is not None else None,
                status_code=outcome.status_code if outcome is not None else None,
            )

        artifact = self._build_artifact(target, lifecycle)
        delivery = self.deliver(artifact)

        if not self._is_stopped():
            content = lifecycle.outcome.content
            links = self.link_extractor.extract_urls(content.final_url or target.uri, artifact.content_type, content.body)
            added = self.frontier.discover(links, target)
            if added:
                logger.debug("Discovered %d new targets on %s", added, target.uri)

        return TargetResult(
            target,
            TargetState.SUCCEEDED,
            lifecycle.attempts,
            status_code=lifecycle.outcome.status_code,
            artifact_hash=artifact.content_hash,
            delivery=delivery,
        )

    def _worker(self) -> None:
        while True:
            target = self.frontier.next_target(self._stop_event)
            if target is None:
                return
            try:
                result = self.process_target(target)
            except AuditWriteFailure as e:
                # The audit trail is mandatory: stop everything.
                logger.critical("Audit trail failure while processing %s; halting operation", target.uri)
                with self._results_lock:
                    if self._fatal is None:
                        self._fatal = e
                self._stop_event.set()
                result = TargetResult(target, TargetState.CANCELLED, 0, failure=FailureKind.CANCELLED)
            except Exception as e:
                logger.error("Unexpected error processing %s: %s", target.uri, e, exc_info=True)
                result = TargetResult(target, TargetState.EXHAUSTED, 0, failure=FailureKind.NETWORK_ERROR)
            finally:
                self.frontier.complete(target)
            self._add_result(result)

    def run(self, seeds: Iterable[str], stop_event: Optional[threading.Event] = None) -> AcquisitionSummary:
        if self._stop_event is not None:
            raise RuntimeError("AcquisitionExecutor instances run a single operation")

        handle = None
        if self.registry is not None:
            handle = self.registry.start(self.operation_name, operation_id=self.operation_id)
            self.operation_id = handle.operation_id
        if stop_event is None:
            stop_event = handle.stop_event if handle is not None else threading.Event()
        self._stop_event = stop_event

        seeded = self.frontier.seed(seeds)
        logger.info(
            "Operation %s started with %d seed targets (workers=%d, per-host=%d)",
            self.operation_id,
            seeded,
            self.settings.global_concurrency,
            self.settings.per_host_concurrency,
        )

        with ThreadPoolExecutor(max_workers=self.settings.global_concurrency, thread_name_prefix="acquire") as pool:
            futures = [pool.submit(self._worker) for _ in range(self.settings.global_concurrency)]
            for f in futures:
                f.result()

        for target in self.frontier.drain():
            self._add_result(TargetResult(target, TargetState.CANCELLED, 0, failure=FailureKind.CANCELLED))

        try:
            self.recorder.flush(self.audit_flush_timeout)
        except AuditWriteFailure as e:
            if self._fatal is None:
                self._fatal = e

        if self._fatal is not None:
            if handle is not None:
                self.registry.finish(handle.operation_id, status="failed", error=str(self._fatal))
            raise self._fatal

        summary = AcquisitionSummary.from_results(self.operation_id, self._results, stopped=stop_event.is_set())
        logger.info(
            "Operation %s finished: delivered=%d exhausted=%d cancelled=%d duplicates=%d sink_errors=%d",
            self.operation_id,
            summary.delivered,
            summary.exhausted,
            summary.cancelled,
            summary.duplicates,
            summary.sink_errors,
        )
        for row in self.pool.snapshot():
            logger.debug("Identity health: %s", row)
        if handle is not None:
            self.registry.finish(handle.operation_id, status="cancelled" if summary.stopped else "finished")
        return summary
