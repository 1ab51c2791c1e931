"""Acquisition result data model."""
from enum import Enum
from typing import NamedTuple, Optional, Tuple

from trailcrawl.domain.outcome import FailureKind
from trailcrawl.domain.target import Target


class TargetState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    ESCALATING = "escalating"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class DeliveryStatus(str, Enum):
    ACK = "ack"
    DUPLICATE = "duplicate"
    ERROR = "error"


class TargetResult(NamedTuple):
    """Terminal state of one target's attempt lifecycle."""

    target: Target
    state: TargetState
    attempts: int
    failure: Optional[FailureKind] = None
    status_code: Optional[int] = None
    artifact_hash: Optional[str] = None
    delivery: Optional[DeliveryStatus] = None

    @property
    def succeeded(self) -> bool:
        return self.state is TargetState.SUCCEEDED


class AcquisitionSummary(NamedTuple):
    """Result of an acquisition operation.

    `delivered`, `exhausted` and `cancelled` count targets; duplicates and
    sink errors are succeeded fetches whose delivery was a no-op or failed.
    """

    operation_id: Optional[str]
    delivered: int
    exhausted: int
    cancelled: int
    duplicates: int
    sink_errors: int
    results: Tuple[TargetResult, ...]
    stopped: bool

    @classmethod
    def from_results(cls, operation_id: Optional[str], results, stopped: bool) -> "AcquisitionSummary":
        results = tuple(results)
        return cls(
            operation_id=operation_id,
            delivered=sum(1 for r in results if r.delivery is DeliveryStatus.ACK),
            exhausted=sum(1 for r in results if r.state is TargetState.EXHAUSTED),
            cancelled=sum(1 for r in results if r.state is TargetState.CANCELLED),
            duplicates=sum(1 for r in results if r.delivery is DeliveryStatus.DUPLICATE),
            sink_errors=sum(1 for r in results if r.delivery is DeliveryStatus.ERROR),
            results=results,
            stopped=stopped,
        )

    def result_for(self, uri: str) -> Optional[TargetResult]:
        for r in self.results:
            if r.target.uri == uri:
                return r
        return None
