from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from trailcrawl.domain.identity import Identity
from trailcrawl.domain.outcome import Outcome
from trailcrawl.domain.target import Target


@dataclass(frozen=True)
class Attempt:
    """One execution of a target against one identity.

    `identity` is None when the pool could not hand one out.
    """

    target: Target
    attempt_number: int
    identity: Optional[Identity]
    timeout: float
    outcome: Outcome
    started_at: datetime
    elapsed_seconds: float

    @property
    def bytes_transferred(self) -> int:
        return self.outcome.bytes_transferred

    @property
    def reference(self) -> str:
        """Stable reference used to link artifacts back to the audit trail."""
        return f"{self.target.uri}#{self.attempt_number}"
