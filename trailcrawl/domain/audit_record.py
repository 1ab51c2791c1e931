"""Persisted form of the audit trail.

One JSON object per line. Field names and types are part of the external
contract (downstream tabular tooling reads them), so new fields are only
ever appended.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Optional

from trailcrawl.domain.attempt import Attempt
from trailcrawl.domain.identity import Identity
from trailcrawl.domain.outcome import Outcome


@dataclass(frozen=True)
class AuditRecord:
    timestamp: str
    operation_id: Optional[str]
    target_uri: str
    identity_tier: Optional[str]
    proxy_id: Optional[str]
    user_agent: Optional[str]
    outcome_kind: str
    failure_kind: Optional[str]
    status_code: Optional[int]
    attempt_number: int
    elapsed_seconds: float
    bytes_transferred: int
    detail: Optional[str] = None

    @classmethod
    def from_attempt(
        cls,
        attempt: Attempt,
        identity: Optional[Identity],
        outcome: Outcome,
        operation_id: Optional[str] = None,
    ) -> "AuditRecord":
        started = attempt.started_at
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=started.astimezone(timezone.utc).isoformat(),
            operation_id=operation_id,
            target_uri=attempt.target.uri,
            identity_tier=identity.tier.label if identity is not None else None,
            proxy_id=identity.proxy_label if identity is not None else None,
            user_agent=identity.user_agent if identity is not None else None,
            outcome_kind=outcome.kind.value,
            failure_kind=outcome.failure.value if outcome.failure is not None else None,
            status_code=outcome.status_code,
            attempt_number=attempt.attempt_number,
            elapsed_seconds=round(float(attempt.elapsed_seconds), 6),
            bytes_transferred=int(outcome.bytes_transferred),
            detail=outcome.detail,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict) -> "AuditRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, line: str) -> "AuditRecord":
        return cls.from_dict(json.loads(line))

    @property
    def recorded_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)
