from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    NETWORK_ERROR = "network_error"
    HTTP_STATUS = "http_status"
    SERVER_ERROR = "server_error"
    POOL_EXHAUSTED = "pool_exhausted"
    CANCELLED = "cancelled"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


@dataclass(frozen=True)
class FetchedContent:
    """Body of a successful response."""

    body: bytes
    content_type: Optional[str] = None
    final_url: Optional[str] = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Outcome:
    """Classified result of one attempt."""

    kind: OutcomeKind
    failure: Optional[FailureKind] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None
    content: Optional[FetchedContent] = None
    bytes_transferred: int = 0

    @classmethod
    def success(cls, status_code: int, content: FetchedContent) -> "Outcome":
        return cls(
            kind=OutcomeKind.SUCCESS,
            status_code=status_code,
            content=content,
            bytes_transferred=len(content.body),
        )

    @classmethod
    def retryable(
        cls,
        failure: FailureKind,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        bytes_transferred: int = 0,
    ) -> "Outcome":
        return cls(
            kind=OutcomeKind.RETRYABLE_FAILURE,
            failure=failure,
            status_code=status_code,
            detail=detail,
            bytes_transferred=bytes_transferred,
        )

    @classmethod
    def terminal(
        cls,
        failure: FailureKind,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        bytes_transferred: int = 0,
    ) -> "Outcome":
        return cls(
            kind=OutcomeKind.TERMINAL_FAILURE,
            failure=failure,
            status_code=status_code,
            detail=detail,
            bytes_transferred=bytes_transferred,
        )

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_retryable(self) -> bool:
        return self.kind is OutcomeKind.RETRYABLE_FAILURE

    def as_terminal(self, detail: Optional[str] = None) -> "Outcome":
        """Same failure, no further attempts will follow."""
        if self.is_success:
            return self
        return replace(self, kind=OutcomeKind.TERMINAL_FAILURE, detail=detail or self.detail)
