from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Protocol, Sequence

from trailcrawl.domain.identity import Identity
from trailcrawl.domain.outcome import FailureKind, FetchedContent, Outcome
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target
from trailcrawl.exceptions import FetchTimeout, HttpFetchError
from trailcrawl.services.http_service import HttpService

logger = logging.getLogger(__name__)


class RequestStage(Protocol):
    """One link of the request chain.

    `before_request` stages run in order and may adjust headers;
    `after_response` stages run in reverse order and may reclassify the outcome.
    """

    def before_request(self, target: Target, identity: Identity, headers: dict) -> dict: ...

    def after_response(self, target: Target, identity: Identity, outcome: Outcome) -> Outcome: ...


class ConsistentHeadersStage:
    """Keep the header bundle coherent with the identity's user-agent.

    Extra headers are allowed, but anything that would contradict the
    identity's browser profile is dropped.
    """

    PROFILE_HEADERS = ("user-agent", "accept", "accept-language", "accept-encoding")

    def __init__(self, extra_headers: Optional[dict] = None):
        self.extra_headers = dict(extra_headers or {})

    def before_request(self, target: Target, identity: Identity, headers: dict) -> dict:
        merged = dict(headers)
        for name, value in self.extra_headers.items():
            if name.lower() in self.PROFILE_HEADERS:
                logger.debug("Ignoring header %s that conflicts with profile %s", name, identity.profile.name)
                continue
            merged[name] = value
        merged.update(identity.headers())
        return merged

    def after_response(self, target: Target, identity: Identity, outcome: Outcome) -> Outcome:
        return outcome


DEFAULT_BLOCK_MARKERS = (
    "captcha",
    "cf-chl-",
    "access denied",
    "are you a robot",
    "unusual traffic",
    "request blocked",
)


class BlockPageStage:
    """Reclassify 2xx responses that are really challenge or block pages."""

    def __init__(self, markers: Iterable[str] = DEFAULT_BLOCK_MARKERS, scan_bytes: int = 16 * 1024):
        self.markers = tuple(m.lower() for m in markers)
        self.scan_bytes = scan_bytes
        self._pattern = re.compile("|".join(re.escape(m) for m in self.markers)) if self.markers else None

    def before_request(self, target: Target, identity: Identity, headers: dict) -> dict:
        return headers

    def after_response(self, target: Target, identity: Identity, outcome: Outcome) -> Outcome:
        if not outcome.is_success or outcome.content is None or self._pattern is None:
            return outcome
        ct = (outcome.content.content_type or "").lower()
        if ct and "html" not in ct and not ct.startswith("text/"):
            return outcome
        head = outcome.content.body[: self.scan_bytes].decode("utf-8", errors="ignore").lower()
        match = self._pattern.search(head)
        if match is None:
            return outcome
        return Outcome.retryable(
            FailureKind.BLOCKED,
            status_code=outcome.status_code,
            detail=f"block page marker {match.group(0)!r}",
            bytes_transferred=outcome.bytes_transferred,
        )


def default_stages() -> list:
    return [ConsistentHeadersStage(), BlockPageStage()]


class RequestExecutor:
    """Issue one request through one identity and classify the result.

    Has no side effects beyond the network call: logging of outcomes and
    storage are left to the caller.
    """

    def __init__(
        self,
        http_service: HttpService,
        settings: AcquisitionSettings,
        stages: Optional[Sequence[RequestStage]] = None,
    ):
        self.http_service = http_service
        self.settings = settings
        self.stages = list(stages) if stages is not None else default_stages()
        self._block_codes = frozenset(settings.block_status_codes)

    def classify_status(self, status_code: int, content: FetchedContent) -> Outcome:
        if 200 <= status_code < 300:
            return Outcome.success(status_code, content)
        size = len(content.body)
        if status_code in self._block_codes:
            return Outcome.retryable(FailureKind.BLOCKED, status_code=status_code, bytes_transferred=size)
        if 500 <= status_code < 600:
            return Outcome.retryable(FailureKind.SERVER_ERROR, status_code=status_code, bytes_transferred=size)
        return Outcome.retryable(FailureKind.HTTP_STATUS, status_code=status_code, bytes_transferred=size)

    def execute(self, target: Target, identity: Identity, timeout: Optional[float] = None) -> Outcome:
        timeout = float(timeout if timeout is not None else self.settings.request_timeout)
        headers = identity.headers()
        for stage in self.stages:
            headers = stage.before_request(target, identity, headers)

        try:
            response = self.http_service.fetch(target.uri, identity, timeout, headers=headers)
        except FetchTimeout as e:
            outcome = Outcome.retryable(
                FailureKind.TIMEOUT,
                detail=f"no complete response within {timeout:.2f}s",
                bytes_transferred=e.bytes_received,
            )
        except HttpFetchError as e:
            outcome = Outcome.retryable(FailureKind.NETWORK_ERROR, detail=f"{e.kind}: {e.original}")
        else:
            content = FetchedContent(
                body=response.body,
                content_type=response.content_type,
                final_url=response.final_url,
            )
            outcome = self.classify_status(int(response.status_code), content)

        for stage in reversed(self.stages):
            outcome = stage.after_response(target, identity, outcome)
        return outcome
