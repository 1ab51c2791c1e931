"""Custom exceptions for TrailCrawl services."""
from typing import Optional


class ConfigurationError(Exception):
    """Raised when an acquisition option is missing or has an invalid value."""

    def __init__(self, option: str, reason: str):
        self.option = option
        self.reason = reason
        super().__init__(f"Invalid option '{option}': {reason}")


class PoolExhausted(Exception):
    """Raised when no identity of the requested tier (or above) can be handed out."""

    def __init__(self, tier, reason: str = "no identity available"):
        self.tier = tier
        self.reason = reason
        super().__init__(f"Identity pool exhausted for tier {getattr(tier, 'label', tier)}: {reason}")


class HttpFetchError(Exception):
    """Raised when an HTTP fetch fails due to network/transport errors."""

    def __init__(self, url: str, original: Exception, kind: str = "other"):
        self.url = url
        self.original = original
        self.kind = kind
        super().__init__(f"HTTP fetch failed for {url} ({kind}): {original}")


class FetchTimeout(Exception):
    """Raised when a response is not fully received within the wall-clock timeout."""

    def __init__(self, url: str, timeout: float, bytes_received: int = 0):
        self.url = url
        self.timeout = timeout
        self.bytes_received = bytes_received
        super().__init__(f"Fetch of {url} exceeded {timeout:.2f}s")


class AuditWriteFailure(Exception):
    """Raised when the audit trail cannot be written. Halts the operation."""

    def __init__(self, original: Optional[Exception] = None, reason: str = "audit write failed"):
        self.original = original
        self.reason = reason
        message = f"{reason}: {original}" if original is not None else reason
        super().__init__(message)


class SinkError(Exception):
    """Raised when a fetched artifact cannot be persisted to the delivery sink."""

    def __init__(self, content_hash: str, original: Exception):
        self.content_hash = content_hash
        self.original = original
        super().__init__(f"Delivery of {content_hash} failed: {original}")
