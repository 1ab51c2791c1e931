from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """Return the canonical form used to deduplicate targets.

    Scheme and host are lower-cased, default ports and fragments are dropped,
    and an empty path becomes "/". Query strings are kept verbatim.
    """
    if url is None or url.strip() == "":
        raise ValueError("url is required")
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"unsupported scheme in {url!r}")
    host = (parts.hostname or "").lower()
    if not host:
        raise ValueError(f"missing host in {url!r}")

    netloc = host
    if parts.username:
        creds = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{creds}@{netloc}"
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Target:
    """A URI to fetch plus how it was discovered."""

    uri: str
    origin: Optional[str] = None
    depth: int = 0
    discovered_at: datetime = field(default_factory=_utcnow, compare=False)

    @classmethod
    def create(cls, url: str, origin: Optional[str] = None, depth: int = 0) -> "Target":
        return cls(uri=normalize_url(url), origin=origin, depth=int(depth))

    @property
    def host(self) -> str:
        return host_of(self.uri)

    def __repr__(self):
        return f"<Target {self.uri} depth={self.depth}>"
