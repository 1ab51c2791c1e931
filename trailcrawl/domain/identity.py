from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional
from urllib.parse import urlsplit


class ProxyTier(IntEnum):
    """Proxy classes ordered by cost and stealth."""

    DATACENTER = 1
    RESIDENTIAL = 2
    MOBILE = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    def next_tier(self) -> Optional["ProxyTier"]:
        for tier in ProxyTier:
            if tier > self:
                return tier
        return None

    @classmethod
    def parse(cls, value) -> "ProxyTier":
        if isinstance(value, ProxyTier):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str) and value.strip():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ValueError(f"Unknown proxy tier: {value!r}")


@dataclass(frozen=True)
class HeaderProfile:
    """A user-agent together with the Accept headers that browser actually sends."""

    name: str
    user_agent: str
    accept: str
    accept_language: str
    accept_encoding: str = "gzip, deflate, br"
    extra: tuple = ()

    def headers(self) -> dict:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Accept-Language": self.accept_language,
            "Accept-Encoding": self.accept_encoding,
        }
        headers.update(dict(self.extra))
        return headers


CHROME_DESKTOP = HeaderProfile(
    name="chrome_desktop",
    user_agent=(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    accept="text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    accept_language="en-US,en;q=0.9",
    extra=(("Upgrade-Insecure-Requests", "1"),),
)

FIREFOX_DESKTOP = HeaderProfile(
    name="firefox_desktop",
    user_agent="Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    accept_language="en-US,en;q=0.5",
    extra=(("Upgrade-Insecure-Requests", "1"),),
)

SAFARI_MOBILE = HeaderProfile(
    name="safari_mobile",
    user_agent=(
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
    ),
    accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    accept_language="en-US,en;q=0.9",
    accept_encoding="gzip, deflate, br",
)

HEADER_PROFILES = {p.name: p for p in (CHROME_DESKTOP, FIREFOX_DESKTOP, SAFARI_MOBILE)}


def get_header_profile(name: str) -> HeaderProfile:
    try:
        return HEADER_PROFILES[name.strip().lower()]
    except (KeyError, AttributeError):
        raise ValueError(f"Unknown header profile: {name!r}") from None


@dataclass(frozen=True)
class Identity:
    """One egress configuration: proxy endpoint plus a consistent header bundle.

    `proxy_url` is None for direct egress.
    """

    identity_id: str
    tier: ProxyTier
    profile: HeaderProfile
    proxy_url: Optional[str] = None

    @property
    def user_agent(self) -> str:
        return self.profile.user_agent

    @property
    def proxy_label(self) -> str:
        """Proxy endpoint without credentials, safe for logs and the audit trail."""
        if not self.proxy_url:
            return "direct"
        parts = urlsplit(self.proxy_url)
        host = parts.hostname or ""
        return f"{parts.scheme}://{host}:{parts.port}" if parts.port else f"{parts.scheme}://{host}"

    def headers(self) -> dict:
        return self.profile.headers()

    def proxies(self) -> Optional[dict]:
        if not self.proxy_url:
            return None
        return {"http": self.proxy_url, "https": self.proxy_url}

    def __repr__(self):
        return f"<Identity {self.identity_id} tier={self.tier.label} proxy={self.proxy_label}>"
