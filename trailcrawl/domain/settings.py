from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from trailcrawl import config as env
from trailcrawl.domain.identity import ProxyTier
from trailcrawl.exceptions import ConfigurationError


@dataclass(frozen=True)
class AcquisitionSettings:
    """Immutable acquisition configuration handed to every component at construction."""

    # retry / escalation
    max_attempts_per_target: int = 5
    escalation_threshold_per_tier: int = 2
    backoff_base: float = 0.5
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0
    block_status_codes: tuple = (403, 429)
    give_up_status_codes: tuple = (404, 410)

    # request executor
    request_timeout: float = 20.0

    # identity pool
    proxy_tiers_enabled: tuple = (ProxyTier.DATACENTER, ProxyTier.RESIDENTIAL, ProxyTier.MOBILE)
    quarantine_threshold: float = 0.8
    quarantine_window: int = 10
    quarantine_min_samples: int = 3
    quarantine_cooldown: float = 300.0
    ema_alpha: float = 0.3
    acquire_timeout: float = 30.0

    # frontier
    per_host_concurrency: int = 2
    per_host_delay: float = 1.0
    per_host_jitter: float = 0.5
    global_concurrency: int = 8
    max_depth: int = 2
    max_targets: Optional[int] = None
    follow_external_links: bool = False

    # delivery
    sink_max_attempts: int = 3

    def __post_init__(self):
        tiers = tuple(sorted({ProxyTier.parse(t) for t in self.proxy_tiers_enabled}))
        object.__setattr__(self, "proxy_tiers_enabled", tiers)
        object.__setattr__(self, "block_status_codes", tuple(int(c) for c in self.block_status_codes))
        object.__setattr__(self, "give_up_status_codes", tuple(int(c) for c in self.give_up_status_codes))
        self._validate()

    def _validate(self) -> None:
        positive_ints = (
            "max_attempts_per_target",
            "escalation_threshold_per_tier",
            "per_host_concurrency",
            "global_concurrency",
            "sink_max_attempts",
            "quarantine_window",
            "quarantine_min_samples",
        )
        for name in positive_ints:
            if int(getattr(self, name)) < 1:
                raise ConfigurationError(name, "must be >= 1")
        non_negative = (
            "backoff_base",
            "backoff_max",
            "per_host_delay",
            "per_host_jitter",
            "quarantine_cooldown",
            "acquire_timeout",
        )
        for name in non_negative:
            if float(getattr(self, name)) < 0:
                raise ConfigurationError(name, "must be >= 0")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout", "must be > 0")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier", "must be >= 1")
        if not 0 < self.quarantine_threshold <= 1:
            raise ConfigurationError("quarantine_threshold", "must be in (0, 1]")
        if not 0 < self.ema_alpha <= 1:
            raise ConfigurationError("ema_alpha", "must be in (0, 1]")
        if self.max_depth < 0:
            raise ConfigurationError("max_depth", "must be >= 0")
        if self.max_targets is not None and self.max_targets < 1:
            raise ConfigurationError("max_targets", "must be >= 1 when set")
        if not self.proxy_tiers_enabled:
            raise ConfigurationError("proxy_tiers_enabled", "at least one tier is required")

    @property
    def lowest_tier(self) -> ProxyTier:
        return self.proxy_tiers_enabled[0]

    def next_enabled_tier(self, tier: ProxyTier) -> Optional[ProxyTier]:
        for candidate in self.proxy_tiers_enabled:
            if candidate > tier:
                return candidate
        return None

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (1-based)."""
        exponent = max(int(retry_number) - 1, 0)
        return min(self.backoff_base * (self.backoff_multiplier ** exponent), self.backoff_max)

    def with_overrides(self, values: Mapping[str, Any]) -> "AcquisitionSettings":
        known = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(sorted(unknown)[0], "unknown option")
        try:
            return replace(self, **{k: _coerce(k, v) for k, v in values.items()})
        except (TypeError, ValueError) as e:
            raise ConfigurationError(", ".join(sorted(values)), str(e)) from e

    @classmethod
    def from_env(cls) -> "AcquisitionSettings":
        d = cls()
        max_targets = env.get_optional_int_env("TRAILCRAWL_MAX_TARGETS")
        try:
            return cls(
                max_attempts_per_target=env.get_int_env("TRAILCRAWL_MAX_ATTEMPTS_PER_TARGET", d.max_attempts_per_target),
                escalation_threshold_per_tier=env.get_int_env("TRAILCRAWL_ESCALATION_THRESHOLD_PER_TIER", d.escalation_threshold_per_tier),
                backoff_base=env.get_float_env("TRAILCRAWL_BACKOFF_BASE", d.backoff_base),
                backoff_multiplier=env.get_float_env("TRAILCRAWL_BACKOFF_MULTIPLIER", d.backoff_multiplier),
                backoff_max=env.get_float_env("TRAILCRAWL_BACKOFF_MAX", d.backoff_max),
                block_status_codes=env.get_list_env("TRAILCRAWL_BLOCK_STATUS_CODES", d.block_status_codes),
                give_up_status_codes=env.get_list_env("TRAILCRAWL_GIVE_UP_STATUS_CODES", d.give_up_status_codes),
                request_timeout=env.get_float_env("TRAILCRAWL_REQUEST_TIMEOUT", d.request_timeout),
                proxy_tiers_enabled=env.get_list_env("TRAILCRAWL_PROXY_TIERS_ENABLED", d.proxy_tiers_enabled),
                quarantine_threshold=env.get_float_env("TRAILCRAWL_QUARANTINE_THRESHOLD", d.quarantine_threshold),
                quarantine_window=env.get_int_env("TRAILCRAWL_QUARANTINE_WINDOW", d.quarantine_window),
                quarantine_min_samples=env.get_int_env("TRAILCRAWL_QUARANTINE_MIN_SAMPLES", d.quarantine_min_samples),
                quarantine_cooldown=env.get_float_env("TRAILCRAWL_QUARANTINE_COOLDOWN", d.quarantine_cooldown),
                ema_alpha=env.get_float_env("TRAILCRAWL_EMA_ALPHA", d.ema_alpha),
                acquire_timeout=env.get_float_env("TRAILCRAWL_ACQUIRE_TIMEOUT", d.acquire_timeout),
                per_host_concurrency=env.get_int_env("TRAILCRAWL_PER_HOST_CONCURRENCY", d.per_host_concurrency),
                per_host_delay=env.get_float_env("TRAILCRAWL_PER_HOST_DELAY", d.per_host_delay),
                per_host_jitter=env.get_float_env("TRAILCRAWL_PER_HOST_JITTER", d.per_host_jitter),
                global_concurrency=env.get_int_env("TRAILCRAWL_GLOBAL_CONCURRENCY", d.global_concurrency),
                max_depth=env.get_int_env("TRAILCRAWL_MAX_DEPTH", d.max_depth),
                max_targets=max_targets,
                follow_external_links=env.get_bool_env("TRAILCRAWL_FOLLOW_EXTERNAL_LINKS", d.follow_external_links),
                sink_max_attempts=env.get_int_env("TRAILCRAWL_SINK_MAX_ATTEMPTS", d.sink_max_attempts),
            )
        except ValueError as e:
            raise ConfigurationError("environment", str(e)) from e


_TUPLE_OPTIONS = ("block_status_codes", "give_up_status_codes", "proxy_tiers_enabled")


def _coerce(name: str, value: Any) -> Any:
    if name in _TUPLE_OPTIONS:
        if isinstance(value, str):
            return tuple(v.strip() for v in value.split(",") if v.strip())
        return tuple(value or ())
    return value
