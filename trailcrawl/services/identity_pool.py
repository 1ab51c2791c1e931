from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional

from trailcrawl.domain.identity import Identity, ProxyTier
from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.exceptions import PoolExhausted

logger = logging.getLogger(__name__)

# How often a waiting acquire looks at its stop event.
_STOP_POLL = 0.05

# Identities with a poor score still get sampled now and then so they can recover.
_MIN_WEIGHT = 0.05


@dataclass
class _IdentityHealth:
    identity: Identity
    score: float = 1.0
    window: Deque[bool] = field(default_factory=deque)
    borrowed: bool = False
    quarantined_until: Optional[float] = None
    successes: int = 0
    failures: int = 0


class IdentityPool:
    """Owns every egress identity and lends them out one attempt at a time.

    Selection is weighted random within the lowest eligible tier, weighted by
    an exponential moving average of recent outcomes. Identities whose failure
    ratio over the last `quarantine_window` outcomes crosses
    `quarantine_threshold` are held back for `quarantine_cooldown` seconds.
    """

    def __init__(
        self,
        identities: Iterable[Identity],
        settings: AcquisitionSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self._clock = clock
        self._rng = rng or random.Random()
        self._cond = threading.Condition()
        self._health: Dict[str, _IdentityHealth] = {}
        for identity in identities:
            if identity.identity_id in self._health:
                raise ValueError(f"duplicate identity id {identity.identity_id!r}")
            self._health[identity.identity_id] = _IdentityHealth(
                identity=identity,
                window=deque(maxlen=settings.quarantine_window),
            )

    def __len__(self) -> int:
        return len(self._health)

    def _lift_expired_quarantines(self, now: float) -> None:
        for h in self._health.values():
            if h.quarantined_until is not None and now >= h.quarantined_until:
                logger.info("Identity %s leaves quarantine", h.identity.identity_id)
                h.quarantined_until = None
                h.window.clear()

    def _is_quarantined(self, h: _IdentityHealth) -> bool:
        return h.quarantined_until is not None

    def _eligible_tier(self, tier_hint: ProxyTier) -> Optional[ProxyTier]:
        """Lowest enabled tier >= hint that still has a non-quarantined identity."""
        for tier in self.settings.proxy_tiers_enabled:
            if tier < tier_hint:
                continue
            if any(h.identity.tier == tier and not self._is_quarantined(h) for h in self._health.values()):
                return tier
        return None

    def _pick(self, tier: ProxyTier, exclude: frozenset) -> Optional[_IdentityHealth]:
        free = [
            h for h in self._health.values()
            if h.identity.tier == tier and not h.borrowed and not self._is_quarantined(h)
        ]
        if not free:
            return None
        preferred = [h for h in free if h.identity.identity_id not in exclude] or free
        weights = [max(h.score, _MIN_WEIGHT) for h in preferred]
        return self._rng.choices(preferred, weights=weights, k=1)[0]

    def acquire(
        self,
        tier_hint: Optional[ProxyTier] = None,
        exclude: Iterable[str] = (),
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[Identity]:
        """Borrow an identity whose tier matches or exceeds `tier_hint`.

        `exclude` names identity ids to avoid when anything else is free.
        Raises `PoolExhausted` when no identity of the tier or above can be
        lent, including when every eligible one stays borrowed for
        `acquire_timeout` seconds. Returns None when `stop_event` is set
        while waiting for a borrowed identity to come back.
        """
        tier_hint = tier_hint or self.settings.lowest_tier
        exclude = frozenset(exclude)
        deadline = self._clock() + self.settings.acquire_timeout
        with self._cond:
            while True:
                now = self._clock()
                self._lift_expired_quarantines(now)
                tier = self._eligible_tier(tier_hint)
                if tier is None:
                    raise PoolExhausted(tier_hint, "no identity of this tier or above outside quarantine")
                picked = self._pick(tier, exclude)
                if picked is not None:
                    picked.borrowed = True
                    logger.debug("Lent identity %s (tier=%s)", picked.identity.identity_id, tier.label)
                    return picked.identity
                if stop_event is not None and stop_event.is_set():
                    return None
                remaining = deadline - now
                if remaining <= 0:
                    raise PoolExhausted(tier_hint, "all eligible identities are borrowed")
                # Wake periodically so expired quarantines and stop requests are noticed.
                self._cond.wait(timeout=min(remaining, 0.5 if stop_event is None else _STOP_POLL))

    def _record(self, h: _IdentityHealth, success: bool) -> None:
        alpha = self.settings.ema_alpha
        h.score = alpha * (1.0 if success else 0.0) + (1 - alpha) * h.score
        h.window.append(bool(success))
        if success:
            h.successes += 1
        else:
            h.failures += 1
        if len(h.window) >= self.settings.quarantine_min_samples:
            failure_ratio = h.window.count(False) / len(h.window)
            if failure_ratio >= self.settings.quarantine_threshold and not self._is_quarantined(h):
                h.quarantined_until = self._clock() + self.settings.quarantine_cooldown
                logger.warning(
                    "Identity %s quarantined for %.0fs (failure ratio %.2f over %d outcomes)",
                    h.identity.identity_id,
                    self.settings.quarantine_cooldown,
                    failure_ratio,
                    len(h.window),
                )

    def _health_for(self, identity: Identity) -> _IdentityHealth:
        try:
            return self._health[identity.identity_id]
        except KeyError:
            raise ValueError(f"identity {identity.identity_id!r} is not owned by this pool") from None

    def observe(self, identity: Identity, success: bool) -> None:
        """Update health for an identity the caller is still holding."""
        with self._cond:
            self._record(self._health_for(identity), success)

    def release(self, identity: Identity, health_signal: Optional[bool] = None) -> None:
        """Return a borrowed identity; a boolean signal updates its health."""
        with self._cond:
            h = self._health_for(identity)
            if not h.borrowed:
                logger.warning("Release of identity %s that was not borrowed", identity.identity_id)
            h.borrowed = False
            if health_signal is not None:
                self._record(h, health_signal)
            self._cond.notify_all()

    def is_quarantined(self, identity: Identity) -> bool:
        with self._cond:
            self._lift_expired_quarantines(self._clock())
            return self._is_quarantined(self._health_for(identity))

    def quarantine(self, identity: Identity, seconds: Optional[float] = None) -> None:
        """Manually bench an identity, e.g. when a provider reports it dead."""
        with self._cond:
            h = self._health_for(identity)
            cooldown = self.settings.quarantine_cooldown if seconds is None else float(seconds)
            h.quarantined_until = self._clock() + cooldown

    def snapshot(self) -> List[dict]:
        with self._cond:
            now = self._clock()
            return [
                {
                    "identity_id": h.identity.identity_id,
                    "tier": h.identity.tier.label,
                    "proxy": h.identity.proxy_label,
                    "score": round(h.score, 4),
                    "successes": h.successes,
                    "failures": h.failures,
                    "borrowed": h.borrowed,
                    "quarantined_for": max(h.quarantined_until - now, 0.0) if h.quarantined_until is not None else 0.0,
                }
                for h in self._health.values()
            ]
