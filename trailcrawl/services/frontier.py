from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional

from trailcrawl.domain.settings import AcquisitionSettings
from trailcrawl.domain.target import Target, host_of, normalize_url
from trailcrawl.domain.visited_tracker import VisitedTracker

logger = logging.getLogger(__name__)


def same_site(base: str, other: str) -> bool:
    """True when `other` is on the host of `base` or one of its subdomains."""
    b = host_of(base)
    o = host_of(other)
    return bool(b and o) and (b == o or o.endswith("." + b))


class Frontier:
    """Deduplicated queue of pending targets with per-host throttling.

    A host counts as busy while `per_host_concurrency` of its targets are
    being processed. `wait_for_turn` additionally spaces attempt starts on a
    host by `per_host_delay` plus up to `per_host_jitter` seconds.
    """

    def __init__(
        self,
        settings: AcquisitionSettings,
        visited_tracker: Optional[VisitedTracker] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.visited = visited_tracker if visited_tracker is not None else VisitedTracker()
        self._clock = clock
        self._rng = rng or random.Random()
        self._cond = threading.Condition()
        self._pending: Deque[Target] = deque()
        self._in_flight: Dict[str, int] = {}
        self._next_start: Dict[str, float] = {}
        self._seed_hosts: List[str] = []
        self._admitted = 0

    def _admit(self, target: Target) -> bool:
        """Caller holds the condition."""
        if target.depth > self.settings.max_depth:
            logger.debug("Skipping (max depth reached) %s", target.uri)
            return False
        if self.settings.max_targets is not None and self._admitted >= self.settings.max_targets:
            logger.debug("Skipping (visit limit reached) %s", target.uri)
            return False
        if not self.visited.add_if_absent(target.uri):
            logger.debug("Skipping (seen) %s", target.uri)
            return False
        self._admitted += 1
        self._pending.append(target)
        return True

    def seed(self, urls: Iterable[str]) -> int:
        """Queue seed URLs in order. Returns how many were new."""
        added = 0
        with self._cond:
            for url in urls:
                try:
                    target = Target.create(url, origin=None, depth=0)
                except ValueError as e:
                    logger.warning("Ignoring invalid seed %r: %s", url, e)
                    continue
                if target.host not in self._seed_hosts:
                    self._seed_hosts.append(target.host)
                if self._admit(target):
                    added += 1
            self._cond.notify_all()
        return added

    def _in_scope(self, origin: str, uri: str) -> bool:
        if self.settings.follow_external_links:
            return True
        if same_site(origin, uri):
            return True
        return any(same_site(f"http://{h}/", uri) for h in self._seed_hosts)

    def discover(self, urls: Iterable[str], origin: Target) -> int:
        """Queue links found on `origin`. Returns how many were new."""
        depth = origin.depth + 1
        if depth > self.settings.max_depth:
            return 0
        added = 0
        with self._cond:
            for url in urls:
                try:
                    uri = normalize_url(url)
                except ValueError:
                    continue
                if not self._in_scope(origin.uri, uri):
                    logger.debug("Skipping (external) %s -> not same host as %s", uri, origin.uri)
                    continue
                if self._admit(Target(uri=uri, origin=origin.uri, depth=depth)):
                    added += 1
            if added:
                self._cond.notify_all()
        return added

    def _host_has_capacity(self, host: str) -> bool:
        return self._in_flight.get(host, 0) < self.settings.per_host_concurrency

    def _pop_ready(self) -> Optional[Target]:
        for i, target in enumerate(self._pending):
            if self._host_has_capacity(target.host):
                del self._pending[i]
                self._in_flight[target.host] = self._in_flight.get(target.host, 0) + 1
                return target
        return None

    def _finished(self) -> bool:
        return not self._pending and not any(self._in_flight.values())

    def next_target(self, stop_event: Optional[threading.Event] = None, poll_interval: float = 0.25) -> Optional[Target]:
        """Block until a target can be dispatched.

        Returns None when the queue is empty and nothing is in flight, or
        when `stop_event` is set.
        """
        with self._cond:
            while True:
                if stop_event is not None and stop_event.is_set():
                    return None
                target = self._pop_ready()
                if target is not None:
                    return target
                if self._finished():
                    self._cond.notify_all()
                    return None
                self._cond.wait(timeout=poll_interval)

    def wait_for_turn(self, host: str, stop_event: Optional[threading.Event] = None) -> bool:
        """Reserve the next start slot on `host` and sleep until it arrives.

        Returns False if stopped while waiting.
        """
        with self._cond:
            now = self._clock()
            start_at = max(now, self._next_start.get(host, now))
            spacing = self.settings.per_host_delay
            if self.settings.per_host_jitter > 0:
                spacing += self._rng.uniform(0, self.settings.per_host_jitter)
            self._next_start[host] = start_at + spacing
        delay = start_at - now
        if delay <= 0:
            return not (stop_event is not None and stop_event.is_set())
        if stop_event is not None:
            return not stop_event.wait(delay)
        time.sleep(delay)
        return True

    def complete(self, target: Target) -> None:
        with self._cond:
            count = self._in_flight.get(target.host, 0)
            if count <= 1:
                self._in_flight.pop(target.host, None)
            else:
                self._in_flight[target.host] = count - 1
            self._cond.notify_all()

    def drain(self) -> List[Target]:
        """Remove and return every target still waiting to be dispatched."""
        with self._cond:
            drained = list(self._pending)
            self._pending.clear()
            self._cond.notify_all()
            return drained

    def in_flight(self, host: Optional[str] = None) -> int:
        with self._cond:
            if host is not None:
                return self._in_flight.get(host, 0)
            return sum(self._in_flight.values())

    def pending(self) -> int:
        with self._cond:
            return len(self._pending)
