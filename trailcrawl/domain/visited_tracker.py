import threading
from collections import OrderedDict
from typing import Optional


class VisitedTracker:
    """
    Seen-set of normalized target URIs for one acquisition operation.

    Shared by every worker, so inserts go through `add_if_absent`, which checks
    and marks under one lock. With `max_size` set, the oldest URIs are evicted
    first; leave it unset when a revisit must never happen.
    """

    def __init__(self, max_size: Optional[int] = None):
        self._max_size = int(max_size) if max_size is not None else None
        if self._max_size is not None and self._max_size <= 0:
            self._max_size = None

        self._lock = threading.Lock()
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def add_if_absent(self, uri: str) -> bool:
        """Mark `uri` as seen. Returns False when it was already seen."""
        with self._lock:
            if uri in self._seen:
                return False
            self._seen[uri] = None
            if self._max_size is not None:
                while len(self._seen) > self._max_size:
                    self._seen.popitem(last=False)
            return True

    def mark(self, uri: str) -> None:
        self.add_if_absent(uri)

    def is_visited(self, uri: str) -> bool:
        with self._lock:
            return uri in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
