from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional


@dataclass
class OperationRecord:
    id: str
    name: str
    status: str
    started_at: datetime
    last_seen: datetime
    finished_at: Optional[datetime] = None
    targets_done: int = 0
    delivered: int = 0
    exhausted: int = 0
    cancelled: int = 0
    current_uri: Optional[str] = None
    error: Optional[str] = None
    recent_uris: Deque[str] = field(default_factory=lambda: deque(maxlen=20))


@dataclass(frozen=True)
class OperationHandle:
    operation_id: str
    stop_event: threading.Event
