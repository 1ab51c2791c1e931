import logging
import socket
import threading
import time
from typing import Callable, Dict, NamedTuple, Optional

import requests

from trailcrawl.domain.identity import Identity
from trailcrawl.exceptions import FetchTimeout, HttpFetchError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class HttpResponse(NamedTuple):
    """Response from HTTP fetch operation."""
    status_code: int
    body: bytes
    content_type: Optional[str] = None
    final_url: Optional[str] = None


def _error_kind(exc: requests.exceptions.RequestException) -> str:
    if isinstance(exc, requests.exceptions.ProxyError):
        return "proxy"
    if isinstance(exc, requests.exceptions.SSLError):
        return "ssl"
    if isinstance(exc, requests.exceptions.TooManyRedirects):
        return "too_many_redirects"
    if isinstance(exc, (requests.exceptions.ChunkedEncodingError, requests.exceptions.ContentDecodingError)):
        return "read"
    if isinstance(exc, requests.exceptions.ConnectionError):
        return "connect"
    if isinstance(exc, requests.exceptions.InvalidURL):
        return "invalid_url"
    return "other"


def _response_socket(resp):
    """The socket a streamed response is being read from, when urllib3 exposes it."""
    raw = getattr(resp, "raw", None)
    conn = getattr(raw, "_connection", None)
    return getattr(conn, "sock", None)


class _ReadWatchdog:
    """Shuts down a response's socket once the fetch deadline passes.

    A blocked read then returns early, so a server that drips bytes cannot hold
    an attempt past its timeout.
    """

    def __init__(self, resp, remaining: float):
        self.resp = resp
        self._fired = threading.Event()
        self._timer = threading.Timer(max(remaining, 0.0), self._expire)
        self._timer.daemon = True
        self._timer.start()

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def _expire(self) -> None:
        self._fired.set()
        sock = _response_socket(self.resp)
        if sock is None:
            self.resp.close()
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket already closed at deadline: %s", e)

    def cancel(self) -> None:
        self._timer.cancel()


class HttpService:
    """
    HTTP client wrapper that fetches through an identity's proxy and headers.

    Keeps one `requests.Session` per identity so cookies stay coherent for
    that identity. An identity is only ever borrowed by one worker, so a
    session is never used by two threads at once.

    The body is streamed under a hard wall-clock deadline. It is checked
    between chunks, and a watchdog shuts the socket down when the deadline
    passes in the middle of a read.
    """

    def __init__(
        self,
        session_factory: Callable[[], requests.Session] = requests.Session,
        clock: Callable[[], float] = time.monotonic,
        max_body_bytes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.max_body_bytes = max_body_bytes
        self._sessions: Dict[str, requests.Session] = {}
        self._lock = threading.Lock()

    def session_for(self, identity: Identity) -> requests.Session:
        with self._lock:
            session = self._sessions.get(identity.identity_id)
            if session is None:
                session = self.session_factory()
                self._sessions[identity.identity_id] = session
            return session

    def fetch(self, url: str, identity: Identity, timeout: float, headers: Optional[dict] = None) -> HttpResponse:
        """Fetch `url` through `identity`; raise FetchTimeout or HttpFetchError on failure."""
        session = self.session_for(identity)
        deadline = self.clock() + timeout
        received = 0
        watchdog: Optional[_ReadWatchdog] = None
        try:
            resp = session.get(
                url,
                headers=headers if headers is not None else identity.headers(),
                proxies=identity.proxies(),
                timeout=(timeout, timeout),
                stream=True,
                allow_redirects=True,
            )
            watchdog = _ReadWatchdog(resp, deadline - self.clock())
            try:
                chunks = []
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        chunks.append(chunk)
                        received += len(chunk)
                    if watchdog.fired or self.clock() > deadline:
                        raise FetchTimeout(url, timeout, received)
                    if self.max_body_bytes is not None and received > self.max_body_bytes:
                        raise HttpFetchError(url, ValueError(f"body exceeds {self.max_body_bytes} bytes"), kind="too_large")
            finally:
                watchdog.cancel()
                resp.close()
        except (FetchTimeout, HttpFetchError):
            raise
        except requests.exceptions.Timeout as e:
            raise FetchTimeout(url, timeout, received) from e
        except requests.exceptions.RequestException as e:
            # requests reports a stalled or aborted body read as ConnectionError.
            if (watchdog is not None and watchdog.fired) or self.clock() > deadline:
                raise FetchTimeout(url, timeout, received) from e
            raise HttpFetchError(url, e, kind=_error_kind(e)) from e
        except Exception as e:
            # A read cut off by the watchdog can surface as a raw urllib3 or socket error.
            if watchdog is not None and watchdog.fired:
                raise FetchTimeout(url, timeout, received) from e
            raise

        if watchdog.fired or self.clock() > deadline:
            raise FetchTimeout(url, timeout, received)

        # Let real exceptions from header access bubble up.
        ct = None
        if hasattr(resp, 'headers'):
            ct = resp.headers.get('Content-Type')

        return HttpResponse(resp.status_code, b"".join(chunks), ct, getattr(resp, "url", None) or url)

    def close(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
