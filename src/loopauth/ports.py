"""Ephemeral port probing for loopback listeners."""

from __future__ import annotations

import logging
import socket
import threading

from loopauth.log_utils import log_event
from loopauth.settings import DYNAMIC_PORT_END, DYNAMIC_PORT_START

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"


def _can_bind(host: str, port: int) -> bool:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind((host, port))
            probe.listen(1)
    except OSError:
        return False
    return True


def find_available_port(
    host: str = LOOPBACK_HOST,
    start: int = DYNAMIC_PORT_START,
    end: int = DYNAMIC_PORT_END,
    *,
    skip: frozenset[int] | set[int] = frozenset(),
) -> int | None:
    """Return the first port in [start, end) that accepts a bind, or None.

    The probe socket is closed before returning, so the caller's listener has
    to bind the port again; another process may take it in between.
    """
    for port in range(start, end):
        if port in skip:
            continue
        if _can_bind(host, port):
            return port
    return None


class PortAllocator:
    """Hand out probed ports, never the same one to two live flows.

    Every call probes again. The reservation set only covers ports already
    handed out whose listeners have not released them yet.
    """

    def __init__(
        self,
        host: str = LOOPBACK_HOST,
        start: int = DYNAMIC_PORT_START,
        end: int = DYNAMIC_PORT_END,
    ) -> None:
        self.host = host
        self.start = start
        self.end = end
        self._lock = threading.Lock()
        self._reserved: set[int] = set()

    @property
    def reserved(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._reserved)

    def allocate(self) -> int | None:
        with self._lock:
            port = find_available_port(self.host, self.start, self.end, skip=self._reserved)
            if port is None:
                log_event(logger, "ports.exhausted", level=logging.WARNING, start=self.start, end=self.end)
                return None
            self._reserved.add(port)
        log_event(logger, "ports.allocated", level=logging.DEBUG, port=port)
        return port

    def release(self, port: int) -> None:
        with self._lock:
            self._reserved.discard(port)
        log_event(logger, "ports.released", level=logging.DEBUG, port=port)


_SHARED_ALLOCATORS: dict[tuple[str, int, int], PortAllocator] = {}
_SHARED_LOCK = threading.Lock()


def shared_allocator(
    host: str = LOOPBACK_HOST,
    start: int = DYNAMIC_PORT_START,
    end: int = DYNAMIC_PORT_END,
) -> PortAllocator:
    """Process-wide allocator for a host and port range."""
    key = (host, start, end)
    with _SHARED_LOCK:
        allocator = _SHARED_ALLOCATORS.get(key)
        if allocator is None:
            allocator = _SHARED_ALLOCATORS[key] = PortAllocator(host, start, end)
        return allocator
