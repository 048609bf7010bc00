# career_match/limits.py
from __future__ import annotations

import contextlib
import threading
from typing import Dict, Iterator, Optional

from career_match.errors import ConfigurationError, PipelineCancelled
from career_match.utils import host_of, registrable_domain


class SlotLease:
    """
    One held domain slot. release() is idempotent and may be called from any
    thread, so a coordinator can free the slot of an attempt it gave up on
    while the stuck worker still sits inside the `with` block.
    """

    def __init__(self, sem: threading.BoundedSemaphore):
        self._sem = sem
        self._lock = threading.Lock()
        self._held = True

    @property
    def held(self) -> bool:
        return self._held

    def release(self) -> bool:
        with self._lock:
            if not self._held:
                return False
            self._held = False
        self._sem.release()
        return True


class DomainLimiter:
    """
    At most `per_domain` concurrent fetches per registrable domain
    ("careers.acme.com" and "jobs.acme.com" share a slot pool).
    """

    def __init__(self, per_domain: int, poll_interval: float = 0.1):
        if per_domain <= 0:
            raise ConfigurationError(f"per_domain_concurrency must be > 0 (got {per_domain})")
        self.per_domain = per_domain
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._sems: Dict[str, threading.BoundedSemaphore] = {}

    def _sem(self, key: str) -> threading.BoundedSemaphore:
        with self._lock:
            sem = self._sems.get(key)
            if sem is None:
                sem = threading.BoundedSemaphore(self.per_domain)
                self._sems[key] = sem
            return sem

    @staticmethod
    def key_for(url: str) -> str:
        host = host_of(url)
        return registrable_domain(host) or host or url

    @contextlib.contextmanager
    def slot(self, url: str, cancel_event: Optional[threading.Event] = None) -> Iterator[SlotLease]:
        sem = self._sem(self.key_for(url))
        while not sem.acquire(timeout=self.poll_interval):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(f"cancelled while waiting for a slot on {url}")
        lease = SlotLease(sem)
        try:
            yield lease
        finally:
            lease.release()
