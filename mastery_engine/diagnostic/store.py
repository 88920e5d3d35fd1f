"""
Ephemeral diagnostic state store.

States live in a cachetools.TTLCache: an idle run expires after
``ttl_seconds`` and the cache holds at most ``maxsize`` runs (least
recently used evicted first). TTLCache is not thread-safe, so every access
goes through one lock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from cachetools import TTLCache
from loguru import logger

from mastery_engine.core.errors import NotFoundError
from mastery_engine.diagnostic.models import DiagnosticState


class DiagnosticStateStore:
    def __init__(
        self,
        ttl_seconds: int | None = None,
        maxsize: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds is None or maxsize is None:
            from config import get_settings

            settings = get_settings()
            ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.diagnostic_ttl_seconds
            maxsize = maxsize if maxsize is not None else settings.diagnostic_cache_size

        self.ttl_seconds = ttl_seconds
        self._cache: TTLCache[str, DiagnosticState] = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._cache

    def put(self, state: DiagnosticState) -> None:
        with self._lock:
            self._cache[state.session_id] = state

    def get(self, session_id: str) -> DiagnosticState:
        """
        Raises:
            NotFoundError: Unknown or expired session
        """
        with self._lock:
            state = self._cache.get(session_id)
        if state is None:
            raise NotFoundError("Diagnostic session", session_id)
        return state

    def apply(
        self, session_id: str, fn: Callable[[DiagnosticState], DiagnosticState]
    ) -> DiagnosticState:
        """Atomic read-modify-write; ``fn`` runs under the store lock."""
        with self._lock:
            state = self._cache.get(session_id)
            if state is None:
                raise NotFoundError("Diagnostic session", session_id)
            updated = fn(state)
            self._cache[session_id] = updated
            return updated

    def discard(self, session_id: str) -> bool:
        with self._lock:
            removed = self._cache.pop(session_id, None) is not None
        if removed:
            logger.debug(f"Diagnostic state {session_id} discarded")
        return removed
