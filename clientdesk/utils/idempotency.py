# clientdesk/utils/idempotency.py
# Idempotency-Key para subidas: un reintento del admin no crea otra versión.
from __future__ import annotations

import threading
import time
from typing import Dict, NamedTuple, Optional

from starlette.responses import Response

from clientdesk.core.settings import settings

MAX_ENTRIES = 10_000
_REPLAY_HEADERS = {"content-type", "location"}


class CachedResponse(NamedTuple):
    expires_at: float
    status_code: int
    body: bytes
    headers: Dict[str, str]


class IdempotencyCache:
    """
    Memoria de proceso con TTL. Con varios workers cada uno tiene la suya.
    """

    def __init__(self, max_entries: int = MAX_ENTRIES) -> None:
        self._store: Dict[str, CachedResponse] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries

    def get(self, key: str) -> Optional[CachedResponse]:
        with self._lock:
            hit = self._store.get(key)
            if hit is None:
                return None
            if hit.expires_at < time.time():
                del self._store[key]
                return None
            return hit

    def put(self, key: str, status_code: int, body: bytes, headers: Dict[str, str]) -> None:
        ttl = max(0.0, float(settings.IDEMPOTENCY_TTL_SECONDS or 0))
        entry = CachedResponse(time.time() + ttl, int(status_code), body, dict(headers))
        with self._lock:
            if key not in self._store and len(self._store) >= self._max_entries:
                self._evict_locked()
            self._store[key] = entry

    def _evict_locked(self) -> None:
        now = time.time()
        for k in [k for k, v in self._store.items() if v.expires_at < now]:
            del self._store[k]
        if len(self._store) >= self._max_entries:
            # la que vence antes
            oldest = min(self._store, key=lambda k: self._store[k].expires_at)
            del self._store[oldest]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


idempotency_cache = IdempotencyCache()


def scoped_key(user_id: int, key: Optional[str]) -> Optional[str]:
    # la misma key de dos usuarios distintos no colisiona
    key = (key or "").strip()
    return f"u{user_id}:{key}" if key else None


def maybe_replay_idempotent(key: Optional[str]) -> Optional[Response]:
    if not settings.IDEMPOTENCY_ENABLED or not key:
        return None
    hit = idempotency_cache.get(key)
    if hit is None:
        return None
    resp = Response(
        content=hit.body,
        status_code=hit.status_code,
        media_type=hit.headers.get("content-type", "application/json"),
    )
    resp.headers.update(hit.headers)
    resp.headers["Idempotent-Replay"] = "true"
    return resp


def remember_idempotent_success(key: Optional[str], response: Response) -> None:
    """
    Solo 2xx: un error se puede reintentar con la misma key.
    """
    if not settings.IDEMPOTENCY_ENABLED or not key:
        return
    if not 200 <= response.status_code < 300:
        return
    headers = {k: v for k, v in response.headers.items() if k.lower() in _REPLAY_HEADERS}
    idempotency_cache.put(key, response.status_code, response.body or b"", headers)
