from __future__ import annotations

import threading
import time
from collections import defaultdict

from fastapi import HTTPException

from clientdesk.core.settings import settings

# bucket por minuto, clave = (user_id, purchase_id, minute_bucket)
_RL_COUNTER: dict[tuple[int, int, int], int] = defaultdict(int)
_RL_LOCK = threading.Lock()


def check_write_rate_limit(user_id: int, purchase_id: int) -> None:
    """
    Limita escrituras por usuario y compra en ventana de 1 minuto.
    Respeta settings.RATELIMIT_ENABLED y settings.RATELIMIT_WRITE_PER_MIN.
    Lanza HTTP 429 si se excede.
    """
    if not settings.RATELIMIT_ENABLED:
        return
    limit = int(settings.RATELIMIT_WRITE_PER_MIN or 0)
    if limit <= 0:
        return
    bucket = int(time.time() // 60)
    key = (int(user_id), int(purchase_id), bucket)
    with _RL_LOCK:
        _RL_COUNTER[key] += 1
        count = _RL_COUNTER[key]
    if count > limit:
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers={"Retry-After": "60"})


def reset_rate_limits() -> None:
    with _RL_LOCK:
        _RL_COUNTER.clear()
