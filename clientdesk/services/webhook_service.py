# clientdesk/services/webhook_service.py
# Seam hacia el servicio de notificaciones: eventos del workflow firmados con HMAC
from __future__ import annotations

import asyncio
import hmac
import hashlib
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Tuple

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from clientdesk.core.settings import settings
from clientdesk.models.webhook import WebhookEndpoint

logger = logging.getLogger(__name__)

# Eventos que emite el workflow
DELIVERABLE_UPLOADED = "deliverable.uploaded"
DELIVERABLE_APPROVED = "deliverable.approved"
REVISION_REQUESTED = "revision.requested"
REVISION_COMPLETED = "revision.completed"

# Estructura de endpoints resuelta en el request (la sesión no vive hasta el background task)
# [{"url": "...", "secret": "...", "events": ["deliverable.uploaded", ...]}]


def get_endpoints(db: Session) -> List[Dict[str, Any]]:
    """
    Endpoints habilitados. Los tests pueden monkeypatchear esta función.
    """
    if not settings.WEBHOOKS_ENABLED:
        return []
    out: List[Dict[str, Any]] = []
    for ep in db.scalars(select(WebhookEndpoint).where(WebhookEndpoint.is_enabled.is_(True))):
        events = [e.strip() for e in (ep.event_filter or "").split(",") if e.strip()]
        out.append(
            {
                "url": ep.url,
                "secret": ep.secret,
                "events": events or list(settings.WEBHOOKS_DEFAULT_EVENTS),
            }
        )
    return out


def _sign(secret: str, timestamp: str, body_bytes: bytes) -> str:
    # SHA256-HMAC sobre "<ts>." + body
    msg = (timestamp + ".").encode("utf-8") + body_bytes
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _headers(secret: str, event: str, delivery_id: str, ts: str, body_bytes: bytes) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Webhook-Event": event,
        "X-Webhook-Id": delivery_id,
        "X-Webhook-Timestamp": ts,
        "X-Webhook-Signature": _sign(secret, ts, body_bytes),
    }


async def _deliver_once(url: str, headers: Dict[str, str], body: bytes, timeout: float) -> Tuple[bool, int | None]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(url, content=body, headers=headers)
    return 200 <= resp.status_code < 300, resp.status_code


async def _deliver_with_retries(
    url: str,
    headers: Dict[str, str],
    body: bytes,
    timeout: float,
    max_retries: int,
    backoff_seconds: float,
) -> Tuple[bool, int | None]:
    last_code: int | None = None
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            ok, last_code = await _deliver_once(url, headers, body, timeout)
        except httpx.HTTPError as e:
            logger.warning("Webhook %s attempt %s/%s failed: %s", url, attempt, attempts, e)
            ok = False
        if ok:
            return True, last_code
        if attempt < attempts:
            await asyncio.sleep(backoff_seconds * attempt)
    logger.error("Webhook %s gave up after %s attempts (last status %s)", url, attempts, last_code)
    return False, last_code


async def emit_event_async(endpoints: List[Dict[str, Any]], event: str, payload: Dict[str, Any]) -> None:
    """
    Despacha `event` a los endpoints suscritos. La transición ya está
    confirmada cuando esto corre; una entrega fallida no la revierte.
    El mismo X-Webhook-Id viaja en todos los reintentos (el receptor deduplica).
    """
    if not settings.WEBHOOKS_ENABLED or not endpoints:
        return

    envelope = {"event": event, "data": payload}
    body_bytes = json.dumps(envelope, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")
    ts = str(int(time.time()))
    delivery_id = uuid.uuid4().hex

    deliveries = [
        _deliver_with_retries(
            url=str(ep["url"]),
            headers=_headers(str(ep["secret"]), event, delivery_id, ts, body_bytes),
            body=body_bytes,
            timeout=float(settings.WEBHOOKS_TIMEOUT_SECONDS),
            max_retries=int(settings.WEBHOOKS_MAX_RETRIES),
            backoff_seconds=float(settings.WEBHOOKS_BACKOFF_SECONDS),
        )
        for ep in endpoints
        if not ep.get("events") or event in ep["events"]
    ]
    if not deliveries:
        return

    if settings.WEBHOOKS_SYNC_FOR_TEST:
        # en serie: el test ve las entregas en orden
        for d in deliveries:
            await d
    else:
        await asyncio.gather(*deliveries)
