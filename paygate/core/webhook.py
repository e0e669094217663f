from __future__ import annotations

import asyncio
import hmac
import hashlib
import json
import time
from typing import Dict, Any, Tuple, Optional

import httpx

from paygate.core.config import settings


# ------------------------------------------------------------
# Helpers firma HMAC
# ------------------------------------------------------------
def _hmac_digest(secret: str, message: bytes, algo: str = "sha256") -> str:
    """
    Calcola HMAC esadecimale con algoritmo scelto (sha256/sha512...).
    """
    algo = algo.lower()
    if not hasattr(hashlib, algo):
        raise ValueError(f"Unsupported HMAC algo: {algo}")
    return hmac.new(secret.encode("utf-8"), message, getattr(hashlib, algo)).hexdigest()


# ------------------------------------------------------------
# Webhook POST con retry + firma HMAC e timestamp anti-replay
# ------------------------------------------------------------
async def post_webhook(
    event_type: str,
    payload: Dict[str, Any],
    *,
    url: Optional[str] = None,
    secret: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_retries: Optional[int] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Invia un webhook verso il layer UI (bot) con:
      - Body JSON: {"event_type": <str>, "payload": <dict>}
      - Header firma HMAC opzionale: X-Webhook-Signature
      - Header timestamp anti-replay: X-Webhook-Timestamp
      - Header tipo evento: X-Webhook-Event

    Ritorna (ok, error) dove error è None se ok=True.
    """
    target_url = (url or settings.NOTIFY_WEBHOOK_URL or "").strip()
    if not target_url:
        return False, "NOTIFY_WEBHOOK_URL not configured"

    body_dict = {"event_type": event_type, "payload": payload}
    body_bytes = json.dumps(body_dict, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")

    headers: Dict[str, str] = {
        "Content-Type": "application/json",
        "X-Webhook-Event": event_type,
    }

    # Timestamp anti-replay
    ts = str(int(time.time()))
    headers["X-Webhook-Timestamp"] = ts

    # Firma HMAC di "<timestamp>.<body>" (se disponibile un secret)
    secret = secret if secret is not None else settings.NOTIFY_WEBHOOK_SECRET
    if secret:
        signed_message = f"{ts}.".encode("utf-8") + body_bytes
        headers["X-Webhook-Signature"] = _hmac_digest(secret.strip(), signed_message)

    if timeout_seconds is None:
        timeout_seconds = settings.NOTIFY_WEBHOOK_TIMEOUT_SECONDS
    if max_retries is None:
        max_retries = settings.NOTIFY_WEBHOOK_MAX_RETRIES
    timeout_seconds = float(timeout_seconds)
    max_retries = int(max(1, max_retries))

    timeout = httpx.Timeout(timeout_seconds)
    backoff = 0.5
    err: Optional[str] = None

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(1, max_retries + 1):
            try:
                resp = await client.post(target_url, content=body_bytes, headers=headers)
                if 200 <= resp.status_code < 300:
                    return True, None
                err = f"HTTP {resp.status_code}: {resp.text[:500]}"
            except httpx.HTTPError as e:
                err = str(e)

            if attempt < max_retries:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 8.0)  # exponential backoff (cap 8s)

    return False, err
