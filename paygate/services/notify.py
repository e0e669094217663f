from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from paygate.core.config import Settings, settings as default_settings
from paygate.core.messages import NotificationMessage
from paygate.core.webhook import post_webhook

logger = logging.getLogger("paygate.notify")


class Notifier:
    """
    Collaboratore di notifica:
      - notify(user_id, message): messaggio all'utente (DM lato bot)
      - alert_admin(title, payload): avviso per gli admin
    Il core decide COSA inviare; la consegna è affare del layer UI.
    Gli errori non risalgono mai: una notifica persa non annulla una licenza.
    """

    async def notify(self, user_id: Optional[str], message: NotificationMessage) -> bool:
        if not user_id:
            return False
        try:
            return bool(await self._send_user(user_id, message))
        except Exception:
            logger.exception("[notify] consegna fallita per user %s (%s)", user_id, message.kind)
            return False

    async def alert_admin(self, title: str, payload: Dict[str, Any]) -> bool:
        try:
            return bool(await self._send_admin(title, payload))
        except Exception:
            logger.exception("[notify] alert admin fallito: %s", title)
            return False

    # ---------------------- channels ----------------------

    async def _send_user(self, user_id: str, message: NotificationMessage) -> bool:
        raise NotImplementedError

    async def _send_admin(self, title: str, payload: Dict[str, Any]) -> bool:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Solo console/log: default quando NOTIFY_WEBHOOK_URL non è configurato."""

    async def _send_user(self, user_id: str, message: NotificationMessage) -> bool:
        logger.info("[USER-NOTIFY] %s :: %s", user_id, json.dumps(message.to_payload(), ensure_ascii=False, default=str))
        return True

    async def _send_admin(self, title: str, payload: Dict[str, Any]) -> bool:
        logger.info("[ADMIN-NOTIFY] %s :: %s", title, json.dumps(payload, ensure_ascii=False, default=str))
        return True


class WebhookNotifier(LogNotifier):
    """POST firmato HMAC verso il bot (post_webhook, con retry/backoff)."""

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    async def _post(self, event_type: str, payload: Dict[str, Any]):
        return await post_webhook(
            event_type,
            payload,
            url=self.url,
            secret=self.secret,
            timeout_seconds=self.timeout_seconds,
            max_retries=self.max_retries,
        )

    async def _send_user(self, user_id: str, message: NotificationMessage) -> bool:
        await super()._send_user(user_id, message)
        ok, err = await self._post(
            "user_notification",
            {"user_id": user_id, "message": message.to_payload()},
        )
        if not ok:
            logger.warning("[notify] webhook utente fallito: %s", err)
        return ok

    async def _send_admin(self, title: str, payload: Dict[str, Any]) -> bool:
        await super()._send_admin(title, payload)
        ok, err = await self._post("admin_alert", {"title": title, "payload": payload})
        if not ok:
            logger.warning("[notify] webhook admin fallito: %s", err)
        return ok


def build_notifier(cfg: Optional[Settings] = None) -> Notifier:
    cfg = cfg or default_settings
    if cfg.NOTIFY_WEBHOOK_URL:
        return WebhookNotifier(
            cfg.NOTIFY_WEBHOOK_URL,
            cfg.NOTIFY_WEBHOOK_SECRET,
            timeout_seconds=cfg.NOTIFY_WEBHOOK_TIMEOUT_SECONDS,
            max_retries=cfg.NOTIFY_WEBHOOK_MAX_RETRIES,
        )
    return LogNotifier()
