# paygate/services/sweeper.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from paygate.core import messages
from paygate.core.catalog import Product
from paygate.core.utils import utcnow
from paygate.crud import license_crud, payment_crud
from paygate.models.crypto_payment import CryptoStatus
from paygate.services.anti_abuse import AntiAbuseGuard
from paygate.services.notify import Notifier

logger = logging.getLogger("paygate.sweeper")


class MaintenanceSweeper:
    """
    Manutenzione periodica:
      - expire_licenses(): licenze scadute -> inattive + prune dello stato anti-abuso (giornaliero)
      - expire_crypto_payments(): pagamenti crypto pending oltre expires_at -> expired (ogni 5 min)
    Gli errori di storage risalgono: è lo scheduler a loggarli e riprovare al giro dopo.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        guard: AntiAbuseGuard,
        notifier: Notifier,
        products: Dict[str, Product],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.guard = guard
        self.notifier = notifier
        self.products = products
        self._clock = clock

    def expire_licenses(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        db: Session = self.session_factory()
        try:
            expired = license_crud.expire_overdue(db, now=now)
        finally:
            db.close()
        pruned = self.guard.prune()
        if expired:
            logger.info("[sweeper] %d licenze scadute disattivate", expired)
        logger.debug("[sweeper] prune anti-abuso: %s", pruned)
        return expired

    async def expire_crypto_payments(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        db: Session = self.session_factory()
        expired = 0
        try:
            for payment in payment_crud.list_expired_pending_crypto(db, now=now):
                if not payment_crud.transition_crypto(db, payment.id, CryptoStatus.expired, now=now):
                    continue
                expired += 1
                await self.notifier.notify(
                    payment.user_id,
                    messages.crypto_payment_expired(self.products.get(payment.product_type), payment),
                )
        finally:
            db.close()
        if expired:
            logger.info("[sweeper] %d pagamenti crypto scaduti", expired)
        return expired
