# paygate/services/crypto_monitor.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from paygate.core import messages
from paygate.core.catalog import Product
from paygate.core.utils import utcnow
from paygate.crud import payment_crud
from paygate.models.crypto_payment import CryptoPayment, CryptoStatus
from paygate.services.chain_sources import ChainSource, ChainSourceError, find_matching_transaction
from paygate.services.fulfillment import Fulfillment
from paygate.services.notify import Notifier

logger = logging.getLogger("paygate.crypto_monitor")

POLL_INTERVAL_SECONDS = 30
MAX_POLLS = 60  # 60 x 30s = 30 minuti, come la TTL del pagamento


@dataclass
class PollOutcome:
    done: bool
    status: str  # waiting | fetch_error | completed | expired | not_pending


class CryptoPaymentMonitor:
    """
    Un task asyncio per pagamento crypto pending: ogni `interval` secondi
    interroga l'explorer e cerca un output verso il nostro indirizzo con
    l'importo esatto. Task indicizzati per payment_id, quindi un secondo
    start() sullo stesso pagamento non fa nulla.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        chain_sources: Dict[str, ChainSource],
        fulfillment: Fulfillment,
        notifier: Notifier,
        products: Dict[str, Product],
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        max_polls: int = MAX_POLLS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.chain_sources = chain_sources
        self.fulfillment = fulfillment
        self.notifier = notifier
        self.products = products
        self.interval = interval
        self.max_polls = max_polls
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    # ---------------------- task management ----------------------

    def is_monitoring(self, payment_id: str) -> bool:
        task = self._tasks.get(payment_id)
        return task is not None and not task.done()

    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def start(self, payment_id: str) -> bool:
        """Avvia il monitor (va chiamato dentro l'event loop). False se già attivo."""
        if self.is_monitoring(payment_id):
            return False
        self._tasks[payment_id] = asyncio.create_task(self._run(payment_id))
        logger.info("monitor avviato per pagamento crypto %s", payment_id)
        return True

    def resume_pending(self) -> int:
        """All'avvio: riarma un monitor per ogni pagamento ancora pending."""
        db: Session = self.session_factory()
        try:
            pending_ids = [p.id for p in payment_crud.list_pending_crypto(db)]
        finally:
            db.close()
        started = sum(1 for pid in pending_ids if self.start(pid))
        if started:
            logger.info("riarmati %d monitor crypto pending", started)
        return started

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run(self, payment_id: str) -> None:
        polls = 0
        try:
            while True:
                await asyncio.sleep(self.interval)
                polls += 1
                try:
                    outcome: Optional[PollOutcome] = await self.poll_once(payment_id, polls)
                except Exception:
                    # Errore di storage: il prossimo tick (o lo sweeper) riprova
                    logger.exception("errore nel monitor di %s (tick %d)", payment_id, polls)
                    outcome = PollOutcome(polls >= self.max_polls, "error")
                if outcome.done:
                    logger.info("monitor %s terminato: %s", payment_id, outcome.status)
                    return
        finally:
            if self._tasks.get(payment_id) is asyncio.current_task():
                self._tasks.pop(payment_id, None)

    # ---------------------- singolo tick ----------------------

    async def poll_once(self, payment_id: str, polls: int) -> PollOutcome:
        db: Session = self.session_factory()
        try:
            payment = payment_crud.get_crypto_payment(db, payment_id)
            if payment is None or payment.status != CryptoStatus.pending:
                return PollOutcome(True, "not_pending")

            now = self._clock()
            if now > payment.expires_at:
                await self._expire(db, payment, now)
                return PollOutcome(True, "expired")

            status = "waiting"
            source = self.chain_sources.get(payment.crypto_symbol)
            if source is None:
                logger.error("nessuna chain source per %s", payment.crypto_symbol)
                status = "fetch_error"
            else:
                try:
                    transactions = await source.fetch_transactions(payment.wallet_address)
                except ChainSourceError as e:
                    logger.warning("fetch fallito per %s: %s", payment_id, e)
                    status = "fetch_error"
                else:
                    match = find_matching_transaction(
                        transactions,
                        payment.wallet_address,
                        payment.crypto_amount,
                        since=payment.created_at,
                        exclude_txids=payment_crud.completed_txids(db, payment.crypto_symbol),
                    )
                    if match is not None:
                        lic = await self.fulfillment.fulfill_crypto(db, payment, match)
                        return PollOutcome(True, "completed" if lic else "not_pending")

            if polls >= self.max_polls:
                await self._expire(db, payment, self._clock())
                return PollOutcome(True, "expired")
            return PollOutcome(False, status)
        finally:
            db.close()

    async def _expire(self, db: Session, payment: CryptoPayment, now: datetime) -> bool:
        if not payment_crud.transition_crypto(db, payment.id, CryptoStatus.expired, now=now):
            return False
        logger.info("pagamento crypto %s scaduto", payment.id)
        await self.notifier.notify(
            payment.user_id,
            messages.crypto_payment_expired(self.products.get(payment.product_type), payment),
        )
        return True
