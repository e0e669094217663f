# paygate/services/purchase.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple
from urllib.parse import quote

from sqlalchemy.orm import Session

from paygate.core.catalog import CryptoAsset, Product
from paygate.core.utils import from_epoch
from paygate.crud import payment_crud
from paygate.services.anti_abuse import AntiAbuseGuard, UserProfile
from paygate.services.chain_sources import ChainSourceError, PriceSource, calculate_crypto_amount, get_quotes
from paygate.services.crypto_monitor import CryptoPaymentMonitor

logger = logging.getLogger("paygate.purchase")

BUY_RATE_LIMIT = (3, 60)  # 3 richieste / 60s
PURCHASE_COOLDOWN_SECONDS = 300


@dataclass
class FiatCheckout:
    intent_id: str
    product: Product
    checkout_url: str


@dataclass
class CryptoInstructions:
    payment_id: str
    product: Product
    symbol: str
    amount: Decimal
    usd_amount: Decimal
    rate: Decimal
    address: str
    expires_at: datetime


class PurchaseService:
    """
    Ingresso degli acquisti: guard anti-abuso -> ledger -> (checkout | monitor).
    Ogni metodo ritorna (risultato, error_code); error_code è una chiave di
    messages.REJECTION_MESSAGES, mai un messaggio tecnico.
    """

    def __init__(
        self,
        guard: AntiAbuseGuard,
        products: Dict[str, Product],
        assets: Dict[str, CryptoAsset],
        price_source: PriceSource,
        monitor: Optional[CryptoPaymentMonitor],
        checkout_base_url: str,
        *,
        crypto_ttl_minutes: int = payment_crud.CRYPTO_PAYMENT_TTL_MINUTES,
    ):
        self.guard = guard
        self.products = products
        self.assets = assets
        self.price_source = price_source
        self.monitor = monitor
        self.checkout_base_url = checkout_base_url.rstrip("/")
        self.crypto_ttl_minutes = crypto_ttl_minutes

    def _now(self) -> datetime:
        return from_epoch(self.guard.now())

    def _common_guards(self, db: Session, user: UserProfile, product_type: str, *, track: bool) -> Optional[str]:
        max_requests, window = BUY_RATE_LIMIT
        if not self.guard.check_rate_limit(user.id, "buy", max_requests, window):
            return "rate_limited"

        validation = self.guard.validate_user(user)
        if not validation.is_valid:
            logger.warning("user %s in revisione manuale: %s", user.id, validation.reason)
            return "manual_review"

        if track:
            self.guard.track_suspicious_activity(user.id, f"purchase_attempt_{product_type}")

        if not self.guard.check_purchase_cooldown(user.id, PURCHASE_COOLDOWN_SECONDS):
            return "cooldown"

        duplicate = self.guard.check_duplicate_purchase(db, user.id, product_type)
        if duplicate.is_duplicate:
            logger.info("acquisto duplicato per user %s (%s): %s", user.id, product_type, duplicate.reason)
            return "duplicate"
        return None

    # ---------------------- fiat ----------------------

    def checkout_url(self, product: Product, user_id: str, intent_id: str) -> str:
        custom_data = quote(json.dumps({"userId": user_id, "intentId": intent_id}, separators=(",", ":")), safe="")
        return f"{self.checkout_base_url}/checkout/{product.provider_product_id}?custom_data={custom_data}"

    def start_fiat(self, db: Session, user: UserProfile, product_type: str) -> Tuple[Optional[FiatCheckout], Optional[str]]:
        product = self.products.get(product_type)
        if product is None:
            return None, "invalid_product"

        err = self._common_guards(db, user, product_type, track=True)
        if err:
            return None, err

        intent_id = payment_crud.create_pending_fiat(
            db, user.id, product_type, product.provider_product_id, now=self._now()
        )
        url = self.checkout_url(product, user.id, intent_id)
        logger.info("checkout generato per user %s: %s", user.id, url)
        return FiatCheckout(intent_id=intent_id, product=product, checkout_url=url), None

    # ---------------------- crypto ----------------------

    async def start_crypto(
        self, db: Session, user: UserProfile, product_type: str, symbol: str
    ) -> Tuple[Optional[CryptoInstructions], Optional[str]]:
        product = self.products.get(product_type)
        if product is None:
            return None, "invalid_product"
        symbol = (symbol or "").upper()
        asset = self.assets.get(symbol)
        if asset is None:
            return None, "unsupported_crypto"

        err = self._common_guards(db, user, product_type, track=False)
        if err:
            return None, err

        try:
            rate = await self.price_source.get_price(symbol)
            amount = calculate_crypto_amount(product.crypto_price, rate)
        except (ChainSourceError, ValueError) as e:
            logger.warning("prezzo %s non disponibile: %s", symbol, e)
            return None, "price_unavailable"

        payment_id = payment_crud.create_pending_crypto(
            db,
            user.id,
            product_type,
            symbol,
            amount,
            product.crypto_price,
            asset.address,
            now=self._now(),
            ttl_minutes=self.crypto_ttl_minutes,
        )
        payment = payment_crud.get_crypto_payment(db, payment_id)

        if self.monitor is not None:
            self.monitor.start(payment_id)

        return CryptoInstructions(
            payment_id=payment_id,
            product=product,
            symbol=symbol,
            amount=amount,
            usd_amount=product.crypto_price,
            rate=rate,
            address=asset.address,
            expires_at=payment.expires_at,
        ), None

    async def quote(self, product_type: str) -> Tuple[Optional[Dict[str, Tuple[Decimal, Decimal]]], Optional[str]]:
        product = self.products.get(product_type)
        if product is None:
            return None, "invalid_product"
        quotes = await get_quotes(self.price_source, product.crypto_price, self.assets.keys())
        if not quotes:
            return None, "price_unavailable"
        return quotes, None
