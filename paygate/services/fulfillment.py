# paygate/services/fulfillment.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paygate.core import messages
from paygate.core.catalog import CryptoAsset, Product
from paygate.core.license_keys import LicenseKeyCodec
from paygate.core.utils import utcnow
from paygate.crud import license_crud, payment_crud
from paygate.models.crypto_payment import CryptoPayment, CryptoStatus
from paygate.models.license import License
from paygate.models.purchase_intent import IntentStatus
from paygate.services.chain_sources import ChainMatch
from paygate.services.notify import Notifier

logger = logging.getLogger("paygate.fulfillment")

FULFILLED = "fulfilled"
DUPLICATE = "duplicate"
INVALID_EVENT = "invalid_event"

CONFIDENCE_TOKEN = "token"
CONFIDENCE_RECENCY = "recency"


@dataclass
class Resolution:
    """Chi ha pagato: utente + (opzionale) intent d'origine + quanto ne siamo sicuri."""
    user_id: str
    intent_id: Optional[str]
    confidence: str

    @property
    def low_confidence(self) -> bool:
        return self.confidence == CONFIDENCE_RECENCY


@dataclass
class FulfillmentResult:
    outcome: str
    license: Optional[License] = None


class Fulfillment:
    """
    Passo finale comune a webhook e monitor crypto:
    transizione guardata + emissione licenza nella STESSA transazione,
    poi notifiche best-effort dopo il commit.
    """

    def __init__(
        self,
        codec: LicenseKeyCodec,
        notifier: Notifier,
        products: Dict[str, Product],
        assets: Optional[Dict[str, CryptoAsset]] = None,
    ):
        self.codec = codec
        self.notifier = notifier
        self.products = products
        self.assets = assets or {}

    # ---------------------- fiat (webhook) ----------------------

    async def fulfill_intent(
        self,
        db: Session,
        resolution: Resolution,
        product_type: str,
        *,
        provider_payment_id: Optional[str],
        provider_product_id: Optional[str] = None,
        amount=None,
    ) -> FulfillmentResult:
        # chiave di idempotenza stabile tra redelivery: id pagamento o intent
        source_payment_id = provider_payment_id or resolution.intent_id
        if not source_payment_id:
            logger.error(
                "evento senza payment id né intent per user %s (%s): nessuna licenza emessa",
                resolution.user_id, product_type,
            )
            return FulfillmentResult(INVALID_EVENT)

        if license_crud.get_license_by_source_payment(db, source_payment_id) is not None:
            logger.info("pagamento %s già evaso: nessuna nuova licenza", source_payment_id)
            return FulfillmentResult(DUPLICATE)

        now = utcnow()
        try:
            lic = license_crud.issue(
                db,
                self.codec,
                user_id=resolution.user_id,
                product_type=product_type,
                source_payment_id=source_payment_id,
                payment_method="fiat",
                provider_product_id=provider_product_id,
                now=now,
            )
            if resolution.intent_id:
                moved = payment_crud.transition_intent(
                    db,
                    resolution.intent_id,
                    IntentStatus.completed,
                    now=now,
                    commit=False,
                    provider_payment_id=provider_payment_id,
                    license_key=lic.license_key,
                )
                if not moved:
                    db.rollback()
                    return FulfillmentResult(DUPLICATE)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("emissione concorrente per %s: no-op", source_payment_id)
            return FulfillmentResult(DUPLICATE)

        logger.info(
            "licenza %s emessa per user %s (%s, confidence=%s)",
            lic.license_key, resolution.user_id, product_type, resolution.confidence,
        )

        product = self.products.get(product_type)
        await self.notifier.notify(
            resolution.user_id,
            messages.license_issued(product, lic.license_key, product_type),
        )
        await self.notifier.alert_admin(
            "License issued (fiat)",
            {
                "user_id": resolution.user_id,
                "product_type": product_type,
                "license_key": lic.license_key,
                "payment_id": provider_payment_id,
                "intent_id": resolution.intent_id,
                "amount": amount,
                "confidence": resolution.confidence,
                "low_confidence": resolution.low_confidence,
            },
        )
        return FulfillmentResult(FULFILLED, lic)

    # ---------------------- crypto (monitor) ----------------------

    async def fulfill_crypto(self, db: Session, payment: CryptoPayment, match: ChainMatch) -> Optional[License]:
        """None se il pagamento era già stato chiuso da un altro tick/processo."""
        if license_crud.get_license_by_source_payment(db, payment.id) is not None:
            return None

        now = utcnow()
        try:
            lic = license_crud.issue(
                db,
                self.codec,
                user_id=payment.user_id,
                product_type=payment.product_type,
                source_payment_id=payment.id,
                payment_method="crypto",
                txid=match.txid,
                now=now,
            )
            moved = payment_crud.transition_crypto(
                db,
                payment.id,
                CryptoStatus.completed,
                now=now,
                commit=False,
                txid=match.txid,
                license_key=lic.license_key,
            )
            if not moved:
                db.rollback()
                return None
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("pagamento crypto %s già evaso: no-op", payment.id)
            return None

        db.refresh(payment)
        logger.info(
            "pagamento crypto %s confermato (tx %s), licenza %s",
            payment.id, match.txid, lic.license_key,
        )

        product = self.products.get(payment.product_type)
        asset = self.assets.get(payment.crypto_symbol)
        explorer = asset.explorer_tx_url if asset else ""
        await self.notifier.notify(
            payment.user_id,
            messages.crypto_payment_confirmed(product, payment, lic.license_key, explorer),
        )
        await self.notifier.alert_admin(
            "License issued (crypto)",
            {
                "user_id": payment.user_id,
                "product_type": payment.product_type,
                "license_key": lic.license_key,
                "payment_id": payment.id,
                "amount": f"{Decimal(match.amount)} {payment.crypto_symbol}",
                "txid": match.txid,
                "confirmations": match.confirmations,
            },
        )
        return lic
