# paygate/services/reconciler.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from paygate.core import messages
from paygate.core.catalog import Product, product_type_for_provider_id
from paygate.core.utils import utcnow
from paygate.core.webhook_verify import verify_provider_signature
from paygate.crud import license_crud, payment_crud
from paygate.models.purchase_intent import IntentStatus
from paygate.services.fulfillment import (
    CONFIDENCE_RECENCY,
    CONFIDENCE_TOKEN,
    DUPLICATE,
    INVALID_EVENT,
    Fulfillment,
    Resolution,
)
from paygate.services.notify import Notifier

logger = logging.getLogger("paygate.webhook")

EVENT_PAYMENT_SUCCESS = "payment_success"
EVENT_PAYMENT_FAILED = "payment_failed"
EVENT_PAYMENT_REFUNDED = "payment_refunded"


@dataclass
class ReconcileResult:
    status_code: int
    outcome: str
    detail: Optional[str] = None
    license_key: Optional[str] = None
    confidence: Optional[str] = None


@dataclass
class ProviderEvent:
    """Campi estratti da un evento del provider (struttura Fungies)."""
    type: Optional[str]
    customer_id: Optional[str]
    payment_id: Optional[str]
    amount: Any
    product_id: Optional[str]
    custom_data: Dict[str, Any]
    reason: Optional[str] = None


def _parse_custom_data(value) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def extract_event(body: Dict[str, Any]) -> ProviderEvent:
    data = body.get("data") or {}
    payment = data.get("payment") or {}
    customer = data.get("customer") or {}
    items = data.get("items") or []
    first = items[0] if items and isinstance(items[0], dict) else {}

    product_id = (first.get("offer") or {}).get("id") or first.get("productId")

    raw_custom = first.get("customFields") or payment.get("customFields") or data.get("customFields")

    return ProviderEvent(
        type=body.get("type"),
        customer_id=customer.get("id") or data.get("customer_id"),
        payment_id=payment.get("id") or data.get("payment_id"),
        amount=payment.get("value"),
        product_id=product_id,
        custom_data=_parse_custom_data(raw_custom),
        reason=data.get("reason") or payment.get("failureReason"),
    )


class IntentResolver:
    """
    Risale all'utente/intent che ha generato un pagamento.
      - token   (alta confidenza): customFields {"userId", "intentId"} del checkout
      - recency (bassa confidenza): intent pending più recente dello stesso tipo
    """

    def __init__(self, window_seconds: int = payment_crud.CORRELATION_WINDOW_SECONDS):
        self.window_seconds = window_seconds

    def resolve_by_token(self, db: Session, custom_data: Dict[str, Any], product_type: str) -> Optional[Resolution]:
        intent = payment_crud.get_intent(db, custom_data.get("intentId"))
        if intent is not None:
            return Resolution(intent.user_id, intent.id, CONFIDENCE_TOKEN)

        user_id = custom_data.get("userId")
        if not user_id:
            return None
        user_id = str(user_id)
        latest = payment_crud.find_latest_pending_intent_for_user(db, user_id, product_type)
        return Resolution(user_id, latest.id if latest else None, CONFIDENCE_TOKEN)

    def resolve_by_recency(self, db: Session, product_type: str) -> Optional[Resolution]:
        intent = payment_crud.find_correlated_intent(db, product_type, self.window_seconds)
        if intent is None:
            return None
        return Resolution(intent.user_id, intent.id, CONFIDENCE_RECENCY)

    def resolve(self, db: Session, custom_data: Dict[str, Any], product_type: str) -> Optional[Resolution]:
        return self.resolve_by_token(db, custom_data, product_type) or self.resolve_by_recency(db, product_type)


class WebhookReconciler:
    def __init__(
        self,
        secret: str,
        products: Dict[str, Product],
        fulfillment: Fulfillment,
        notifier: Notifier,
        resolver: Optional[IntentResolver] = None,
    ):
        self.secret = secret
        self.products = products
        self.fulfillment = fulfillment
        self.notifier = notifier
        self.resolver = resolver or IntentResolver()

    async def handle(self, db: Session, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        ok, err = verify_provider_signature(raw_body, signature, self.secret)
        if not ok:
            logger.warning("webhook rifiutato: %s", err)
            return ReconcileResult(401, "unauthorized", err)

        try:
            body = json.loads(raw_body)
        except ValueError:
            return ReconcileResult(400, "invalid_body", "body is not valid JSON")
        if not isinstance(body, dict):
            return ReconcileResult(400, "invalid_body", "body must be a JSON object")

        event = extract_event(body)
        logger.info("webhook %s ricevuto (payment=%s)", event.type, event.payment_id)

        if event.type == EVENT_PAYMENT_SUCCESS:
            return await self._payment_success(db, event)
        if event.type == EVENT_PAYMENT_FAILED:
            return await self._payment_failed(db, event)
        if event.type == EVENT_PAYMENT_REFUNDED:
            return await self._payment_refunded(db, event)
        return ReconcileResult(200, "ignored", f"event type {event.type!r} not handled")

    # ---------------------- payment_success ----------------------

    async def _payment_success(self, db: Session, event: ProviderEvent) -> ReconcileResult:
        product_type = product_type_for_provider_id(event.product_id, self.products)
        if product_type is None:
            logger.error("product id sconosciuto nel webhook: %s", event.product_id)
            return ReconcileResult(200, "unknown_product", event.product_id)

        if license_crud.get_license_by_source_payment(db, event.payment_id) is not None:
            return ReconcileResult(200, DUPLICATE)

        resolution = self.resolver.resolve(db, event.custom_data, product_type)
        if resolution is None:
            logger.error(
                "impossibile risalire all'utente per payment %s (%s): nessuna licenza emessa",
                event.payment_id, product_type,
            )
            await self.notifier.alert_admin(
                "Unresolved payment",
                {"payment_id": event.payment_id, "product_type": product_type, "customer_id": event.customer_id},
            )
            return ReconcileResult(200, "unresolved")

        if resolution.low_confidence:
            logger.warning(
                "payment %s attribuito a user %s per recenza (bassa confidenza)",
                event.payment_id, resolution.user_id,
            )

        result = await self.fulfillment.fulfill_intent(
            db,
            resolution,
            product_type,
            provider_payment_id=event.payment_id,
            provider_product_id=event.product_id,
            amount=event.amount,
        )
        if result.outcome == INVALID_EVENT:
            await self.notifier.alert_admin(
                "Payment without id",
                {"user_id": resolution.user_id, "product_type": product_type, "customer_id": event.customer_id},
            )
        return ReconcileResult(
            200,
            result.outcome,
            license_key=result.license.license_key if result.license else None,
            confidence=resolution.confidence,
        )

    # ---------------------- payment_failed ----------------------

    def _find_intent(self, db: Session, event: ProviderEvent):
        return payment_crud.get_intent(db, event.custom_data.get("intentId")) or \
            payment_crud.find_intent_by_provider_payment(db, event.payment_id)

    async def _payment_failed(self, db: Session, event: ProviderEvent) -> ReconcileResult:
        intent = self._find_intent(db, event)
        user_id = intent.user_id if intent else event.custom_data.get("userId")
        moved = False
        if intent is not None:
            moved = payment_crud.transition_intent(
                db,
                intent.id,
                IntentStatus.failed,
                failure_reason=event.reason,
                provider_payment_id=event.payment_id,
            )
        if moved or intent is None:
            await self.notifier.notify(user_id, messages.payment_failed(event.reason))
        return ReconcileResult(200, "failed" if moved else "ignored")

    # ---------------------- payment_refunded ----------------------

    async def _payment_refunded(self, db: Session, event: ProviderEvent) -> ReconcileResult:
        now = utcnow()
        lic, deactivated = None, False
        if event.payment_id:
            lic, deactivated = license_crud.deactivate_for_refund(db, event.payment_id, now=now)
        intent = self._find_intent(db, event)
        moved = False
        if intent is not None:
            moved = payment_crud.transition_intent(db, intent.id, IntentStatus.refunded, now=now, commit=False)
        db.commit()

        if lic is None and not moved:
            logger.info("refund per payment %s senza licenza/intent noti", event.payment_id)
            return ReconcileResult(200, "ignored")
        if not deactivated and not moved:
            # redelivery: rimborso già applicato
            logger.info("refund per payment %s già applicato: no-op", event.payment_id)
            return ReconcileResult(200, DUPLICATE)

        user_id = (lic.user_id if lic else None) or (intent.user_id if intent else None)
        await self.notifier.notify(user_id, messages.refund_processed())
        return ReconcileResult(200, "refunded", license_key=lic.license_key if lic else None)
