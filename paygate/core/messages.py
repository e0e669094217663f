# paygate/core/messages.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from paygate.core.catalog import Product

GENERIC_ERROR = "An error occurred while processing your request. Please try again later."

# ------------------------------------------------------------
# Messaggi per i rifiuti dei guard (mai stringhe tecniche)
# ------------------------------------------------------------
REJECTION_MESSAGES: Dict[str, str] = {
    "invalid_product": "Invalid product type.",
    "unsupported_crypto": "Invalid payment configuration.",
    "rate_limited": "You're doing that too fast! Please wait a moment before trying again.",
    "manual_review": "Your account requires manual review. Please contact an administrator.",
    "cooldown": "Please wait 5 minutes between purchase attempts to prevent fraud.",
    "duplicate": "You already have a purchase in progress or an active license for this product. "
                 "Please check your existing licenses.",
    "price_unavailable": "Unable to fetch current crypto rates. Please try again in a moment.",
}


@dataclass
class NotificationMessage:
    """Cosa consegnare all'utente; il COME è compito del layer UI."""
    kind: str
    title: str
    text: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


def license_issued(product: Optional[Product], license_key: str, product_type: str) -> NotificationMessage:
    return NotificationMessage(
        kind="license_issued",
        title="Purchase Successful!",
        text="Thank you for your purchase! Here is your license key.",
        fields={
            "license_key": license_key,
            "product": product.name if product else product_type,
            "duration": product.duration if product else None,
        },
    )


def crypto_payment_confirmed(product: Optional[Product], payment, license_key: str, explorer_url: str) -> NotificationMessage:
    return NotificationMessage(
        kind="crypto_payment_confirmed",
        title="Payment Confirmed!",
        text="Your cryptocurrency payment has been confirmed!",
        fields={
            "license_key": license_key,
            "product": product.name if product else payment.product_type,
            "amount": f"{payment.crypto_amount} {payment.crypto_symbol}",
            "transaction_url": f"{explorer_url}{payment.txid}" if payment.txid else None,
        },
    )


def crypto_payment_expired(product: Optional[Product], payment) -> NotificationMessage:
    return NotificationMessage(
        kind="crypto_payment_expired",
        title="Payment Expired",
        text="Your cryptocurrency payment window has expired. Start a new purchase to try again.",
        fields={
            "product": product.name if product else payment.product_type,
            "amount": f"{payment.crypto_amount} {payment.crypto_symbol}",
        },
    )


def payment_failed(reason: Optional[str]) -> NotificationMessage:
    return NotificationMessage(
        kind="payment_failed",
        title="Payment Failed",
        text="Your payment could not be processed. Please try again or contact support.",
        fields={"reason": reason or "Unknown error"},
    )


def refund_processed() -> NotificationMessage:
    return NotificationMessage(
        kind="refund_processed",
        title="Refund Processed",
        text="Your payment has been refunded and your license has been deactivated.",
    )


def keys_granted(product: Optional[Product], keys, expiration_date) -> NotificationMessage:
    return NotificationMessage(
        kind="keys_granted",
        title="New License Keys Added!",
        text="You have been granted new license keys.",
        fields={
            "license_keys": list(keys),
            "product": product.name if product else None,
            "expires": expiration_date.isoformat() if expiration_date else None,
        },
    )
