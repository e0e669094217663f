# scripts/send_test_webhook.py
import hmac
import hashlib
import json
import os
import sys
import uuid

import requests

# === MODALITÀ: "local" oppure "prod" ===
MODE = os.getenv("WEBHOOK_TEST_MODE", "local")

if MODE == "local":
    URL = "http://127.0.0.1:8000/webhook"
else:
    URL = os.getenv("WEBHOOK_TEST_URL", "")

# Deve combaciare con PROVIDER_WEBHOOK_SECRET del server
SECRET = os.getenv("PROVIDER_WEBHOOK_SECRET", "prova123")
PRODUCT_ID = os.getenv("PRODUCT_ID_2WEEKS", "prod-2weeks")


def build_sig(raw: bytes) -> str:
    """Firma nel formato del provider: sha256_<HMAC(secret, body)>."""
    return "sha256_" + hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()


def send(payload: dict) -> None:
    raw = json.dumps(payload, separators=(",", ":")).encode()
    sig = build_sig(raw)

    print("\n=== SENDING PAYLOAD ===")
    print("URL      :", URL)
    print("PAYLOAD  :", payload)
    print("SIGNATURE:", sig)

    headers = {
        "X-Provider-Signature": sig,
        "Content-Type": "application/json",
    }
    r = requests.post(URL, data=raw, headers=headers, timeout=10)
    print("→ HTTP", r.status_code, "| body:", r.text)


def payment_event(event_type: str, payment_id: str, user_id: str, intent_id: str = None) -> dict:
    custom = {"userId": user_id}
    if intent_id:
        custom["intentId"] = intent_id
    return {
        "type": event_type,
        "data": {
            "payment": {"id": payment_id, "value": 699},
            "customer": {"id": "cust-test"},
            "items": [{"offer": {"id": PRODUCT_ID}, "customFields": custom}],
        },
    }


if __name__ == "__main__":
    if not URL:
        sys.exit("WEBHOOK_TEST_URL mancante")
    user = sys.argv[1] if len(sys.argv) > 1 else "123456789012345678"
    intent = sys.argv[2] if len(sys.argv) > 2 else None
    pid = f"pay-{uuid.uuid4()}"

    send(payment_event("payment_success", pid, user, intent))
    # stesso evento: deve risultare "duplicate"
    send(payment_event("payment_success", pid, user, intent))
    send(payment_event("payment_refunded", pid, user, intent))
