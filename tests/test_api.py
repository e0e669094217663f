import json
from datetime import timedelta
from decimal import Decimal
from urllib.parse import unquote

from paygate.core.utils import utcnow
from paygate.crud import license_crud, payment_crud

from conftest import BTC_ADDRESS

USER = "123456789012345678"


def _user(user_id=USER, **overrides):
    body = {
        "user_id": user_id,
        "username": "alice",
        "avatar": "a.png",
        "account_created_at": "2020-01-01T00:00:00Z",
    }
    body.update(overrides)
    return body


def _fiat(client, product_type="2weeks", **user):
    return client.post("/api/purchases/fiat", json={**_user(**user), "product_type": product_type})


def _crypto(client, symbol="BTC", product_type="monthly", **user):
    return client.post(
        "/api/purchases/crypto",
        json={**_user(**user), "product_type": product_type, "crypto_symbol": symbol},
    )


# ------------------------------------------------------------
# Sistema
# ------------------------------------------------------------
def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["uptimeSeconds"] >= 0


def test_products(client):
    resp = client.get("/api/products")
    assert resp.status_code == 200
    by_type = {p["product_type"]: p for p in resp.json()}
    assert set(by_type) == {"2weeks", "monthly", "lifetime"}
    assert Decimal(by_type["monthly"]["crypto_price"]) == Decimal("9.00")


def test_crypto_quote(client):
    resp = client.get("/api/products/monthly/crypto-quote")
    assert resp.status_code == 200
    quotes = {q["symbol"]: q for q in resp.json()["quotes"]}
    assert Decimal(quotes["BTC"]["amount"]) == Decimal("0.00015")
    assert quotes["BTC"]["address"] == BTC_ADDRESS

    assert client.get("/api/products/weekly/crypto-quote").status_code == 404


# ------------------------------------------------------------
# Validazione licenza
# ------------------------------------------------------------
def test_validate_unknown_key(client):
    resp = client.get("/validate/MONTHLY-0000000000000000")
    assert resp.status_code == 404
    assert resp.json() == {"valid": False, "message": "License not found"}


def test_validate_active_and_expired(client, session_factory, codec):
    db = session_factory()
    try:
        active = license_crud.issue(
            db, codec, user_id=USER, product_type="monthly",
            source_payment_id="pay-active", payment_method="fiat",
        ).license_key
        stale = license_crud.issue(
            db, codec, user_id=USER, product_type="2weeks",
            source_payment_id="pay-stale", payment_method="fiat",
            now=utcnow() - timedelta(days=20),
        ).license_key
        db.commit()
    finally:
        db.close()

    body = client.get(f"/validate/{active}").json()
    assert body["valid"] is True
    assert body["productType"] == "monthly"
    assert body["expirationDate"]

    # scaduta per data ma non ancora spazzata dallo sweeper
    body = client.get(f"/validate/{stale}").json()
    assert body["valid"] is False
    assert body["message"] == "License expired"


# ------------------------------------------------------------
# Acquisti fiat
# ------------------------------------------------------------
def test_fiat_purchase_returns_checkout_url(client, session_factory):
    resp = _fiat(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["product_type"] == "2weeks"
    assert "/checkout/prod-2weeks?custom_data=" in body["checkout_url"]

    custom = json.loads(unquote(body["checkout_url"].split("custom_data=", 1)[1]))
    assert custom == {"userId": USER, "intentId": body["intent_id"]}

    db = session_factory()
    try:
        assert payment_crud.get_intent(db, body["intent_id"]).status == "pending"
    finally:
        db.close()


def test_invalid_product(client):
    resp = _fiat(client, product_type="weekly")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "invalid_product"


def test_cooldown_then_duplicate(client, clock):
    assert _fiat(client).status_code == 201

    resp = _fiat(client)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "cooldown"

    clock.advance(301)
    resp = _fiat(client)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "duplicate"


def test_rate_limit(client):
    codes = [_fiat(client).status_code for _ in range(3)]
    assert codes == [201, 429, 429]

    resp = _fiat(client)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "rate_limited"


def test_young_account_requires_manual_review(client):
    young = (utcnow() - timedelta(days=2)).isoformat()
    resp = _fiat(client, account_created_at=young)
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "manual_review"


# ------------------------------------------------------------
# Acquisti crypto
# ------------------------------------------------------------
def test_crypto_purchase_starts_monitor(client, app):
    resp = _crypto(client, symbol="btc")
    assert resp.status_code == 201
    body = resp.json()
    assert body["crypto_symbol"] == "BTC"
    assert Decimal(body["crypto_amount"]) == Decimal("0.00015")
    assert Decimal(body["usd_amount"]) == Decimal("9.00")
    assert body["wallet_address"] == BTC_ADDRESS
    assert app.state.services.monitor.is_monitoring(body["payment_id"])

    pending = client.get(f"/api/users/{USER}/crypto-payments").json()["payments"]
    assert [p["payment_id"] for p in pending] == [body["payment_id"]]
    assert pending[0]["status"] == "awaiting_payment"
    assert 28 <= pending[0]["minutes_left"] <= 30


def test_unsupported_crypto(client):
    resp = _crypto(client, symbol="DOGE")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "unsupported_crypto"


def test_price_unavailable(client, price_source):
    price_source.fail = True
    resp = _crypto(client, symbol="LTC")
    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "price_unavailable"


# ------------------------------------------------------------
# Stato utente
# ------------------------------------------------------------
def test_user_licenses(client, session_factory, codec):
    db = session_factory()
    try:
        key = license_crud.issue(
            db, codec, user_id=USER, product_type="lifetime",
            source_payment_id="pay-lt", payment_method="fiat",
        ).license_key
        db.commit()
    finally:
        db.close()

    resp = client.get(f"/api/users/{USER}/licenses")
    assert resp.status_code == 200
    licenses = resp.json()["licenses"]
    assert [lic["license_key"] for lic in licenses] == [key]
    assert licenses[0]["is_expired"] is False
    assert licenses[0]["product_name"]

    assert client.get("/api/users/nobody/licenses").json()["licenses"] == []
