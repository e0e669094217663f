import json
from datetime import timedelta

from paygate.crud import license_crud, payment_crud
from paygate.models.purchase_intent import IntentStatus

from conftest import sign

USER = "123456789012345678"


def _event(event_type, payment_id="pay_1", product_id="prod-2weeks", custom=None, **data):
    item = {"offer": {"id": product_id}}
    if custom is not None:
        item["customFields"] = custom
    body = {
        "type": event_type,
        "data": {
            "payment": {"id": payment_id, "value": "6.99"},
            "customer": {"id": "cus_1"},
            "items": [item],
            **data,
        },
    }
    return json.dumps(body).encode()


def _post(client, raw, header="X-Provider-Signature", signature=None):
    headers = {"Content-Type": "application/json"}
    if header:
        headers[header] = signature or sign(raw)
    return client.post("/webhook", content=raw, headers=headers)


def _start_fiat(client, user_id=USER, product_type="2weeks"):
    resp = client.post(
        "/api/purchases/fiat",
        json={
            "user_id": user_id,
            "username": "alice",
            "avatar": "a.png",
            "account_created_at": "2020-01-01T00:00:00Z",
            "product_type": product_type,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["intent_id"]


# ------------------------------------------------------------
# Autenticazione e body
# ------------------------------------------------------------
def test_probe(client):
    resp = client.get("/webhook")
    assert resp.status_code == 200
    assert resp.json()["status"] == "Webhook endpoint is reachable"


def test_missing_signature_is_unauthorized(client):
    resp = _post(client, _event("payment_success"), header=None)
    assert resp.status_code == 401
    assert resp.json()["status"] == "unauthorized"


def test_bad_signature_is_unauthorized(client):
    raw = _event("payment_success")
    resp = _post(client, raw, signature=sign(raw, secret="wrong"))
    assert resp.status_code == 401


def test_signature_is_over_raw_bytes(client):
    raw = _event("payment_success")
    # stessa semantica JSON, byte diversi: la firma non torna più
    reformatted = json.dumps(json.loads(raw), indent=2).encode()
    resp = _post(client, reformatted, signature=sign(raw))
    assert resp.status_code == 401


def test_non_json_body(client):
    resp = _post(client, b"not json")
    assert resp.status_code == 400
    assert resp.json()["status"] == "invalid_body"


def test_unhandled_event_type_is_acknowledged(client):
    resp = _post(client, _event("subscription_renewed"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_unknown_product(client, notifier):
    resp = _post(client, _event("payment_success", product_id="prod-unknown", custom={"userId": USER}))
    assert resp.status_code == 200
    assert resp.json()["status"] == "unknown_product"
    assert notifier.user_messages == []


def test_legacy_signature_header(client):
    resp = _post(client, _event("subscription_renewed"), header="X-Fngs-Signature")
    assert resp.status_code == 200


# ------------------------------------------------------------
# payment_success
# ------------------------------------------------------------
def test_fiat_end_to_end_with_token(client, session_factory, notifier):
    intent_id = _start_fiat(client)

    raw = _event("payment_success", custom={"userId": USER, "intentId": intent_id})
    resp = _post(client, raw)
    assert resp.status_code == 200
    assert resp.json()["status"] == "fulfilled"

    db = session_factory()
    try:
        intent = payment_crud.get_intent(db, intent_id)
        assert intent.status == IntentStatus.completed
        assert intent.provider_payment_id == "pay_1"

        lic = license_crud.get_license_by_source_payment(db, "pay_1")
        assert lic.user_id == USER
        assert lic.license_key == intent.license_key
        assert lic.license_key.startswith("2WEEKS-")
        assert lic.payment_method == "fiat"
        assert lic.expiration_date - lic.created_at == timedelta(days=14)
    finally:
        db.close()

    assert "license_issued" in notifier.kinds()
    title, payload = notifier.admin_alerts[-1]
    assert title == "License issued (fiat)"
    assert payload["confidence"] == "token"
    assert payload["low_confidence"] is False


def test_custom_data_as_json_string(client, session_factory):
    intent_id = _start_fiat(client)
    custom = json.dumps({"userId": USER, "intentId": intent_id})
    resp = _post(client, _event("payment_success", custom=custom))
    assert resp.json()["status"] == "fulfilled"


def test_redelivery_is_duplicate(client, session_factory):
    intent_id = _start_fiat(client)
    raw = _event("payment_success", custom={"userId": USER, "intentId": intent_id})

    assert _post(client, raw).json()["status"] == "fulfilled"
    second = _post(client, raw)
    assert second.status_code == 200
    assert second.json()["status"] == "duplicate"

    db = session_factory()
    try:
        assert len(license_crud.list_active_for_user(db, USER)) == 1
    finally:
        db.close()


def test_recency_fallback_is_low_confidence(client, notifier, session_factory):
    intent_id = _start_fiat(client)

    resp = _post(client, _event("payment_success", payment_id="pay_recent"))
    assert resp.json()["status"] == "fulfilled"

    title, payload = notifier.admin_alerts[-1]
    assert title == "License issued (fiat)"
    assert payload["confidence"] == "recency"
    assert payload["low_confidence"] is True
    assert payload["intent_id"] == intent_id

    db = session_factory()
    try:
        assert payment_crud.get_intent(db, intent_id).status == IntentStatus.completed
    finally:
        db.close()


def test_user_id_only_token(client, session_factory):
    resp = _post(client, _event("payment_success", payment_id="pay_uid", custom={"userId": USER}))
    assert resp.json()["status"] == "fulfilled"

    db = session_factory()
    try:
        lic = license_crud.get_license_by_source_payment(db, "pay_uid")
        assert lic.user_id == USER
    finally:
        db.close()


def test_unresolved_payment_alerts_admin(client, notifier, session_factory):
    resp = _post(client, _event("payment_success", payment_id="pay_orphan"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "unresolved"
    assert notifier.admin_alerts[-1][0] == "Unresolved payment"

    db = session_factory()
    try:
        assert license_crud.get_license_by_source_payment(db, "pay_orphan") is None
    finally:
        db.close()


# ------------------------------------------------------------
# payment_failed / payment_refunded
# ------------------------------------------------------------
def test_payment_failed_marks_intent(client, notifier, session_factory):
    intent_id = _start_fiat(client)
    raw = _event(
        "payment_failed",
        payment_id="pay_fail",
        custom={"userId": USER, "intentId": intent_id},
        reason="card_declined",
    )
    resp = _post(client, raw)
    assert resp.json()["status"] == "failed"
    assert "payment_failed" in notifier.kinds()

    db = session_factory()
    try:
        intent = payment_crud.get_intent(db, intent_id)
        assert intent.status == IntentStatus.failed
        assert intent.failure_reason == "card_declined"
    finally:
        db.close()

    # evento ripetuto: l'intent non è più pending
    assert _post(client, raw).json()["status"] == "ignored"


def test_refund_revokes_license(client, notifier, session_factory):
    intent_id = _start_fiat(client)
    _post(client, _event("payment_success", custom={"userId": USER, "intentId": intent_id}))

    db = session_factory()
    try:
        key = license_crud.get_license_by_source_payment(db, "pay_1").license_key
    finally:
        db.close()
    assert client.get(f"/validate/{key}").json()["valid"] is True

    resp = _post(client, _event("payment_refunded"))
    assert resp.json()["status"] == "refunded"
    assert "refund_processed" in notifier.kinds()

    db = session_factory()
    try:
        lic = license_crud.get_license_by_key(db, key)
        assert lic.is_active is False
        assert lic.deactivation_reason == "refunded"
        assert payment_crud.get_intent(db, intent_id).status == IntentStatus.refunded
    finally:
        db.close()

    body = client.get(f"/validate/{key}").json()
    assert body == {"valid": False, "message": "License revoked", "expirationDate": body["expirationDate"]}


def test_refund_for_unknown_payment_is_ignored(client):
    resp = _post(client, _event("payment_refunded", payment_id="pay_never_seen"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_refund_redelivery_is_noop(client, notifier, session_factory):
    intent_id = _start_fiat(client)
    _post(client, _event("payment_success", custom={"userId": USER, "intentId": intent_id}))

    raw = _event("payment_refunded")
    assert _post(client, raw).json()["status"] == "refunded"
    again = _post(client, raw)
    assert again.status_code == 200
    assert again.json()["status"] == "duplicate"
    assert notifier.kinds().count("refund_processed") == 1


def test_success_without_payment_or_intent_issues_nothing(client, notifier, session_factory):
    raw = _event("payment_success", payment_id=None, custom={"userId": USER})

    for _ in range(2):
        resp = _post(client, raw)
        assert resp.status_code == 200
        assert resp.json()["status"] == "invalid_event"

    db = session_factory()
    try:
        assert license_crud.list_active_for_user(db, USER) == []
    finally:
        db.close()
    assert notifier.admin_alerts[-1][0] == "Payment without id"
    assert "license_issued" not in notifier.kinds()
