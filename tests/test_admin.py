from paygate.crud import license_crud

from conftest import ADMIN_HEADERS

GRANTEE = "123456789012345678"


def _import(client, headers=ADMIN_HEADERS, **payload):
    body = {"product_type": "monthly", "license_keys": ["KEY-AAA", "KEY-BBB"]}
    body.update(payload)
    return client.post("/api/admin/licenses/import", json=body, headers=headers)


def test_requires_admin_secret(client):
    assert _import(client, headers={}).status_code == 401
    assert _import(client, headers={"X-Admin-Secret": "nope"}).status_code == 401
    assert client.get("/api/admin/stats").status_code == 401


def test_validation_errors(client):
    assert _import(client, product_type="weekly").status_code == 400
    assert _import(client, license_keys=["  ", ""]).status_code == 400
    assert _import(client, user_id="12345").status_code == 400


def test_import_assigns_and_notifies(client, notifier, session_factory):
    resp = _import(client, user_id=GRANTEE)
    assert resp.status_code == 201
    body = resp.json()
    assert body["added"] == 2
    assert body["user_id"] == GRANTEE
    assert body["expiration_date"]

    assert notifier.kinds() == ["keys_granted"]
    assert notifier.user_messages[0][0] == GRANTEE

    db = session_factory()
    try:
        lic = license_crud.get_license_by_key(db, "KEY-AAA")
        assert lic.user_id == GRANTEE
        assert lic.payment_method == "manual"
        assert lic.added_by == ADMIN_HEADERS["X-Admin-Id"]
        assert lic.source_payment_id.startswith("manual-")
    finally:
        db.close()

    # la chiave importata passa la validazione anche senza il formato HMAC
    assert client.get("/validate/KEY-AAA").json()["valid"] is True


def test_unassigned_import_does_not_notify(client, notifier):
    resp = _import(client)
    assert resp.status_code == 201
    assert resp.json()["user_id"] is None
    assert notifier.user_messages == []


def test_duplicate_keys_rejected(client, session_factory):
    assert _import(client).status_code == 201

    resp = _import(client, license_keys=["KEY-BBB", "KEY-CCC"])
    assert resp.status_code == 409
    assert resp.json()["detail"]["duplicates"] == ["KEY-BBB"]

    db = session_factory()
    try:
        assert license_crud.get_license_by_key(db, "KEY-CCC") is None
    finally:
        db.close()


def test_stats(client):
    _import(client)
    resp = client.get("/api/admin/stats", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_licenses"] == 2
    assert body["active_licenses"] == 2
    assert body["active_monitors"] == 0
    assert body["pending_payments"] == 0


def test_key_repeated_in_same_batch_rejected(client, session_factory):
    resp = _import(client, license_keys=["KEY-DUP", "KEY-DUP", "KEY-ONE"])
    assert resp.status_code == 409
    assert resp.json()["detail"]["duplicates"] == ["KEY-DUP"]

    db = session_factory()
    try:
        assert license_crud.get_license_by_key(db, "KEY-DUP") is None
        assert license_crud.get_license_by_key(db, "KEY-ONE") is None
    finally:
        db.close()
