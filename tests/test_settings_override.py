from fastapi.testclient import TestClient

from paygate.core.config import settings
from paygate.main import create_app
from paygate.services.notify import WebhookNotifier, build_notifier

from conftest import sign


def _custom_app(session_factory, notifier, chain, price_source, guard, codec, **overrides):
    cfg = settings.model_copy(update=overrides)
    return create_app(
        cfg=cfg,
        session_factory=session_factory,
        notifier=notifier,
        chain_sources={"BTC": chain, "LTC": chain},
        price_source=price_source,
        guard=guard,
        codec=codec,
    )


def test_signature_header_and_admin_secret_come_from_app_cfg(
    session_factory, notifier, chain, price_source, guard, codec
):
    app = _custom_app(
        session_factory, notifier, chain, price_source, guard, codec,
        PROVIDER_SIGNATURE_HEADER="X-Custom-Signature",
        ADMIN_SECRET="other-secret",
        SCHEDULER_ENABLED=False,
    )
    raw = b'{"type": "subscription_renewed", "data": {}}'
    with TestClient(app) as client:
        resp = client.post("/webhook", content=raw, headers={"X-Custom-Signature": sign(raw)})
        assert resp.status_code == 200
        assert resp.json()["status"] == "ignored"

        assert client.get("/api/admin/stats", headers={"X-Admin-Secret": "admin-secret"}).status_code == 401
        assert client.get("/api/admin/stats", headers={"X-Admin-Secret": "other-secret"}).status_code == 200


def test_scheduler_follows_app_cfg(session_factory, notifier, chain, price_source, guard, codec):
    assert settings.SCHEDULER_ENABLED is False
    app = _custom_app(
        session_factory, notifier, chain, price_source, guard, codec,
        SCHEDULER_ENABLED=True,
    )
    with TestClient(app):
        assert app.state.license_sweep_task is not None
        assert app.state.crypto_sweep_task is not None
    assert app.state.license_sweep_task is None
    assert app.state.crypto_sweep_task is None


def test_webhook_notifier_uses_cfg_timeouts():
    cfg = settings.model_copy(
        update={
            "NOTIFY_WEBHOOK_URL": "https://bot.example.test/hook",
            "NOTIFY_WEBHOOK_TIMEOUT_SECONDS": 2,
            "NOTIFY_WEBHOOK_MAX_RETRIES": 7,
        }
    )
    notifier = build_notifier(cfg)
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.timeout_seconds == 2
    assert notifier.max_retries == 7
