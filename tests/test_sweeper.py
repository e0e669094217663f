import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from paygate.core.utils import utcnow
from paygate.crud import license_crud, payment_crud
from paygate.models.crypto_payment import CryptoStatus
from paygate.services.sweeper import MaintenanceSweeper

from conftest import BTC_ADDRESS

USER = "123456789012345678"


@pytest.fixture
def sweeper(session_factory, guard, notifier, products):
    return MaintenanceSweeper(session_factory, guard, notifier, products)


def _issue(db, codec, product_type, source, now):
    lic = license_crud.issue(
        db, codec,
        user_id=USER, product_type=product_type,
        source_payment_id=source, payment_method="fiat", now=now,
    )
    db.commit()
    return lic.license_key


def test_expire_licenses(sweeper, db, codec, session_factory):
    fifteen_days_ago = utcnow() - timedelta(days=15)
    overdue = _issue(db, codec, "2weeks", "pay-a", fifteen_days_ago)
    lifetime = _issue(db, codec, "lifetime", "pay-b", fifteen_days_ago)
    fresh = _issue(db, codec, "monthly", "pay-c", utcnow())

    assert sweeper.expire_licenses() == 1
    assert sweeper.expire_licenses() == 0

    check = session_factory()
    try:
        lic = license_crud.get_license_by_key(check, overdue)
        assert lic.is_active is False
        assert lic.deactivation_reason == "expired"
        assert lic.expired_at is not None
        assert license_crud.get_license_by_key(check, lifetime).is_active is True
        assert license_crud.get_license_by_key(check, fresh).is_active is True
    finally:
        check.close()


def test_expire_licenses_prunes_guard_state(sweeper, guard, clock):
    guard.check_rate_limit(USER, "buy")
    guard.check_purchase_cooldown(USER)
    clock.advance(24 * 3600 + 1)

    sweeper.expire_licenses()
    assert guard.stats()["rate_limit_entries"] == 0
    assert guard.stats()["cooldown_entries"] == 0


def test_expire_crypto_payments(sweeper, db, notifier, session_factory):
    stale = payment_crud.create_pending_crypto(
        db, USER, "monthly", "BTC", Decimal("0.00015"), Decimal("9.00"), BTC_ADDRESS,
        now=utcnow() - timedelta(minutes=45),
    )
    paid = payment_crud.create_pending_crypto(
        db, USER, "2weeks", "BTC", Decimal("0.0001"), Decimal("5.00"), BTC_ADDRESS,
        now=utcnow() - timedelta(minutes=45),
    )
    payment_crud.transition_crypto(db, paid, CryptoStatus.completed, txid="tx-1")
    live = payment_crud.create_pending_crypto(
        db, USER, "lifetime", "BTC", Decimal("0.00035"), Decimal("21.00"), BTC_ADDRESS,
    )

    assert asyncio.run(sweeper.expire_crypto_payments()) == 1
    assert asyncio.run(sweeper.expire_crypto_payments()) == 0
    assert notifier.kinds() == ["crypto_payment_expired"]

    check = session_factory()
    try:
        assert payment_crud.get_crypto_payment(check, stale).status == CryptoStatus.expired
        assert payment_crud.get_crypto_payment(check, paid).status == CryptoStatus.completed
        assert payment_crud.get_crypto_payment(check, live).status == CryptoStatus.pending
    finally:
        check.close()
