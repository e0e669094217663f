# tests/conftest.py
import hashlib
import hmac
import os
import time
from decimal import Decimal

# Le Settings leggono l'ambiente all'import: va popolato prima di importare paygate
os.environ.update(
    {
        "DATABASE_URL": "sqlite://",
        "LICENSE_KEY_SECRET": "test-license-secret",
        "PROVIDER_WEBHOOK_SECRET": "whsec-test",
        "PRODUCT_ID_2WEEKS": "prod-2weeks",
        "PRODUCT_ID_MONTHLY": "prod-monthly",
        "PRODUCT_ID_LIFETIME": "prod-lifetime",
        "CHECKOUT_BASE_URL": "https://shop.example.test",
        "BTC_ADDRESS": "bc1qtestaddress000000000000000000000000",
        "LTC_ADDRESS": "LTestAddress0000000000000000000000",
        "ADMIN_SECRET": "admin-secret",
        "SCHEDULER_ENABLED": "false",
        "LOG_LEVEL": "DEBUG",
    }
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from paygate.core.catalog import build_crypto_assets, build_products
from paygate.core.license_keys import LicenseKeyCodec
from paygate.db.base import Base
from paygate.db.session import build_engine
from paygate.main import create_app
from paygate.services.anti_abuse import AntiAbuseGuard
from paygate.services.chain_sources import ChainSource, ChainSourceError, PriceSource
from paygate.services.fulfillment import Fulfillment
from paygate.services.notify import Notifier

BTC_ADDRESS = os.environ["BTC_ADDRESS"]
LTC_ADDRESS = os.environ["LTC_ADDRESS"]
WEBHOOK_SECRET = os.environ["PROVIDER_WEBHOOK_SECRET"]
ADMIN_HEADERS = {"X-Admin-Secret": "admin-secret", "X-Admin-Id": "999999999999999999"}


# ------------------------------------------------------------
# Fakes
# ------------------------------------------------------------
class FakeClock:
    def __init__(self, start=None):
        self.t = start if start is not None else float(int(time.time()))

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


class RecordingNotifier(Notifier):
    def __init__(self):
        self.user_messages = []
        self.admin_alerts = []

    async def _send_user(self, user_id, message):
        self.user_messages.append((user_id, message))
        return True

    async def _send_admin(self, title, payload):
        self.admin_alerts.append((title, payload))
        return True

    def kinds(self):
        return [m.kind for _, m in self.user_messages]


class FakeChainSource(ChainSource):
    def __init__(self):
        self.transactions = []
        self.fail = False
        self.calls = 0

    async def fetch_transactions(self, address):
        self.calls += 1
        if self.fail:
            raise ChainSourceError("explorer down")
        return list(self.transactions)


class FakePriceSource(PriceSource):
    def __init__(self, prices=None):
        self.prices = prices or {}
        self.fail = False

    async def get_price(self, symbol):
        if self.fail or symbol not in self.prices:
            raise ChainSourceError("price unavailable")
        return self.prices[symbol]


def sign(raw: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return "sha256_" + hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


# ------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------
@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def guard(clock):
    return AntiAbuseGuard(clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def chain():
    return FakeChainSource()


@pytest.fixture
def price_source():
    return FakePriceSource({"BTC": Decimal("60000"), "LTC": Decimal("80")})


@pytest.fixture
def codec():
    return LicenseKeyCodec("test-license-secret")


@pytest.fixture
def products():
    return build_products()


@pytest.fixture
def assets():
    return build_crypto_assets()


@pytest.fixture
def fulfillment(codec, notifier, products, assets):
    return Fulfillment(codec, notifier, products, assets)


@pytest.fixture
def app(session_factory, notifier, chain, price_source, guard, codec):
    return create_app(
        session_factory=session_factory,
        start_background=False,
        notifier=notifier,
        chain_sources={"BTC": chain, "LTC": chain},
        price_source=price_source,
        guard=guard,
        codec=codec,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
