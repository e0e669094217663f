# paygate/core/catalog.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from paygate.core.config import Settings, settings as default_settings

LIFETIME = "lifetime"

# Durate in giorni per tipo prodotto (lifetime = 100 anni)
PRODUCT_DURATION_DAYS = {
    "2weeks": 14,
    "monthly": 30,
    LIFETIME: 100 * 365,
}
DEFAULT_DURATION_DAYS = 1


@dataclass(frozen=True)
class Product:
    product_type: str
    name: str
    price: str
    description: str
    duration: str
    provider_product_id: str
    crypto_price: Decimal


@dataclass(frozen=True)
class CryptoAsset:
    symbol: str
    name: str
    address: str
    price_id: str
    explorer_tx_url: str


def build_products(cfg: Optional[Settings] = None) -> Dict[str, Product]:
    cfg = cfg or default_settings
    return {
        "2weeks": Product(
            product_type="2weeks",
            name="2 Weeks Access",
            price="$6.99 + taxes",
            description="Full access for 2 weeks",
            duration="14 days",
            provider_product_id=cfg.PRODUCT_ID_2WEEKS,
            crypto_price=Decimal("5.00"),
        ),
        "monthly": Product(
            product_type="monthly",
            name="Monthly Access",
            price="$11 + taxes",
            description="Full access for 1 month",
            duration="30 days",
            provider_product_id=cfg.PRODUCT_ID_MONTHLY,
            crypto_price=Decimal("9.00"),
        ),
        LIFETIME: Product(
            product_type=LIFETIME,
            name="Lifetime Access",
            price="$22 + taxes",
            description="Unlimited access forever",
            duration="Forever",
            provider_product_id=cfg.PRODUCT_ID_LIFETIME,
            crypto_price=Decimal("21.00"),
        ),
    }


def build_crypto_assets(cfg: Optional[Settings] = None) -> Dict[str, CryptoAsset]:
    """Asset supportati; un asset senza wallet configurato non viene esposto."""
    cfg = cfg or default_settings
    assets = {
        "BTC": CryptoAsset(
            symbol="BTC",
            name="Bitcoin",
            address=cfg.BTC_ADDRESS,
            price_id="bitcoin",
            explorer_tx_url="https://blockstream.info/tx/",
        ),
        "LTC": CryptoAsset(
            symbol="LTC",
            name="Litecoin",
            address=cfg.LTC_ADDRESS,
            price_id="litecoin",
            explorer_tx_url="https://blockchair.com/litecoin/transaction/",
        ),
    }
    return {sym: a for sym, a in assets.items() if a.address}


def product_type_for_provider_id(provider_product_id: Optional[str], products: Dict[str, Product]) -> Optional[str]:
    if not provider_product_id:
        return None
    for product_type, product in products.items():
        if product.provider_product_id and product.provider_product_id == provider_product_id:
            return product_type
    return None


def calculate_expiration_date(product_type: str, now: datetime) -> datetime:
    """Calcolata una sola volta all'emissione della licenza."""
    days = PRODUCT_DURATION_DAYS.get(product_type, DEFAULT_DURATION_DAYS)
    return now + timedelta(days=days)
