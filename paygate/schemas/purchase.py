# paygate/schemas/purchase.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

# ------------------------------------------------------------
# Catalogo
# ------------------------------------------------------------
class ProductOut(BaseModel):
    product_type: str
    name: str
    price: str
    crypto_price: Decimal
    description: str
    duration: str

    model_config = {"from_attributes": True}


class CryptoQuoteItem(BaseModel):
    symbol: str
    amount: Decimal
    rate_usd: Decimal
    address: str


class CryptoQuoteOut(BaseModel):
    product_type: str
    usd_amount: Decimal
    quotes: List[CryptoQuoteItem]


# ------------------------------------------------------------
# Richieste di acquisto (dal layer UI)
# ------------------------------------------------------------
class PurchaseUser(BaseModel):
    """Profilo dell'account che acquista, come lo vede il bot."""
    user_id: str = Field(..., min_length=1, max_length=64)
    username: str = ""
    avatar: Optional[str] = None
    account_created_at: Optional[datetime] = None


class FiatPurchaseIn(PurchaseUser):
    product_type: str


class CryptoPurchaseIn(PurchaseUser):
    product_type: str
    crypto_symbol: str = Field(..., min_length=2, max_length=10)


class FiatPurchaseOut(BaseModel):
    intent_id: str
    product_type: str
    product_name: str
    price: str
    checkout_url: str


class CryptoPurchaseOut(BaseModel):
    payment_id: str
    product_type: str
    product_name: str
    crypto_symbol: str
    crypto_amount: Decimal
    usd_amount: Decimal
    wallet_address: str
    expires_at: datetime


# ------------------------------------------------------------
# Stato lato utente (/license, /payment)
# ------------------------------------------------------------
class UserLicenseOut(BaseModel):
    license_key: str
    product_type: str
    product_name: Optional[str] = None
    is_expired: bool
    created_at: Optional[datetime] = None
    expiration_date: Optional[datetime] = None


class PendingCryptoPaymentOut(BaseModel):
    payment_id: str
    product_type: str
    crypto_symbol: str
    crypto_amount: Decimal
    wallet_address: str
    expires_at: datetime
    minutes_left: int
    status: str


class UserLicensesOut(BaseModel):
    user_id: str
    licenses: List[UserLicenseOut]


class UserPaymentsOut(BaseModel):
    user_id: str
    payments: List[PendingCryptoPaymentOut]
