# paygate/api/purchases.py
from __future__ import annotations

from types import SimpleNamespace

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from paygate.api.deps import get_db, get_services
from paygate.core.messages import REJECTION_MESSAGES
from paygate.core.utils import to_naive_utc, utcnow
from paygate.crud import license_crud, payment_crud
from paygate.schemas.purchase import (
    CryptoPurchaseIn,
    CryptoPurchaseOut,
    CryptoQuoteItem,
    CryptoQuoteOut,
    FiatPurchaseIn,
    FiatPurchaseOut,
    PendingCryptoPaymentOut,
    ProductOut,
    PurchaseUser,
    UserLicenseOut,
    UserLicensesOut,
    UserPaymentsOut,
)
from paygate.services.anti_abuse import UserProfile

router = APIRouter(prefix="/api", tags=["purchases"])

# error_code -> (status HTTP, messaggio utente)
ERROR_STATUS = {
    "invalid_product": status.HTTP_404_NOT_FOUND,
    "unsupported_crypto": status.HTTP_400_BAD_REQUEST,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "manual_review": status.HTTP_403_FORBIDDEN,
    "cooldown": status.HTTP_429_TOO_MANY_REQUESTS,
    "duplicate": status.HTTP_409_CONFLICT,
    "price_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _raise_for(err: str):
    raise HTTPException(
        status_code=ERROR_STATUS.get(err, status.HTTP_400_BAD_REQUEST),
        detail={"code": err, "message": REJECTION_MESSAGES.get(err, err)},
    )


def _profile(payload: PurchaseUser) -> UserProfile:
    return UserProfile(
        id=payload.user_id,
        username=payload.username,
        avatar=payload.avatar,
        created_at=to_naive_utc(payload.account_created_at) if payload.account_created_at else None,
    )


# =====================================================================
# CATALOGO
# =====================================================================
@router.get("/products", response_model=list[ProductOut])
def list_products(services: SimpleNamespace = Depends(get_services)):
    return list(services.products.values())


@router.get("/products/{product_type}/crypto-quote", response_model=CryptoQuoteOut)
async def crypto_quote(product_type: str, services: SimpleNamespace = Depends(get_services)):
    quotes, err = await services.purchases.quote(product_type)
    if err:
        _raise_for(err)
    product = services.products[product_type]
    return CryptoQuoteOut(
        product_type=product_type,
        usd_amount=product.crypto_price,
        quotes=[
            CryptoQuoteItem(symbol=sym, amount=amount, rate_usd=rate, address=services.assets[sym].address)
            for sym, (amount, rate) in quotes.items()
        ],
    )


# =====================================================================
# ACQUISTI
# =====================================================================
@router.post("/purchases/fiat", response_model=FiatPurchaseOut, status_code=status.HTTP_201_CREATED)
def start_fiat_purchase(
    payload: FiatPurchaseIn,
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
):
    checkout, err = services.purchases.start_fiat(db, _profile(payload), payload.product_type)
    if err:
        _raise_for(err)
    return FiatPurchaseOut(
        intent_id=checkout.intent_id,
        product_type=checkout.product.product_type,
        product_name=checkout.product.name,
        price=checkout.product.price,
        checkout_url=checkout.checkout_url,
    )


@router.post("/purchases/crypto", response_model=CryptoPurchaseOut, status_code=status.HTTP_201_CREATED)
async def start_crypto_purchase(
    payload: CryptoPurchaseIn,
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
):
    instructions, err = await services.purchases.start_crypto(
        db, _profile(payload), payload.product_type, payload.crypto_symbol
    )
    if err:
        _raise_for(err)
    return CryptoPurchaseOut(
        payment_id=instructions.payment_id,
        product_type=instructions.product.product_type,
        product_name=instructions.product.name,
        crypto_symbol=instructions.symbol,
        crypto_amount=instructions.amount,
        usd_amount=instructions.usd_amount,
        wallet_address=instructions.address,
        expires_at=instructions.expires_at,
    )


# =====================================================================
# STATO UTENTE
# =====================================================================
@router.get("/users/{user_id}/licenses", response_model=UserLicensesOut)
def user_licenses(
    user_id: str,
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
):
    now = utcnow()
    items = []
    for lic in license_crud.list_active_for_user(db, user_id):
        product = services.products.get(lic.product_type)
        items.append(
            UserLicenseOut(
                license_key=lic.license_key,
                product_type=lic.product_type,
                product_name=product.name if product else None,
                is_expired=bool(lic.expiration_date and lic.expiration_date < now),
                created_at=lic.created_at,
                expiration_date=lic.expiration_date,
            )
        )
    return UserLicensesOut(user_id=user_id, licenses=items)


@router.get("/users/{user_id}/crypto-payments", response_model=UserPaymentsOut)
def user_crypto_payments(user_id: str, db: Session = Depends(get_db)):
    now = utcnow()
    items = []
    for p in payment_crud.list_pending_crypto_for_user(db, user_id):
        seconds_left = max(0, int((p.expires_at - now).total_seconds()))
        items.append(
            PendingCryptoPaymentOut(
                payment_id=p.id,
                product_type=p.product_type,
                crypto_symbol=p.crypto_symbol,
                crypto_amount=p.crypto_amount,
                wallet_address=p.wallet_address,
                expires_at=p.expires_at,
                minutes_left=seconds_left // 60,
                status="awaiting_payment" if seconds_left > 0 else "expired",
            )
        )
    return UserPaymentsOut(user_id=user_id, payments=items)
