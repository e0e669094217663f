# paygate/crud/payment_crud.py
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from paygate.core.utils import utcnow, gen_intent_id, gen_crypto_payment_id, compute_expiry
from paygate.models.purchase_intent import PurchaseIntent, IntentStatus
from paygate.models.crypto_payment import CryptoPayment, CryptoStatus

logger = logging.getLogger("paygate.ledger")

CRYPTO_PAYMENT_TTL_MINUTES = 30
CORRELATION_WINDOW_SECONDS = 300
DUPLICATE_PENDING_WINDOW_SECONDS = 600

# Transizioni ammesse: nuovo stato -> stati di partenza validi
INTENT_TRANSITIONS = {
    IntentStatus.completed: (IntentStatus.pending,),
    IntentStatus.failed: (IntentStatus.pending,),
    IntentStatus.refunded: (IntentStatus.completed,),
}
CRYPTO_TRANSITIONS = {
    CryptoStatus.completed: (CryptoStatus.pending,),
    CryptoStatus.expired: (CryptoStatus.pending,),
}

# Campo timestamp da valorizzare per ciascun nuovo stato
STATUS_TIMESTAMP_FIELD = {
    IntentStatus.completed: "completed_at",
    IntentStatus.failed: "failed_at",
    IntentStatus.refunded: "refunded_at",
}


# =========================
#  CREAZIONE
# =========================
def create_pending_fiat(
    db: Session,
    user_id: str,
    product_type: str,
    provider_product_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> str:
    """Registra un intent fiat in stato pending e ritorna l'intent_id."""
    now = now or utcnow()
    intent = PurchaseIntent(
        id=gen_intent_id(),
        user_id=user_id,
        product_type=product_type,
        provider_product_id=provider_product_id,
        status=IntentStatus.pending,
        created_at=now,
    )
    db.add(intent)
    db.commit()
    logger.info("intent %s creato (user=%s, product=%s)", intent.id, user_id, product_type)
    return intent.id


def create_pending_crypto(
    db: Session,
    user_id: str,
    product_type: str,
    symbol: str,
    amount: Decimal,
    usd_amount: Decimal,
    address: str,
    *,
    now: Optional[datetime] = None,
    ttl_minutes: int = CRYPTO_PAYMENT_TTL_MINUTES,
) -> str:
    """Registra un pagamento crypto pending con expires_at = now + 30 min."""
    now = now or utcnow()
    payment = CryptoPayment(
        id=gen_crypto_payment_id(now),
        user_id=user_id,
        product_type=product_type,
        crypto_symbol=symbol.upper(),
        crypto_amount=Decimal(amount),
        usd_amount=Decimal(usd_amount),
        wallet_address=address,
        status=CryptoStatus.pending,
        created_at=now,
        expires_at=compute_expiry(now, ttl_minutes),
    )
    db.add(payment)
    db.commit()
    logger.info(
        "pagamento crypto %s creato (user=%s, %s %s)",
        payment.id, user_id, payment.crypto_amount, payment.crypto_symbol,
    )
    return payment.id


# =========================
#  TRANSIZIONI DI STATO
# =========================
def _guarded_update(db: Session, model, record_id: str, allowed_from, values: Dict[str, Any], *, commit: bool) -> bool:
    """
    UPDATE condizionato allo stato corrente: è l'unico punto in cui cambia
    uno status, quindi "transizione se ancora pending" resta atomica anche
    con più worker/thread.
    """
    stmt = (
        update(model)
        .where(model.id == record_id, model.status.in_(allowed_from))
        .values(**values)
    )
    result = db.execute(stmt)
    if commit:
        db.commit()
    return (result.rowcount or 0) > 0


def transition_intent(
    db: Session,
    intent_id: str,
    new_status: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
    **extra: Any,
) -> bool:
    """
    Porta un intent nel nuovo stato se la transizione è ammessa.
    Ritorna False (senza eccezioni) se l'intent non esiste o non è più
    nello stato di partenza atteso.
    """
    allowed_from = INTENT_TRANSITIONS.get(new_status)
    if allowed_from is None:
        raise ValueError(f"unsupported intent status: {new_status}")

    now = now or utcnow()
    values: Dict[str, Any] = {"status": new_status, "updated_at": now}
    values[STATUS_TIMESTAMP_FIELD[new_status]] = now
    values.update(extra)

    ok = _guarded_update(db, PurchaseIntent, intent_id, allowed_from, values, commit=commit)
    if not ok:
        logger.info("transizione intent %s -> %s ignorata (non trovato o stato diverso)", intent_id, new_status)
    return ok


def transition_crypto(
    db: Session,
    payment_id: str,
    new_status: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
    **extra: Any,
) -> bool:
    """pending -> completed | expired; nessuna uscita da uno stato terminale."""
    allowed_from = CRYPTO_TRANSITIONS.get(new_status)
    if allowed_from is None:
        raise ValueError(f"unsupported crypto status: {new_status}")

    now = now or utcnow()
    values: Dict[str, Any] = {"status": new_status, "updated_at": now}
    if new_status == CryptoStatus.completed:
        values["completed_at"] = now
    values.update(extra)

    ok = _guarded_update(db, CryptoPayment, payment_id, allowed_from, values, commit=commit)
    if not ok:
        logger.info("transizione crypto %s -> %s ignorata (non trovato o stato terminale)", payment_id, new_status)
    return ok


def set_intent_audit(db: Session, intent_id: str, **fields: Any) -> None:
    """Aggiorna solo i campi di audit, senza toccare lo status."""
    db.execute(
        update(PurchaseIntent)
        .where(PurchaseIntent.id == intent_id)
        .values(**fields)
    )


# =========================
#  LOOKUP
# =========================
def get_intent(db: Session, intent_id: Optional[str]) -> Optional[PurchaseIntent]:
    if not intent_id:
        return None
    return db.get(PurchaseIntent, intent_id)


def get_crypto_payment(db: Session, payment_id: str) -> Optional[CryptoPayment]:
    return db.get(CryptoPayment, payment_id)


def find_intent_by_provider_payment(db: Session, provider_payment_id: Optional[str]) -> Optional[PurchaseIntent]:
    if not provider_payment_id:
        return None
    return (
        db.query(PurchaseIntent)
        .filter(PurchaseIntent.provider_payment_id == provider_payment_id)
        .first()
    )


def find_correlated_intent(
    db: Session,
    product_type: str,
    within_seconds: int = CORRELATION_WINDOW_SECONDS,
    *,
    now: Optional[datetime] = None,
) -> Optional[PurchaseIntent]:
    """
    Euristica di recenza: l'intent pending più recente dello stesso
    product_type creato negli ultimi `within_seconds`. Best effort.
    """
    now = now or utcnow()
    since = now - timedelta(seconds=within_seconds)
    return (
        db.query(PurchaseIntent)
        .filter(
            PurchaseIntent.status == IntentStatus.pending,
            PurchaseIntent.product_type == product_type,
            PurchaseIntent.created_at > since,
        )
        .order_by(PurchaseIntent.created_at.desc())
        .first()
    )


def find_latest_pending_intent_for_user(
    db: Session,
    user_id: str,
    product_type: str,
) -> Optional[PurchaseIntent]:
    return (
        db.query(PurchaseIntent)
        .filter(
            PurchaseIntent.status == IntentStatus.pending,
            PurchaseIntent.user_id == user_id,
            PurchaseIntent.product_type == product_type,
        )
        .order_by(PurchaseIntent.created_at.desc())
        .first()
    )


def has_recent_pending_intent(
    db: Session,
    user_id: str,
    product_type: str,
    *,
    now: Optional[datetime] = None,
    within_seconds: int = DUPLICATE_PENDING_WINDOW_SECONDS,
) -> bool:
    now = now or utcnow()
    since = now - timedelta(seconds=within_seconds)
    return (
        db.query(PurchaseIntent.id)
        .filter(
            PurchaseIntent.user_id == user_id,
            PurchaseIntent.product_type == product_type,
            PurchaseIntent.status == IntentStatus.pending,
            PurchaseIntent.created_at > since,
        )
        .first()
        is not None
    )


def list_pending_crypto(db: Session) -> List[CryptoPayment]:
    return (
        db.query(CryptoPayment)
        .filter(CryptoPayment.status == CryptoStatus.pending)
        .order_by(CryptoPayment.created_at.asc())
        .all()
    )


def list_pending_crypto_for_user(db: Session, user_id: str) -> List[CryptoPayment]:
    return (
        db.query(CryptoPayment)
        .filter(CryptoPayment.user_id == user_id, CryptoPayment.status == CryptoStatus.pending)
        .order_by(CryptoPayment.created_at.desc())
        .all()
    )


def list_expired_pending_crypto(db: Session, now: Optional[datetime] = None) -> List[CryptoPayment]:
    now = now or utcnow()
    return (
        db.query(CryptoPayment)
        .filter(CryptoPayment.status == CryptoStatus.pending, CryptoPayment.expires_at < now)
        .all()
    )


def completed_txids(db: Session, symbol: str) -> Set[str]:
    """Txid già usati per confermare un pagamento (anti-replay)."""
    rows = (
        db.query(CryptoPayment.txid)
        .filter(
            CryptoPayment.crypto_symbol == symbol.upper(),
            CryptoPayment.status == CryptoStatus.completed,
            CryptoPayment.txid.isnot(None),
        )
        .all()
    )
    return {row[0] for row in rows}


# =========================
#  STATS (admin)
# =========================
def payment_stats(db: Session) -> Dict[str, int]:
    by_status = dict(
        db.query(PurchaseIntent.status, func.count(PurchaseIntent.id))
        .group_by(PurchaseIntent.status)
        .all()
    )
    crypto_by_status = dict(
        db.query(CryptoPayment.status, func.count(CryptoPayment.id))
        .group_by(CryptoPayment.status)
        .all()
    )
    return {
        "total_payments": sum(by_status.values()),
        "completed_payments": by_status.get(IntentStatus.completed, 0),
        "pending_payments": by_status.get(IntentStatus.pending, 0),
        "failed_payments": by_status.get(IntentStatus.failed, 0),
        "refunded_payments": by_status.get(IntentStatus.refunded, 0),
        "total_crypto_payments": sum(crypto_by_status.values()),
        "completed_crypto_payments": crypto_by_status.get(CryptoStatus.completed, 0),
        "pending_crypto_payments": crypto_by_status.get(CryptoStatus.pending, 0),
        "expired_crypto_payments": crypto_by_status.get(CryptoStatus.expired, 0),
    }
