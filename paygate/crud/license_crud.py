# paygate/crud/license_crud.py
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, Iterable

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from paygate.core.catalog import LIFETIME, calculate_expiration_date
from paygate.core.license_keys import LicenseKeyCodec
from paygate.core.utils import utcnow, gen_manual_payment_id
from paygate.models.license import License

logger = logging.getLogger("paygate.licenses")

KEY_GENERATION_TRIES = 6


# =========================
#  LOOKUP
# =========================
def get_license_by_key(db: Session, license_key: str) -> Optional[License]:
    return db.query(License).filter(License.license_key == license_key).first()


def get_license_by_source_payment(db: Session, source_payment_id: Optional[str]) -> Optional[License]:
    if not source_payment_id:
        return None
    return db.query(License).filter(License.source_payment_id == source_payment_id).first()


def list_active_for_user(db: Session, user_id: str) -> List[License]:
    return (
        db.query(License)
        .filter(License.user_id == user_id, License.is_active.is_(True))
        .order_by(License.created_at.desc())
        .all()
    )


def has_active_non_lifetime(db: Session, user_id: str, product_type: str, *, now: Optional[datetime] = None) -> bool:
    """Licenza attiva e non scaduta dello stesso tipo (lifetime esclusa)."""
    if product_type == LIFETIME:
        return False
    now = now or utcnow()
    return (
        db.query(License.id)
        .filter(
            License.user_id == user_id,
            License.product_type == product_type,
            License.is_active.is_(True),
            License.expiration_date > now,
        )
        .first()
        is not None
    )


# =========================
#  EMISSIONE
# =========================
def _unique_key(db: Session, codec: LicenseKeyCodec, user_id: Optional[str], product_type: str) -> str:
    for _ in range(KEY_GENERATION_TRIES):
        candidate = codec.generate(user_id, product_type)
        if get_license_by_key(db, candidate) is None:
            return candidate
    raise RuntimeError("license_key_generation_failed")


def issue(
    db: Session,
    codec: LicenseKeyCodec,
    *,
    user_id: Optional[str],
    product_type: str,
    source_payment_id: str,
    payment_method: str,
    provider_product_id: Optional[str] = None,
    txid: Optional[str] = None,
    now: Optional[datetime] = None,
) -> License:
    """
    Aggiunge una licenza attiva alla sessione SENZA commit: il chiamante
    la committa insieme alla transizione del pagamento, così licenza e
    stato restano coerenti. Un secondo issue con lo stesso
    source_payment_id fallisce al flush per il vincolo UNIQUE.
    """
    now = now or utcnow()
    lic = License(
        license_key=_unique_key(db, codec, user_id, product_type),
        user_id=user_id,
        product_type=product_type,
        provider_product_id=provider_product_id,
        source_payment_id=source_payment_id,
        payment_method=payment_method,
        txid=txid,
        is_active=True,
        created_at=now,
        expiration_date=calculate_expiration_date(product_type, now),
    )
    db.add(lic)
    db.flush()
    return lic


def import_keys(
    db: Session,
    keys: Iterable[str],
    product_type: str,
    *,
    user_id: Optional[str] = None,
    provider_product_id: Optional[str] = None,
    added_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[List[License], List[str]]:
    """
    Import manuale (admin) di chiavi già esistenti.
    Ritorna (licenze create, chiavi duplicate). Se ci sono duplicati non
    viene creato nulla.
    """
    keys = list(keys)
    existing = {
        row[0]
        for row in db.query(License.license_key).filter(License.license_key.in_(keys)).all()
    }
    seen = set()
    duplicates = []
    for key in keys:
        # già a DB oppure ripetuta nello stesso batch
        if (key in existing or key in seen) and key not in duplicates:
            duplicates.append(key)
        seen.add(key)
    if duplicates:
        return [], duplicates

    now = now or utcnow()
    expiration_date = calculate_expiration_date(product_type, now)
    created = []
    for key in keys:
        lic = License(
            license_key=key,
            user_id=user_id,
            product_type=product_type,
            provider_product_id=provider_product_id,
            source_payment_id=gen_manual_payment_id(),
            payment_method="manual",
            is_active=True,
            created_at=now,
            expiration_date=expiration_date,
            added_by=added_by,
        )
        db.add(lic)
        created.append(lic)
    db.commit()
    logger.info("importate %d chiavi %s (user=%s, by=%s)", len(created), product_type, user_id, added_by)
    return created, []


# =========================
#  DISATTIVAZIONE
# =========================
def deactivate_for_refund(
    db: Session, source_payment_id: str, *, now: Optional[datetime] = None
) -> Tuple[Optional[License], bool]:
    """
    Disattiva la licenza emessa per un pagamento rimborsato (senza commit).
    Ritorna (licenza, disattivata_ora): False se era già inattiva.
    """
    lic = get_license_by_source_payment(db, source_payment_id)
    if lic is None or not lic.is_active:
        return lic, False
    now = now or utcnow()
    lic.is_active = False
    lic.deactivated_at = now
    lic.deactivation_reason = "refunded"
    db.add(lic)
    return lic, True


def expire_overdue(db: Session, *, now: Optional[datetime] = None) -> int:
    """Licenze attive con expiration_date passata -> is_active=False."""
    now = now or utcnow()
    result = db.execute(
        update(License)
        .where(License.is_active.is_(True), License.expiration_date < now)
        .values(
            is_active=False,
            expired_at=now,
            deactivated_at=now,
            deactivation_reason="expired",
        )
    )
    db.commit()
    return result.rowcount or 0


# =========================
#  ADMIN HELPERS
# =========================
def serialize_license(lic: License) -> Dict[str, Any]:
    return {
        "licenseKey": lic.license_key,
        "userId": lic.user_id,
        "productType": lic.product_type,
        "paymentMethod": lic.payment_method,
        "isActive": bool(lic.is_active),
        "createdAt": lic.created_at.isoformat() if lic.created_at else None,
        "expirationDate": lic.expiration_date.isoformat() if lic.expiration_date else None,
        "isExpired": lic.expiration_date < utcnow() if lic.expiration_date else False,
    }


def license_stats(db: Session) -> Dict[str, int]:
    total = db.query(func.count(License.id)).scalar() or 0
    active = db.query(func.count(License.id)).filter(License.is_active.is_(True)).scalar() or 0
    return {"total_licenses": total, "active_licenses": active}
