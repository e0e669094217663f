# paygate/core/utils.py
import secrets
import string
import time
import uuid
from datetime import datetime, timedelta, timezone

# ------------------------------------------------------------
# Id generation and Time Helpers
# ------------------------------------------------------------

ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    """Restituisce l'orario UTC corrente (naive, coerente con le colonne DB)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(ts: float) -> datetime:
    """Converte un epoch in secondi in datetime UTC naive."""
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def to_epoch(dt: datetime) -> float:
    """Inverso di from_epoch: il datetime naive è interpretato come UTC."""
    return dt.replace(tzinfo=timezone.utc).timestamp()


def epoch_ms() -> int:
    return int(time.time() * 1000)


def compute_expiry(start: datetime, minutes: int) -> datetime:
    """Calcola la data di scadenza partendo da un istante e minuti di durata."""
    return start + timedelta(minutes=minutes)


def gen_intent_id() -> str:
    return str(uuid.uuid4())


def gen_crypto_payment_id(now: datetime) -> str:
    """Formato: crypto_<epoch ms>_<6 caratteri casuali>."""
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(6))
    return f"crypto_{int(to_epoch(now) * 1000)}_{suffix}"


def gen_manual_payment_id() -> str:
    return f"manual-{uuid.uuid4()}"


def isoformat_z(dt: datetime) -> str:
    return dt.isoformat() + "Z"


def to_naive_utc(dt: datetime) -> datetime:
    """Datetime con timezone -> UTC naive; i naive sono già considerati UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
