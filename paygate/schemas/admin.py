from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

# ===== IMPORT CHIAVI =====
class LicenseImportIn(BaseModel):
    product_type: str
    license_keys: List[str] = Field(default_factory=list)
    # Discord user id (17-19 cifre) oppure vuoto = chiavi non assegnate
    user_id: Optional[str] = None


class LicenseImportOut(BaseModel):
    added: int
    product_type: str
    user_id: Optional[str] = None
    expiration_date: Optional[datetime] = None
    license_keys: List[str]


# ===== STATS =====
class AdminStatsOut(BaseModel):
    total_licenses: int
    active_licenses: int
    total_payments: int
    completed_payments: int
    pending_payments: int
    failed_payments: int
    refunded_payments: int
    total_crypto_payments: int
    completed_crypto_payments: int
    pending_crypto_payments: int
    expired_crypto_payments: int
    rate_limit_entries: int
    cooldown_entries: int
    suspicious_activity_entries: int
    active_monitors: int
    uptime_seconds: int
