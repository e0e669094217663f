# paygate/services/anti_abuse.py
from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from paygate.core.catalog import LIFETIME
from paygate.core.utils import from_epoch, to_epoch
from paygate.crud import license_crud, payment_crud

logger = logging.getLogger("paygate.anti_abuse")

SUSPICIOUS_WINDOW_SECONDS = 24 * 60 * 60
SUSPICIOUS_THRESHOLD = 20
MIN_ACCOUNT_AGE_SECONDS = 7 * 24 * 60 * 60
SUSPICIOUS_NAME = re.compile(r"bot|test|fake|spam", re.IGNORECASE)

# Pulizia periodica (sweeper giornaliero)
RATE_LIMIT_RETENTION_SECONDS = 60 * 60
COOLDOWN_RETENTION_SECONDS = 24 * 60 * 60


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    reason: Optional[str] = None


@dataclass
class UserProfile:
    """Quello che il layer UI sa dell'account che sta comprando."""
    id: str
    username: str = ""
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class UserValidation:
    is_valid: bool
    reason: Optional[str] = None
    requires_manual_review: bool = False


@dataclass
class _Window:
    count: int
    reset_at: float


class AntiAbuseGuard:
    """
    Stato anti-abuso in memoria (non persistito), posseduto da una sola istanza.

    Gli endpoint sync di FastAPI girano nel threadpool: ogni operazione
    prende il lock. Il clock (epoch in secondi) è iniettabile per i test.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._rate_limits: Dict[Tuple[str, str], _Window] = {}
        self._cooldowns: Dict[str, float] = {}
        self._activity: Dict[str, List[Tuple[float, str]]] = {}

    def now(self) -> float:
        return self._clock()

    # ---------------------- rate limit ----------------------

    def check_rate_limit(self, user_id: str, command: str, max_requests: int = 5, window_seconds: float = 60) -> bool:
        """Finestra fissa per coppia (utente, comando)."""
        key = (user_id, command)
        with self._lock:
            now = self._clock()
            window = self._rate_limits.get(key)
            if window is None or now > window.reset_at:
                self._rate_limits[key] = _Window(count=1, reset_at=now + window_seconds)
                return True
            if window.count >= max_requests:
                return False
            window.count += 1
            return True

    def check_purchase_cooldown(self, user_id: str, cooldown_seconds: float = 300) -> bool:
        """True = consentito; solo in quel caso `now` diventa il nuovo anchor."""
        with self._lock:
            now = self._clock()
            last = self._cooldowns.get(user_id)
            if last is None or now - last > cooldown_seconds:
                self._cooldowns[user_id] = now
                return True
            return False

    def track_suspicious_activity(self, user_id: str, label: str) -> bool:
        """Segnale di osservabilità: True se > 20 eventi nelle ultime 24h."""
        with self._lock:
            now = self._clock()
            cutoff = now - SUSPICIOUS_WINDOW_SECONDS
            events = [e for e in self._activity.get(user_id, []) if e[0] > cutoff]
            events.append((now, label))
            self._activity[user_id] = events
            flagged = len(events) > SUSPICIOUS_THRESHOLD
        if flagged:
            logger.warning("attività sospetta per user %s (%d eventi in 24h)", user_id, len(events))
        return flagged

    # ---------------------- checks su storage ----------------------

    def check_duplicate_purchase(self, db: Session, user_id: str, product_type: str) -> DuplicateCheck:
        now = from_epoch(self._clock())
        if payment_crud.has_recent_pending_intent(db, user_id, product_type, now=now):
            return DuplicateCheck(True, "You have a pending purchase for this product. Please wait 10 minutes.")
        if product_type != LIFETIME and license_crud.has_active_non_lifetime(db, user_id, product_type, now=now):
            return DuplicateCheck(True, "You already have an active license for this product.")
        return DuplicateCheck(False)

    def validate_user(self, user: UserProfile) -> UserValidation:
        if user.created_at is not None:
            age = self._clock() - to_epoch(user.created_at)
            if age < MIN_ACCOUNT_AGE_SECONDS:
                return UserValidation(False, "Account too new", requires_manual_review=True)
        if not user.avatar and SUSPICIOUS_NAME.search(user.username or ""):
            return UserValidation(False, "Suspicious account characteristics", requires_manual_review=True)
        return UserValidation(True)

    # ---------------------- manutenzione ----------------------

    def prune(self) -> Dict[str, int]:
        """Chiamato dallo sweeper giornaliero."""
        with self._lock:
            now = self._clock()
            stale_windows = [k for k, w in self._rate_limits.items() if now - w.reset_at > RATE_LIMIT_RETENTION_SECONDS]
            for key in stale_windows:
                del self._rate_limits[key]

            stale_cooldowns = [u for u, ts in self._cooldowns.items() if now - ts > COOLDOWN_RETENTION_SECONDS]
            for user_id in stale_cooldowns:
                del self._cooldowns[user_id]

            cutoff = now - SUSPICIOUS_WINDOW_SECONDS
            for user_id in list(self._activity):
                events = [e for e in self._activity[user_id] if e[0] > cutoff]
                if events:
                    self._activity[user_id] = events
                else:
                    del self._activity[user_id]

        return {"rate_limits": len(stale_windows), "cooldowns": len(stale_cooldowns)}

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "rate_limit_entries": len(self._rate_limits),
                "cooldown_entries": len(self._cooldowns),
                "suspicious_activity_entries": len(self._activity),
            }
