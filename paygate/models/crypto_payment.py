# paygate/models/crypto_payment.py
from sqlalchemy import Column, String, DateTime, Numeric, Index

from paygate.core.utils import utcnow
from paygate.db.base import Base


class CryptoStatus:
    pending = "pending"
    completed = "completed"
    expired = "expired"


class CryptoPayment(Base):
    __tablename__ = "crypto_payments"

    # crypto_<epoch ms>_<random>
    id = Column(String(64), primary_key=True)
    user_id = Column(String(32), nullable=False, index=True)
    product_type = Column(String(32), nullable=False)
    crypto_symbol = Column(String(8), nullable=False)
    crypto_amount = Column(Numeric(18, 8), nullable=False)
    usd_amount = Column(Numeric(12, 2), nullable=False)
    wallet_address = Column(String(128), nullable=False)
    status = Column(String(16), nullable=False, default=CryptoStatus.pending)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    # Fissato alla creazione (created_at + 30 min), mai modificato
    expires_at = Column(DateTime(timezone=False), nullable=False)
    updated_at = Column(DateTime(timezone=False), nullable=True)
    completed_at = Column(DateTime(timezone=False), nullable=True)
    txid = Column(String(128), nullable=True, index=True)
    license_key = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_crypto_payments_status_expires", "status", "expires_at"),
    )

    @property
    def is_expired(self) -> bool:
        return utcnow() > self.expires_at
