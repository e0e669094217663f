# paygate/models/purchase_intent.py
import uuid

from sqlalchemy import Column, String, DateTime, Text, Index

from paygate.core.utils import utcnow
from paygate.db.base import Base


class IntentStatus:
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PurchaseIntent(Base):
    """Checkout fiat avviato da un utente, in attesa della conferma del provider."""

    __tablename__ = "purchase_intents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(32), nullable=False, index=True)
    product_type = Column(String(32), nullable=False)
    provider_product_id = Column(String(128), nullable=True)
    status = Column(String(16), nullable=False, default=IntentStatus.pending)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=False), nullable=True)

    # --- campi di audit (mutabili anche dopo lo stato terminale) ---
    completed_at = Column(DateTime(timezone=False), nullable=True)
    failed_at = Column(DateTime(timezone=False), nullable=True)
    refunded_at = Column(DateTime(timezone=False), nullable=True)
    license_key = Column(String(64), nullable=True)
    provider_payment_id = Column(String(128), nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_purchase_intents_type_status_created", "product_type", "status", "created_at"),
    )
