# paygate/models/license.py
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Index

from paygate.core.utils import utcnow
from paygate.db.base import Base


class License(Base):
    __tablename__ = "licenses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    license_key = Column(String(64), unique=True, nullable=False, index=True)
    # None = chiave importata manualmente e non ancora assegnata
    user_id = Column(String(32), nullable=True, index=True)
    product_type = Column(String(32), nullable=False)
    provider_product_id = Column(String(128), nullable=True)
    # Chiave di idempotenza: id pagamento del provider / id crypto / manual-<uuid>
    source_payment_id = Column(String(128), unique=True, nullable=False)
    payment_method = Column(String(16), nullable=False, default="fiat")
    txid = Column(String(128), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    # Calcolata una sola volta all'emissione
    expiration_date = Column(DateTime(timezone=False), nullable=False)
    expired_at = Column(DateTime(timezone=False), nullable=True)
    deactivated_at = Column(DateTime(timezone=False), nullable=True)
    deactivation_reason = Column(String(32), nullable=True)
    added_by = Column(String(32), nullable=True)

    __table_args__ = (
        Index("ix_licenses_user_type_active", "user_id", "product_type", "is_active"),
    )

    @property
    def is_expired(self) -> bool:
        return self.expiration_date < utcnow()
