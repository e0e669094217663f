# paygate/api/routes.py
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paygate.api.deps import get_db
from paygate.core.utils import utcnow
from paygate.crud import license_crud

router = APIRouter(tags=["system"])

START_TIME = datetime.now(timezone.utc)


def uptime_seconds() -> int:
    return int((datetime.now(timezone.utc) - START_TIME).total_seconds())


# =====================================================================
# HEALTH
# =====================================================================
@router.get("/health")
def health():
    """Healthcheck leggero (non tocca il DB)."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptimeSeconds": uptime_seconds(),
    }


# =====================================================================
# VALIDAZIONE LICENZA (usata dal client del prodotto)
# =====================================================================
@router.get("/validate/{license_key}", summary="Verifica una chiave licenza")
def validate_license(license_key: str, db: Session = Depends(get_db)):
    """
    404 se la chiave non esiste; 200 con valid=false se scaduta o revocata.
    Il formato della chiave non basta: conta solo il registro.
    """
    lic = license_crud.get_license_by_key(db, license_key)
    if lic is None:
        return JSONResponse(status_code=404, content={"valid": False, "message": "License not found"})

    expiration = lic.expiration_date.isoformat() if lic.expiration_date else None

    if not lic.is_active:
        message = "License expired" if lic.deactivation_reason == "expired" else "License revoked"
        return {"valid": False, "message": message, "expirationDate": expiration}

    if lic.expiration_date and lic.expiration_date < utcnow():
        return {"valid": False, "message": "License expired", "expirationDate": expiration}

    return {
        "valid": True,
        "productType": lic.product_type,
        "expirationDate": expiration,
        "createdAt": lic.created_at.isoformat() if lic.created_at else None,
    }
