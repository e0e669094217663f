# paygate/api/admin.py
from __future__ import annotations

import logging
import re
from types import SimpleNamespace

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from paygate.api.deps import get_current_admin, get_db, get_services
from paygate.api.routes import uptime_seconds
from paygate.core import messages
from paygate.crud import license_crud, payment_crud
from paygate.schemas.admin import AdminStatsOut, LicenseImportIn, LicenseImportOut

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger("paygate.admin")

USER_ID_PATTERN = re.compile(r"^\d{17,19}$")


# ==========================================================
#  IMPORT MANUALE CHIAVI
# ==========================================================
@router.post("/licenses/import", response_model=LicenseImportOut, status_code=status.HTTP_201_CREATED)
async def import_license_keys(
    payload: LicenseImportIn,
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
    admin=Depends(get_current_admin),
):
    product_type = payload.product_type.lower().strip()
    product = services.products.get(product_type)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid product type. Use: " + ", ".join(services.products),
        )

    keys = [k.strip() for k in payload.license_keys if k and k.strip()]
    if not keys:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid license keys provided.")

    user_id = (payload.user_id or "").strip() or None
    if user_id and not USER_ID_PATTERN.match(user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid user ID format. User ID should be 17-19 digits.",
        )

    created, duplicates = license_crud.import_keys(
        db,
        keys,
        product_type,
        user_id=user_id,
        provider_product_id=product.provider_product_id,
        added_by=admin.id,
    )
    if duplicates:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "The following keys already exist", "duplicates": duplicates},
        )

    expiration_date = created[0].expiration_date if created else None
    if user_id:
        await services.notifier.notify(user_id, messages.keys_granted(product, keys, expiration_date))

    logger.info("admin %s ha importato %d chiavi", admin.id, len(created))
    return LicenseImportOut(
        added=len(created),
        product_type=product_type,
        user_id=user_id,
        expiration_date=expiration_date,
        license_keys=keys,
    )


# ==========================================================
#  STATISTICHE DI SISTEMA
# ==========================================================
@router.get("/stats", response_model=AdminStatsOut)
def system_stats(
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
    _admin=Depends(get_current_admin),
):
    data = {}
    data.update(license_crud.license_stats(db))
    data.update(payment_crud.payment_stats(db))
    data.update(services.guard.stats())
    data["active_monitors"] = services.monitor.active_count()
    data["uptime_seconds"] = uptime_seconds()
    return AdminStatsOut(**data)
