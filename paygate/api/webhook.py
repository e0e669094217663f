# paygate/api/webhook.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from types import SimpleNamespace

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paygate.api.deps import get_app_settings, get_db, get_services
from paygate.core.config import Settings
from paygate.core.webhook_verify import pick_signature

router = APIRouter(tags=["webhook"])
logger = logging.getLogger("paygate.webhook")


@router.get("/webhook")
def webhook_probe(cfg: Settings = Depends(get_app_settings)):
    """Verifica raggiungibilità (configurazione del provider)."""
    return {
        "status": "Webhook endpoint is reachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": cfg.APP_NAME,
    }


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    services: SimpleNamespace = Depends(get_services),
    cfg: Settings = Depends(get_app_settings),
):
    """
    Eventi del provider (payment_success / payment_failed / payment_refunded).
    La firma è calcolata sul body grezzo: niente parsing prima della verifica.
    Un 500 fa ritentare il provider; 4xx non vengono ritentati.
    """
    raw_body = await request.body()
    signature = pick_signature(request.headers, cfg.PROVIDER_SIGNATURE_HEADER)

    try:
        result = await services.reconciler.handle(db, raw_body, signature)
    except Exception:
        db.rollback()
        logger.exception("errore interno nella gestione del webhook")
        return JSONResponse(status_code=500, content={"status": "error", "detail": "Internal Server Error"})

    return JSONResponse(
        status_code=result.status_code,
        content={"status": result.outcome, "detail": result.detail},
    )
