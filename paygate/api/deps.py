# paygate/api/deps.py
from __future__ import annotations

import hmac
from types import SimpleNamespace
from typing import Generator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from paygate.core.config import Settings, settings


# ==========================================================
#  SESSIONE DB (factory salvata su app.state da create_app)
# ==========================================================
def get_db(request: Request) -> Generator[Session, None, None]:
    db: Session = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


# ==========================================================
#  SERVIZI CONDIVISI
# ==========================================================
def get_services(request: Request) -> SimpleNamespace:
    """Servizi costruiti una volta sola in create_app (guard, monitor, reconciler...)."""
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    """Settings passate a create_app(cfg=...), altrimenti quelle globali."""
    return getattr(request.app.state, "cfg", None) or settings


# ==========================================================
#  CONTROLLO ADMIN (tramite header segreto)
# ==========================================================
# Accesso alle rotte admin tramite header segreto semplice:
#   X-Admin-Secret: <valore>
# Il valore atteso è ADMIN_SECRET (env). Se non configurato le rotte
# admin restano chiuse.
#   bash/zsh   →  export ADMIN_SECRET="IL_TUO_SEGRETO_LUNGO"
# ==========================================================
def get_current_admin(
    request: Request,
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
    x_admin_id: str | None = Header(None, alias="X-Admin-Id"),
):
    expected = get_app_settings(request).ADMIN_SECRET

    if expected and x_admin_secret and hmac.compare_digest(x_admin_secret, expected):
        # finto utente admin (namespace) per le dipendenze a valle
        return SimpleNamespace(id=x_admin_id or "admin", role="admin", is_admin=True)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated (missing or invalid X-Admin-Secret)",
    )
