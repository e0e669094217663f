# paygate/core/scheduler.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI

from paygate.core.config import settings
from paygate.services.sweeper import MaintenanceSweeper

# Usiamo il logger di uvicorn così i messaggi compaiono in console
logger = logging.getLogger("uvicorn.error")


# ---------------------------------------------------------------------
# LOOP 1: SCADENZA LICENZE (giornaliero)
# ---------------------------------------------------------------------
async def _license_sweep_loop(sweeper: MaintenanceSweeper, interval: int) -> None:
    """
    Loop periodico:
    - disattiva le licenze con expiration_date passata
    - ripulisce rate limit / cooldown / attività sospette
    - non lancia eccezioni verso l'alto (il loop non deve morire).
    """
    while True:
        try:
            expired = sweeper.expire_licenses()
            if expired:
                logger.info(f"[scheduler] disattivate {expired} licenze scadute")
        except Exception as e:
            logger.exception(f"[scheduler] errore nel loop licenze: {e!r}")

        await asyncio.sleep(interval)


# ---------------------------------------------------------------------
# LOOP 2: SCADENZA PAGAMENTI CRYPTO (ogni 5 minuti)
# ---------------------------------------------------------------------
async def _crypto_sweep_loop(sweeper: MaintenanceSweeper, interval: int) -> None:
    """
    Backstop dei monitor: i pagamenti crypto pending oltre expires_at
    passano a expired e l'utente viene avvisato.
    """
    while True:
        try:
            expired = await sweeper.expire_crypto_payments()
            if expired:
                logger.info(f"[scheduler] {expired} pagamenti crypto scaduti")
        except Exception as e:
            logger.exception(f"[scheduler] errore nel loop crypto: {e!r}")

        await asyncio.sleep(interval)


# ---------------------------------------------------------------------
# AVVIO / ARRESTO SCHEDULER
# ---------------------------------------------------------------------
def start_scheduler(app: FastAPI) -> None:
    """
    Avvia i task di manutenzione solo se abilitati via settings (app.state.cfg).
    - license_sweep_task: licenze scadute + prune anti-abuso
    - crypto_sweep_task: pagamenti crypto scaduti
    """
    cfg = getattr(app.state, "cfg", None) or settings
    if not cfg.SCHEDULER_ENABLED:
        logger.info("[scheduler] disabled by settings")
        app.state.license_sweep_task = None
        app.state.crypto_sweep_task = None
        return

    sweeper: MaintenanceSweeper = app.state.sweeper
    license_interval = max(60, int(cfg.LICENSE_SWEEP_INTERVAL_SECONDS))
    crypto_interval = max(15, int(cfg.CRYPTO_SWEEP_INTERVAL_SECONDS))

    # Evita doppi avvii in reload
    if getattr(app.state, "license_sweep_task", None) is None:
        app.state.license_sweep_task = asyncio.create_task(_license_sweep_loop(sweeper, license_interval))
        logger.info(f"[scheduler] started (license sweep, interval={license_interval}s)")

    if getattr(app.state, "crypto_sweep_task", None) is None:
        app.state.crypto_sweep_task = asyncio.create_task(_crypto_sweep_loop(sweeper, crypto_interval))
        logger.info(f"[scheduler] started (crypto sweep, interval={crypto_interval}s)")


async def stop_scheduler(app: FastAPI) -> None:
    """
    Arresta i task in modo pulito su shutdown.
    """
    for name in ("license_sweep_task", "crypto_sweep_task"):
        task: Optional[asyncio.Task] = getattr(app.state, name, None)
        if task is None:
            continue
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        setattr(app.state, name, None)
        logger.info(f"[scheduler] stopped ({name})")
