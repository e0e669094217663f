# paygate/main.py
from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from paygate.core.catalog import build_crypto_assets, build_products
from paygate.core.config import Settings, settings as default_settings, validate_settings
from paygate.core.license_keys import LicenseKeyCodec
from paygate.core.messages import GENERIC_ERROR
from paygate.core.scheduler import start_scheduler, stop_scheduler
from paygate.services.anti_abuse import AntiAbuseGuard
from paygate.services.chain_sources import ChainSource, CoinGeckoPriceSource, PriceSource, default_chain_sources
from paygate.services.crypto_monitor import CryptoPaymentMonitor
from paygate.services.fulfillment import Fulfillment
from paygate.services.notify import Notifier, build_notifier
from paygate.services.purchase import PurchaseService
from paygate.services.reconciler import IntentResolver, WebhookReconciler
from paygate.services.sweeper import MaintenanceSweeper

# ------------------------------------------------------------
# IMPORT ROUTER
# ------------------------------------------------------------
from paygate.api.routes import router as system_router
from paygate.api.webhook import router as webhook_router
from paygate.api.purchases import router as purchases_router
from paygate.api.admin import router as admin_router

logger = logging.getLogger("paygate")


# ------------------------------------------------------------
# SERVIZI (costruiti una volta, condivisi via app.state)
# ------------------------------------------------------------
def build_services(
    cfg: Settings,
    session_factory: sessionmaker,
    *,
    notifier: Optional[Notifier] = None,
    chain_sources: Optional[Dict[str, ChainSource]] = None,
    price_source: Optional[PriceSource] = None,
    guard: Optional[AntiAbuseGuard] = None,
    codec: Optional[LicenseKeyCodec] = None,
) -> SimpleNamespace:
    products = build_products(cfg)
    assets = build_crypto_assets(cfg)
    notifier = notifier or build_notifier(cfg)
    guard = guard or AntiAbuseGuard()
    codec = codec or LicenseKeyCodec(cfg.LICENSE_KEY_SECRET)

    fulfillment = Fulfillment(codec, notifier, products, assets)
    monitor = CryptoPaymentMonitor(
        session_factory,
        chain_sources if chain_sources is not None else default_chain_sources(cfg.CHAIN_HTTP_TIMEOUT_SECONDS),
        fulfillment,
        notifier,
        products,
        interval=cfg.CRYPTO_POLL_INTERVAL_SECONDS,
        max_polls=cfg.CRYPTO_MAX_POLLS,
    )
    reconciler = WebhookReconciler(
        cfg.PROVIDER_WEBHOOK_SECRET,
        products,
        fulfillment,
        notifier,
        resolver=IntentResolver(cfg.CORRELATION_WINDOW_SECONDS),
    )
    price_source = price_source or CoinGeckoPriceSource(timeout=cfg.CHAIN_HTTP_TIMEOUT_SECONDS)
    purchases = PurchaseService(
        guard,
        products,
        assets,
        price_source,
        monitor,
        cfg.CHECKOUT_BASE_URL,
        crypto_ttl_minutes=cfg.CRYPTO_PAYMENT_TTL_MINUTES,
    )
    sweeper = MaintenanceSweeper(session_factory, guard, notifier, products)

    return SimpleNamespace(
        products=products,
        assets=assets,
        notifier=notifier,
        guard=guard,
        codec=codec,
        fulfillment=fulfillment,
        monitor=monitor,
        reconciler=reconciler,
        price_source=price_source,
        purchases=purchases,
        sweeper=sweeper,
    )


# ------------------------------------------------------------
# CREAZIONE DELL'APPLICAZIONE FASTAPI
# ------------------------------------------------------------
def create_app(
    *,
    cfg: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    start_background: bool = True,
    **service_overrides,
) -> FastAPI:
    """Crea e configura l'applicazione FastAPI (webhook, acquisti, validazione licenze)."""
    cfg = cfg or default_settings
    logger.setLevel(cfg.LOG_LEVEL.upper())
    validate_settings(cfg)

    if session_factory is None:
        from paygate.db.session import SessionLocal
        session_factory = SessionLocal

    app = FastAPI(
        title=f"{cfg.APP_NAME} API",
        version=cfg.APP_VERSION,
        description=(
            "Payment fulfillment & entitlement engine: webhook del provider, "
            "pagamenti crypto con polling on-chain, anti-abuso e licenze."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # --------------------------------------------------------
    # CORS
    # --------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --------------------------------------------------------
    # STATO CONDIVISO
    # --------------------------------------------------------
    app.state.cfg = cfg
    app.state.session_factory = session_factory
    app.state.services = build_services(cfg, session_factory, **service_overrides)
    app.state.sweeper = app.state.services.sweeper

    # --------------------------------------------------------
    # ROUTES
    # --------------------------------------------------------
    app.include_router(system_router)
    app.include_router(webhook_router)
    app.include_router(purchases_router)
    app.include_router(admin_router)

    # --------------------------------------------------------
    # ERRORI IMPREVISTI -> messaggio generico (dettaglio solo nei log)
    # --------------------------------------------------------
    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.error("errore non gestito su %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR})

    # --------------------------------------------------------
    # EVENTI DI AVVIO / ARRESTO
    # --------------------------------------------------------
    @app.on_event("startup")
    async def _on_startup():
        if not start_background:
            return
        start_scheduler(app)
        app.state.services.monitor.resume_pending()

    @app.on_event("shutdown")
    async def _on_shutdown():
        await stop_scheduler(app)
        await app.state.services.monitor.shutdown()

    return app
