"""panel-link FastAPI application."""

# NOTE: dotenv loading is handled in config.py

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .clients import PanelClient
from .config import Config, config as default_config
from .errors import PanelLinkError
from .identity import AppServices
from .logging_config import setup_logging, get_logger
from .middleware import AuthMiddleware, RateLimitMiddleware, RateLimiter
from .monitoring.metrics import CONTENT_TYPE, MetricsCollector
from .persistence import LinkStore
from .persistence.schema_version import SCHEMA_VERSION
from .routes import admin_router, credentials_router, servers_router, subscriptions_router
from .security import CredentialVault
from .services import (
    ControlService, CredentialService, OwnershipVerificationService,
    StatusPollingScheduler, WebhookRenderTarget,
)

logger = get_logger(__name__)

APP_VERSION = "1.0.0"


def build_services(cfg: Config) -> AppServices:
    """Construct every long-lived service exactly once."""
    collector = MetricsCollector()
    vault = CredentialVault.from_config(cfg)
    store = LinkStore(cfg.DATABASE_PATH, vault)
    credentials = CredentialService(
        store,
        default_panel_url=cfg.PANEL_URL,
        client_factory=PanelClient,
        timeout=cfg.HTTP_TIMEOUT,
    )
    verification = OwnershipVerificationService(
        store,
        credentials,
        mode=cfg.effective_verification_mode,
        proof_path=cfg.VERIFY_FILE,
        metrics=collector,
    )
    control = ControlService(store, verification, credentials)
    render_target = WebhookRenderTarget(timeout=cfg.HTTP_TIMEOUT)
    scheduler = StatusPollingScheduler.from_config(
        cfg, store, verification, control, render_target, metrics=collector
    )
    return AppServices(
        config=cfg,
        store=store,
        vault=vault,
        limiter=RateLimiter.from_config(cfg),
        credentials=credentials,
        verification=verification,
        control=control,
        render_target=render_target,
        scheduler=scheduler,
        metrics=collector,
    )


def create_app(cfg: Optional[Config] = None, services: Optional[AppServices] = None,
               start_scheduler: bool = True) -> FastAPI:
    """Build the application.

    Args:
        cfg: Configuration (defaults to the global config)
        services: Prebuilt services, mainly for tests
        start_scheduler: Run the polling loop for the app's lifetime
    """
    cfg = cfg or (services.config if services is not None else default_config)

    setup_logging(cfg.LOG_LEVEL, cfg.JSON_LOGGING)
    for warning in cfg.validate():
        logger.warning(f"Configuration warning: {warning}")
    cfg.check_startup()

    if services is None:
        services = build_services(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("Starting panel-link...")
        logger.info(f"Version: {APP_VERSION}, schema: {SCHEMA_VERSION}")
        logger.info(f"Verification mode: {services.verification.mode}")
        logger.info("=" * 60)
        if start_scheduler:
            services.scheduler.start()
        try:
            yield
        finally:
            if start_scheduler:
                services.scheduler.stop()
            logger.info("panel-link stopped")

    app = FastAPI(
        title="panel-link",
        version=APP_VERSION,
        description="Links chat users to game-panel servers they have proven they control",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(PanelLinkError)
    async def panel_link_error_handler(request: Request, exc: PanelLinkError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.middleware("http")
    async def request_id_header(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or os.urandom(8).hex()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    # Added in reverse order of execution: auth runs first, then rate limiting
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(AuthMiddleware, enabled=cfg.AUTH_ENABLED, api_token=cfg.API_TOKEN)

    app.include_router(servers_router)
    app.include_router(credentials_router)
    app.include_router(subscriptions_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "version": APP_VERSION,
            "scheduler": services.scheduler.get_status(),
        }

    @app.get("/metrics")
    def metrics():
        if not cfg.METRICS_ENABLED:
            return JSONResponse(status_code=404, content={"detail": "Metrics disabled"})
        return Response(content=services.metrics.render(), media_type=CONTENT_TYPE)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "panel_link.main:app",
        host=default_config.HOST,
        port=default_config.PORT,
        reload=False,
    )
