import os

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine, SessionLocal
from .errors import EngineError, engine_error_handler, request_validation_handler
from .logging import setup_logging, RequestIdMiddleware
from .routes.dashboard import router as dashboard_router
from .routes.services import router as services_router
from .routes.sites import router as sites_router
from .services.reconciler import BackgroundSweeper

logger = structlog.get_logger(__name__)


def create_app(start_background: bool = True) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Routers
    app.include_router(sites_router)
    app.include_router(services_router)
    app.include_router(dashboard_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        if start_background and settings.reconcile_interval_min > 0:
            sweeper = BackgroundSweeper(settings.reconcile_interval_min, SessionLocal)
            sweeper.start()
            app.state.sweeper = sweeper
            logger.info("reconciler_started", interval_min=settings.reconcile_interval_min)

    @app.on_event("shutdown")
    def _shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.stop()

    return app


app = create_app()
