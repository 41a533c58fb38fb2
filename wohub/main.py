import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .services.errors import WorkOrderError
from .auth.router import router as auth_router
from .routes.work_orders import router as work_orders_router
from .routes.time_entries import router as time_entries_router
from .routes.attachments import router as attachments_router
from .routes.notifications import router as notifications_router
from .routes.users import router as users_router
from .routes.equipments import router as equipments_router


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
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

    @app.exception_handler(WorkOrderError)
    async def _work_order_error(request: Request, exc: WorkOrderError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error=type(exc).__name__,
            detail=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # Routers
    app.include_router(auth_router)
    app.include_router(work_orders_router)
    app.include_router(time_entries_router)
    app.include_router(attachments_router)
    app.include_router(notifications_router)
    app.include_router(users_router)
    app.include_router(equipments_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            from .models import models  # noqa: F401 register tables
            Base.metadata.create_all(bind=engine)
        logger.info("startup_complete", environment=settings.environment, storage=settings.storage_provider)

    return app


app = create_app()
