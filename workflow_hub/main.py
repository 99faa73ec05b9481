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
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.users import router as users_router
from .routes.jobs import router as jobs_router
from .routes.payments import router as payments_router
from .routes.notifications import router as notifications_router
from .routes.audit import router as audit_router
from .routes.realtime import router as realtime_router
from .services.accounts import ensure_demo_users
from .services.errors import WorkflowError


log = structlog.get_logger("workflow_hub")


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "kind": exc.kind,
            "notice": {"kind": "error", "message": exc.message},
        },
    )


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

    app.add_exception_handler(WorkflowError, workflow_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(jobs_router)
    app.include_router(payments_router)
    app.include_router(notifications_router)
    app.include_router(audit_router)
    app.include_router(realtime_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment, demo_mode=settings.demo_mode)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("tables_verified", tables=sorted(Base.metadata.tables.keys()))
        if settings.demo_mode:
            db = SessionLocal()
            try:
                ensure_demo_users(db)
            finally:
                db.close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("workflow_hub.main:app", host=settings.host, port=settings.port, reload=settings.environment == "dev")
