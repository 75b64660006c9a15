# telecare/main.py
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import Settings, get_settings
from .core.logging import setup_logging
from .database import create_db_engine, create_session_factory, create_tables
from .errors import TelecareError
from .limiter import limiter
from .routers import accounts, admin, appointments, availability, credits, doctors, health, payouts

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; the engine lives exactly as long as the app."""
    settings = settings or get_settings()
    setup_logging(settings)

    engine = create_db_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_tables(engine)
        logger.info("application_started", environment=settings.environment, version=settings.app_version)
        yield
        engine.dispose()
        logger.info("application_stopped")

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=["*"],
    )

    @app.exception_handler(TelecareError)
    async def telecare_error_handler(request: Request, exc: TelecareError):
        if exc.http_status >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, message=exc.message)
        return JSONResponse(
            status_code=exc.http_status,
            content={
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                    "retryable": exc.retryable,
                }
            },
        )

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(accounts.router, prefix="/api/v1")
    app.include_router(doctors.router, prefix="/api/v1")
    app.include_router(availability.router, prefix="/api/v1")
    app.include_router(appointments.router, prefix="/api/v1")
    app.include_router(credits.router, prefix="/api/v1")
    app.include_router(payouts.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(health.router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("telecare.main:app", host="0.0.0.0", port=8000)
