import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from codesage/.env
codesage_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(codesage_dir, ".env"))

from codesage.api import entitlements, health, rpc, security
from codesage.core.config import settings, validate_config
from codesage.core.database import create_all_tables, get_database_url
from codesage.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from codesage.core.logging import configure_logging
from codesage.core.middleware.request_id import RequestIdMiddleware
from codesage.features.auth.service import AuthService, NullIdentityProvider
from codesage.features.limiter.client import build_rate_limiter
from codesage.features.limiter.contracts import RateLimiterBackend
from codesage.features.persistence.storage import KeyValueStorage, build_storage

logger = logging.getLogger("codesage")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting CodeSage entitlement service...")
    if get_database_url():
        create_all_tables()
    try:
        yield
    finally:
        await app.state.limiter.aclose()
        logger.info("Stopping CodeSage entitlement service...")


def create_app(
    *,
    limiter: Optional[RateLimiterBackend] = None,
    snapshot_storage: Optional[KeyValueStorage] = None,
    auth_service: Optional[AuthService] = None,
) -> FastAPI:
    configure_logging(settings.ENV)
    validate_config(strict=settings.CONFIG_STRICT)

    app = FastAPI(title="CodeSage - Entitlements", lifespan=lifespan)

    app.state.limiter = limiter or build_rate_limiter()
    app.state.snapshot_storage = snapshot_storage or build_storage()
    app.state.auth_service = auth_service or AuthService(NullIdentityProvider())

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(entitlements.router)
    app.include_router(security.router)
    app.include_router(rpc.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("codesage.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=settings.ENV == "development")
