"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from lms_subscriptions.api.v1.endpoints import access, subscriptions, tiers
from lms_subscriptions.core.config import settings
from lms_subscriptions.core.exceptions import AppException, PaymentInitiationError
from lms_subscriptions.core.logging import configure_logging
from lms_subscriptions.db.session import engine
from lms_subscriptions.services.limits import close_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s (%s)", settings.PROJECT_NAME, settings.ENV)
    yield
    await close_client()
    await engine.dispose()
    logger.info("Shut down %s", settings.PROJECT_NAME)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    body = {"message": exc.message}
    if exc.details is not None:
        body["details"] = jsonable_encoder(exc.details)
    if isinstance(exc, PaymentInitiationError) and exc.subscription_id is not None:
        body["subscription_id"] = str(exc.subscription_id)
    return JSONResponse(status_code=exc.status_code, content=body)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation failed", "details": jsonable_encoder(exc.errors())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error", extra={"path": request.url.path, "method": request.method}
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


def create_application() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    prefix = f"{settings.API_PREFIX}/v1"
    app.include_router(tiers.router, prefix=prefix)
    app.include_router(subscriptions.router, prefix=prefix)
    app.include_router(access.router, prefix=prefix)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_application()
