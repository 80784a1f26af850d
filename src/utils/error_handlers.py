"""
Error Handler Utilities

Convert billing exceptions and request validation failures into the uniform
``{"error": str, "details"?: str}`` response body.

Usage:
    from src.utils.error_handlers import register_exception_handlers

    # In main.py
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.utils.exceptions import BillingError, ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc.message} ({exc.details})")
    elif isinstance(exc, ProviderError):
        logger.error(f"Provider error on {request.url.path}: {exc.original or exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    body = exc.to_dict()
    if isinstance(exc, ConfigurationError):
        # Deployment details stay in the logs
        body.pop("details", None)
    return JSONResponse(status_code=exc.status_code, content=body)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map pydantic request validation failures to 400 with the shared body shape."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))

    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": "; ".join(messages)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
