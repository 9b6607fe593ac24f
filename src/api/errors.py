# src/api/errors.py — v1
"""Mapping of pipeline errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from reportflow.api.models import error_envelope
from reportflow.core.errors import (
    NoConceptError,
    NotFoundError,
    ParseError,
    PipelineError,
    StageExecutionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[PipelineError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    NoConceptError: 409,
    ParseError: 422,
    StageExecutionError: 502,
}


def status_for(exc: PipelineError) -> int:
    """HTTP status for a pipeline error; unmapped subclasses are 500."""
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]  # type: ignore[index]
    return 500


def pipeline_error_response(exc: PipelineError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content=error_envelope(type(exc).__name__, exc.code, exc.message, exc.context()),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers on the app."""

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(_: Request, exc: PipelineError) -> JSONResponse:
        response = pipeline_error_response(exc)
        if response.status_code >= 500:
            logger.error("Request failed [%s]: %s", exc.code, exc.message)
        else:
            logger.info("Request rejected [%s]: %s", exc.code, exc.message)
        return response

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope("HTTPException", f"HTTP_{exc.status_code}", str(exc.detail)),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_envelope(
                "ValidationError",
                ValidationError.code,
                "Request validation failed",
                {"errors": exc.errors()},
            ),
        )
