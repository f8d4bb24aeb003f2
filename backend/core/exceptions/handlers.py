from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

from core.logging import structured_logger
from .api_exceptions import APIException, ValidationException
from .utils import format_error_response


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle custom API exceptions"""
    extra = {}
    if isinstance(exc, ValidationException) and exc.errors:
        extra["errors"] = exc.errors

    if exc.status_code >= 500:
        structured_logger.error(
            message=exc.message,
            metadata={"error_code": exc.error_code, "path": request.url.path,
                      "correlation_id": exc.correlation_id},
            exception=exc,
        )

    content = format_error_response(
        exc.message,
        status_code=exc.status_code,
        error_code=exc.error_code,
        correlation_id=exc.correlation_id,
        **extra
    )
    content["timestamp"] = exc.timestamp
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            str(exc.detail),
            status_code=exc.status_code,
            error_code=f"HTTP_{exc.status_code}",
        )
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body and query validation errors"""
    errors = {}
    for error in exc.errors():
        # Skip the 'body'/'query' prefix
        field = ".".join(str(loc) for loc in error["loc"][1:]) or str(error["loc"][0])
        errors[field] = error["msg"]

    return JSONResponse(
        status_code=422,
        content=format_error_response(
            "Validation failed",
            status_code=422,
            error_code="VALIDATION_ERROR",
            errors=errors,
        )
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    content = format_error_response(
        "A database error occurred",
        status_code=500,
        error_code="DATABASE_ERROR",
    )
    structured_logger.error(
        message="Database error",
        metadata={"path": request.url.path, "correlation_id": content["correlation_id"]},
        exception=exc,
    )
    return JSONResponse(status_code=500, content=content)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    content = format_error_response(
        "An unexpected error occurred",
        status_code=500,
        error_code="INTERNAL_ERROR",
    )
    structured_logger.error(
        message="Unexpected error",
        metadata={"path": request.url.path, "correlation_id": content["correlation_id"]},
        exception=exc,
    )
    return JSONResponse(status_code=500, content=content)
