import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.constants.error_codes import ErrorCode
from app.core.exceptions import AppException

logger = logging.getLogger(__name__)

HTTP_STATUS_TO_ERROR_CODE = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


def error_response(status_code: int, message: str, error_code: ErrorCode, details=None) -> JSONResponse:
    """Every failure leaves the API in the same envelope as success_response()."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": False,
            "message": message,
            "error_code": error_code,
            "details": details,
        }),
    )


# -------------------------
# WORKFLOW ERRORS
# -------------------------
async def app_exception_handler(request: Request, exc: AppException):
    if exc.status_code >= 500:
        logger.error("Workflow error %s on %s", exc.error_code.value, request.url.path)
    return error_response(exc.status_code, exc.detail, exc.error_code, exc.details)


# -------------------------
# PAYLOAD VALIDATION
# -------------------------
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(422, "Invalid request data", ErrorCode.VALIDATION_ERROR, exc.errors())


async def pydantic_validation_handler(request: Request, exc: ValidationError):
    # raised by services re-validating stored JSON or revision values
    return error_response(
        400,
        "Invalid quotation data",
        ErrorCode.VALIDATION_ERROR,
        exc.errors(include_url=False, include_context=False),
    )


# -------------------------
# HTTP EXCEPTIONS (mapped)
# -------------------------
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error_code = HTTP_STATUS_TO_ERROR_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return error_response(exc.status_code, exc.detail, error_code)


# -------------------------
# PERSISTENCE
# -------------------------
async def stale_data_handler(request: Request, exc: StaleDataError):
    logger.warning("Concurrent update lost on %s %s", request.method, request.url.path)
    return error_response(
        409,
        "Quotation was modified by another request. Reload and try again.",
        ErrorCode.QUOTATION_VERSION_CONFLICT,
    )


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.exception("DB Integrity error")
    return error_response(409, "Database constraint violation", ErrorCode.CONFLICT)


# -------------------------
# LAST RESORT
# -------------------------
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(500, "Something went wrong. Please try again.", ErrorCode.INTERNAL_ERROR)
