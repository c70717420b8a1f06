"""
Error handling
Maps failures and exceptions to the standard error response body

Main functions:
- one response body shape for every error
- failure kind to HTTP status mapping
- logging of unexpected exceptions, including a system_error audit row
"""

import json
import traceback
from typing import Any, Dict, Optional

import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .database import db_manager
from .exceptions import BaseApplicationError
from .failures import OrderFailure

logger = structlog.get_logger(__name__)


class ErrorResponse:
    """Standard error response"""

    def __init__(self, error_code: str, message: str,
                 details: Optional[Dict[str, Any]] = None,
                 http_status: int = 400):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.http_status,
            content=self.to_dict()
        )


class ErrorHandler:
    """Global error handler"""

    ERROR_CODE_STATUS_MAP = {
        "NOT_FOUND": 404,
        "INVALID_REQUEST": 400,
        "VALIDATION_ERROR": 422,
        "INTERNAL_ERROR": 500,

        # business rules
        "CUT_OFF_EXCEEDED": 422,
        "INSUFFICIENT_STOCK": 422,
        "INSUFFICIENT_BALANCE": 422,
        "ALLERGEN_CONFLICT": 422,

        # lifecycle and concurrency
        "INVALID_TRANSITION": 409,
        "DUPLICATE_REQUEST": 409,
        "STORE_FAILURE": 503,
    }

    @classmethod
    def status_for(cls, error_code: str) -> int:
        return cls.ERROR_CODE_STATUS_MAP.get(error_code, 400)

    @classmethod
    def handle_failure(cls, failure: OrderFailure) -> ErrorResponse:
        """Render an order failure value"""
        return ErrorResponse(
            error_code=failure.error_code,
            message=failure.message,
            details=failure.details(),
            http_status=cls.status_for(failure.error_code)
        )

    @classmethod
    def handle_application_error(cls, error: BaseApplicationError) -> ErrorResponse:
        failure = getattr(error, "failure", None)
        if failure is not None:
            return cls.handle_failure(failure)

        http_status = cls.status_for(error.error_code)
        if http_status >= 500:
            logger.error("application error", error_code=error.error_code, error=error.message)
        return ErrorResponse(
            error_code=error.error_code,
            message=error.message,
            details=error.details,
            http_status=http_status
        )

    @classmethod
    def handle_http_exception(cls, error: HTTPException) -> ErrorResponse:
        return ErrorResponse(
            error_code="HTTP_ERROR",
            message=str(error.detail),
            details={"status_code": error.status_code},
            http_status=error.status_code
        )

    @classmethod
    def handle_validation_error(cls, error: Exception) -> ErrorResponse:
        """Request body / parameter validation errors"""
        if isinstance(error, RequestValidationError):
            errors = [
                {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")}
                for e in error.errors()
            ]
        else:
            errors = [{"loc": [], "msg": str(error)}]
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed",
            details={"validation_errors": errors},
            http_status=422
        )

    @classmethod
    def handle_unknown_error(cls, error: Exception) -> ErrorResponse:
        error_details = {
            "type": type(error).__name__,
            "message": str(error),
            "traceback": traceback.format_exc()
        }
        logger.error("unhandled exception", error_type=error_details["type"],
                     error=error_details["message"])
        cls._log_system_error(error_details)

        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="Internal server error",
            details={"error_type": type(error).__name__},
            http_status=500
        )

    @classmethod
    def _log_system_error(cls, error_details: Dict[str, Any]):
        """Write the error into the audit log table"""
        try:
            db_manager.execute_query(
                "INSERT INTO logs(actor_id, action, detail_json) VALUES (?,?,?)",
                [None, "system_error", json.dumps(error_details)]
            )
        except BaseApplicationError as e:
            logger.warning("failed to write system_error log", error=e.message)


async def application_error_handler(request: Request, exc: BaseApplicationError) -> JSONResponse:
    return ErrorHandler.handle_application_error(exc).to_json_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return ErrorHandler.handle_http_exception(exc).to_json_response()


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return ErrorHandler.handle_validation_error(exc).to_json_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return ErrorHandler.handle_unknown_error(exc).to_json_response()
