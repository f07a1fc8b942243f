"""Domain errors and the FastAPI handlers that turn them into JSON envelopes.

Services raise these inside a ``transaction()`` block, so by the time a
handler runs the unit of work has already been rolled back.
"""
import logging
from decimal import Decimal

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    http_status = 500
    kind = "ledger_error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(LedgerError):
    http_status = 400
    kind = "validation_error"


class NotFoundError(LedgerError):
    http_status = 404
    kind = "not_found"


class ConflictError(LedgerError):
    http_status = 409
    kind = "conflict"

    def __init__(self, message: str, http_status: int = 409, **extra):
        super().__init__(message, **extra)
        self.http_status = http_status


class InsufficientStockError(ConflictError):
    kind = "insufficient_stock"

    def __init__(self, product_id: int, available: Decimal, needed: Decimal):
        super().__init__(
            f"Insufficient stock for product {product_id}: need {needed}, have {available}",
            product_id=product_id,
            available=str(available),
            needed=str(needed),
        )
        self.product_id = product_id
        self.available = available
        self.needed = needed


class ConcurrencyConflictError(ConflictError):
    kind = "concurrent_update"


def _envelope(status_code: int, kind: str, message: str, extra: dict = None) -> JSONResponse:
    body = dict(extra or {})
    body.update({"success": False, "error": kind, "message": message})
    return JSONResponse(status_code=status_code, content=body)


async def _ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return _envelope(exc.http_status, exc.kind, exc.message, exc.extra)


async def _http_error_handler(request: Request, exc: HTTPException):
    return _envelope(exc.status_code, "http_error", str(exc.detail))


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()
    ]
    return _envelope(422, "validation_error", "Invalid request body", {"details": errors})


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
    return _envelope(500, "server_error", str(exc))


def install_error_handlers(app):
    app.add_exception_handler(LedgerError, _ledger_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
