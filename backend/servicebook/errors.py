# backend/servicebook/errors.py
"""
Error taxonomy of the booking core.

Every error carries a machine-readable ``kind`` and the offending ``field``
so the API layer can render a user-facing message.

- ValidationError         bad input, recoverable by the caller (422)
- CapacityError           slot taken at commit time, re-query slots (409)
- InvalidTransitionError  state machine misuse (409)
- PricingError            invariant violation, fatal (500)
- NotFoundError           unknown or soft-deleted entity (404)
- PaymentGatewayError     payment provider failure (502)
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServicebookError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict:
        return {
            "kind": self.kind,
            "field": self.field,
            "message": self.message,
        }


class ValidationError(ServicebookError):
    kind = "validation"
    status_code = 422


class CapacityError(ServicebookError):
    kind = "capacity"
    status_code = 409


class InvalidTransitionError(ServicebookError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str, message: Optional[str] = None, field: str = "status"):
        super().__init__(message or f"Cannot move from '{current}' to '{target}'", field)
        self.current = current
        self.target = target


class PricingError(ServicebookError):
    kind = "pricing"
    status_code = 500


class NotFoundError(ServicebookError):
    kind = "not_found"
    status_code = 404


class PaymentGatewayError(ServicebookError):
    """Gateway unreachable or returned a malformed response."""
    kind = "payment_gateway"
    status_code = 502


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServicebookError)
    async def servicebook_error_handler(request: Request, exc: ServicebookError) -> JSONResponse:
        if isinstance(exc, PricingError):
            logger.error(
                f"Pricing invariant violated on {request.method} {request.url.path}: "
                f"{exc.message} (field={exc.field})"
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})
