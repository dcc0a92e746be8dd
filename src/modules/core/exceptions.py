"""Standardised API error envelope.

Every error leaving the API has the same shape::

    {
        "type": "domain_error" | "validation_error" | "client_error",
        "errors": [{"code": "...", "detail": "...", "context": {...}}]
    }

Domain errors keep their stable ``code``; retryable ones add a
``Retry-After`` hint.  Unexpected exceptions fall through to DRF/Django
(500 without a stack trace in production).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from shared.domain.exceptions import DomainError

logger = structlog.get_logger(__name__)

DOMAIN_STATUS_CODES: Dict[str, int] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "INSUFFICIENT_STOCK": status.HTTP_409_CONFLICT,
    "VARIANT_NOT_FOUND": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ALREADY_PAID": status.HTTP_409_CONFLICT,
    "ALREADY_REFUNDED": status.HTTP_409_CONFLICT,
    "AMOUNT_EXCEEDS_TOTAL": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "STATE_CONFLICT": status.HTTP_409_CONFLICT,
    "TRANSACTION_TIMEOUT": status.HTTP_503_SERVICE_UNAVAILABLE,
    "EXTERNAL_VERIFIER_FAILURE": status.HTTP_502_BAD_GATEWAY,
}

RETRY_AFTER_SECONDS = "1"


def api_exception_handler(exc: Exception, context: Dict[str, Any]) -> Optional[Response]:
    """DRF ``EXCEPTION_HANDLER`` producing the standard error envelope."""
    if isinstance(exc, DomainError):
        return _domain_error_response(exc)

    if isinstance(exc, PydanticValidationError):
        errors = [
            {
                "code": "invalid",
                "detail": error["msg"],
                "context": {"field": ".".join(str(p) for p in error["loc"])},
            }
            for error in exc.errors()
        ]
        return Response(
            {"type": "validation_error", "errors": errors},
            status=status.HTTP_400_BAD_REQUEST,
        )

    response = exception_handler(exc, context)
    if response is None:
        return None

    error_type = (
        "validation_error"
        if response.status_code == status.HTTP_400_BAD_REQUEST
        else "client_error"
    )
    response.data = {
        "type": error_type,
        "errors": _flatten_drf_errors(response.data, getattr(exc, "default_code", "error")),
    }
    return response


def _domain_error_response(exc: DomainError) -> Response:
    status_code = DOMAIN_STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
    logger.info(
        "api.domain_error",
        code=exc.code,
        status_code=status_code,
        context=exc.context,
    )
    error = exc.to_dict()
    retryable = error.pop("retryable")
    response = Response(
        {"type": "domain_error", "errors": [error]},
        status=status_code,
    )
    if retryable:
        response["Retry-After"] = RETRY_AFTER_SECONDS
    return response


def _flatten_drf_errors(data: Any, default_code: str, field: str = "") -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        if set(data) == {"detail"}:
            return _flatten_drf_errors(data["detail"], default_code, field)
        flattened: List[Dict[str, Any]] = []
        for key, value in data.items():
            nested_field = f"{field}.{key}" if field else str(key)
            flattened.extend(_flatten_drf_errors(value, default_code, nested_field))
        return flattened
    if isinstance(data, list):
        flattened = []
        for value in data:
            flattened.extend(_flatten_drf_errors(value, default_code, field))
        return flattened
    return [
        {
            "code": getattr(data, "code", default_code),
            "detail": str(data),
            "context": {"field": field} if field else {},
        }
    ]
