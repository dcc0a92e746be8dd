import time
import uuid
from contextvars import ContextVar
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger()


class CorrelationIdMiddleware:
    """Bind a correlation ID (and the gateway actor) to every log line.

    Reads ``X-Request-ID`` from the incoming request or generates a UUID4.
    The ID is stored in a ContextVar and in structlog's context so every
    log line emitted while serving the request carries it, and is echoed
    back in the ``X-Request-ID`` response header.  When the gateway
    forwarded an ``X-Actor-Id`` it is bound as ``actor_id`` too.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = request.META.get("HTTP_X_REQUEST_ID") or str(uuid.uuid4())
        correlation_id_var.set(cid)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)
        actor_id = request.META.get("HTTP_X_ACTOR_ID")
        if actor_id:
            structlog.contextvars.bind_contextvars(actor_id=actor_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.get_full_path(),
        )
        started = time.monotonic()

        response = self.get_response(request)

        logger.info(
            "request_finished",
            method=request.method,
            path=request.get_full_path(),
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )

        response["X-Request-ID"] = cid
        return response
