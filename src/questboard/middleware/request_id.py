"""Request ID middleware: generates or propagates X-Request-Id."""

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

_QUEST_PATH = re.compile(r"^/api/v1/quests/(?P<quest_id>[^/]+)")


def quest_id_from_path(path: str) -> str | None:
    """The quest a request addresses, for log context."""
    match = _QUEST_PATH.match(path)
    return match.group("quest_id") if match else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request, and every log line it produces, with a request id and quest id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)
        quest_id = quest_id_from_path(request.url.path)
        if quest_id is not None:
            structlog.contextvars.bind_contextvars(quest_id=quest_id)

        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request_finished",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-Id"] = request_id
        return response
