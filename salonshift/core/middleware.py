import re
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..request_context import actor_email_ctx

logger = structlog.get_logger("salonshift.middleware")

BRANCH_PATH_RE = re.compile(r"^/api/branches/(\d+)")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id, actor and branch scope to every log line of a request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        actor_email = (request.headers.get("X-Actor-Email") or "").strip().lower() or None
        branch_match = BRANCH_PATH_RE.match(request.url.path)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        if actor_email:
            structlog.contextvars.bind_contextvars(actor=actor_email)
        if branch_match:
            structlog.contextvars.bind_contextvars(branch_id=int(branch_match.group(1)))

        token = actor_email_ctx.set(actor_email)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        finally:
            actor_email_ctx.reset(token)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_finished",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
