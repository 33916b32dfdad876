import logging
import re
import time
from typing import Optional
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from echelon.config import settings

logger = logging.getLogger("echelon.api")

# Caller-supplied ids end up in logs and response headers.
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _content_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    return int(value) if value and value.isdigit() else None


async def add_request_id(request: Request, call_next):
    supplied = request.headers.get("x-request-id", "")
    rid = supplied if _REQUEST_ID.match(supplied) else uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["x-request-id"] = rid
    return response


async def enforce_body_size(request: Request, call_next):
    limit_mb = settings.security.max_upload_mb
    size = _content_length(request)
    if size is not None and size > limit_mb * 1024 * 1024:
        return JSONResponse(
            status_code=413,
            content={
                "error": "request_too_large",
                "detail": f"Max request size is {limit_mb}MB",
            },
        )
    return await call_next(request)


async def log_requests(request: Request, call_next):
    """One line per request; 5xx responses and unhandled errors log at WARNING."""
    start = time.perf_counter()
    status = None
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        level = logging.INFO if status is not None and status < 500 else logging.WARNING
        logger.log(
            level,
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": status if status is not None else "error",
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "request_id": getattr(request.state, "request_id", None),
                "actor_id": request.headers.get("x-user-id"),
            },
        )
