"""Request tagging and last-resort error shaping for the intake API."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

LOGGER = logging.getLogger("nested_intake.api.errors")

REQUEST_ID_HEADER = "X-Request-Id"


def request_id_of(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get(
        REQUEST_ID_HEADER
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and echo it back to the caller."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """Turn unexpected failures into a generic 500; the traceback stays in the log."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            request_id = request_id_of(request)
            LOGGER.exception(
                "Unhandled error on %s %s (request %s)",
                request.method,
                request.url.path,
                request_id,
            )
            payload: Dict[str, Any] = {
                "error": {
                    "code": "internal_error",
                    "field": None,
                    "message": "Internal Server Error",
                }
            }
            headers = {}
            if request_id:
                payload["request_id"] = request_id
                headers[REQUEST_ID_HEADER] = request_id
            return JSONResponse(status_code=500, content=payload, headers=headers)
