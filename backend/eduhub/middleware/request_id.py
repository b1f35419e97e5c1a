"""
Request ID tracking middleware for log correlation.
"""
import uuid
import time
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import logging

from eduhub.utils.logging import request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Assigns each HTTP request an id (taken from X-Request-ID when the client
    sends one), exposes it on request.state and in every log line emitted while
    the request is handled, and echoes it back in the response headers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        start = time.time()
        logger.info(
            f"{request.method} {request.url.path} started",
            extra={"request_id": request_id, "status": "started"},
        )
        try:
            response: Response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {str(e)}",
                extra={"request_id": request_id, "duration_ms": int((time.time() - start) * 1000)},
                exc_info=True,
            )
            raise
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            f"{request.method} {request.url.path} completed",
            extra={
                "request_id": request_id,
                "status": response.status_code,
                "duration_ms": int((time.time() - start) * 1000),
            },
        )
        return response
