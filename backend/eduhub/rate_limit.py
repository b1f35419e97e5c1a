"""
Rate limiting configuration and utilities.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import logging

from eduhub.config import settings

logger = logging.getLogger(__name__)

# Use Redis if explicitly configured, otherwise fallback to memory
storage_uri = settings.REDIS_URL if settings.REDIS_URL else "memory://"

if not settings.REDIS_URL:
    logger.warning("REDIS_URL not set using memory storage for rate limiting")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["100/minute"],
    storage_uri=storage_uri,
    strategy="fixed-window"
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    logger.warning(
        f"Rate limit exceeded for {get_remote_address(request)}",
        extra={"status": 429}
    )

    return JSONResponse(
        status_code=429,
        content={
            "error_code": "RATE_LIMIT_EXCEEDED",
            "message": "Too many requests. Please try again later.",
            "details": {
                "retry_after": "60 seconds"
            }
        }
    )


# Chat messages and doubt creation are the write-heavy paths
MESSAGE_RATE_LIMIT = f"{settings.RATE_LIMIT_MESSAGES_PER_MINUTE}/minute"
INITIATE_RATE_LIMIT = "10/minute"
