"""
Security middleware and dependencies for the API.
"""

import threading
import time
import logging
import uuid
from collections import defaultdict
from contextlib import contextmanager
from typing import Optional, Set

from fastapi import Header, HTTPException, Request, status

from suraksha.config import settings
from suraksha.utils.logging_config import session_id_var

logger = logging.getLogger(__name__)


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Header(None, alias=settings.api_token_header),
):
    """
    Verify the API token from the X-API-Key header.

    In development mode (no token configured), this is bypassed.
    In production, a valid token is required.
    """
    if not settings.api_token:
        if settings.is_production:
            logger.warning("API token not configured in production mode!")
        return None

    client_host = request.client.host if request.client else "unknown"
    if not api_key:
        logger.warning(f"Missing API key from {client_host}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Provide {settings.api_token_header} header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.api_token:
        logger.warning(f"Invalid API key attempt from {client_host}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


# Simple in-memory rate limiter
class RateLimiter:
    """
    Simple in-memory rate limiter.
    For production, use Redis or a proper rate limiting service.
    """

    def __init__(self):
        self._requests: dict = defaultdict(list)

    def _clean_old_requests(self, key: str, window: int):
        """Remove requests outside the current window."""
        now = time.time()
        self._requests[key] = [
            ts for ts in self._requests[key]
            if now - ts < window
        ]

    def is_allowed(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """
        Check if a request is allowed.

        Returns:
            (allowed: bool, remaining: int)
        """
        self._clean_old_requests(key, window)

        current_count = len(self._requests[key])

        if current_count >= limit:
            return False, 0

        self._requests[key].append(time.time())
        return True, limit - current_count - 1

    def get_retry_after(self, key: str, window: int) -> int:
        """Get seconds until the oldest request expires."""
        if not self._requests[key]:
            return 0
        oldest = min(self._requests[key])
        return max(0, int(window - (time.time() - oldest)))

    def reset(self):
        self._requests.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


async def check_rate_limit(request: Request):
    """
    Rate limiting dependency.
    Limits requests per IP address.
    """
    if not settings.rate_limit_requests:
        return  # Rate limiting disabled

    client_ip = request.client.host if request.client else "unknown"

    allowed, remaining = rate_limiter.is_allowed(
        key=client_ip,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
    )

    request.state.rate_limit_remaining = remaining
    request.state.rate_limit_limit = settings.rate_limit_requests

    if not allowed:
        retry_after = rate_limiter.get_retry_after(client_ip, settings.rate_limit_window)
        logger.warning(f"Rate limit exceeded for {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(settings.rate_limit_requests),
                "X-RateLimit-Remaining": "0",
            },
        )


# ============== SESSIONS ==============


async def get_session_id(
    request: Request,
    session_id: Optional[str] = Header(None, alias=settings.session_header),
) -> str:
    """
    Session id from the X-Session-Id header, or a fresh one.
    The server echoes it back so the client can keep using it.
    """
    session_id = (session_id or "").strip() or uuid.uuid4().hex
    request.state.session_id = session_id
    session_id_var.set(session_id)
    return session_id


async def get_user_id(
    x_user_id: Optional[str] = Header(None, alias=settings.user_header),
) -> Optional[str]:
    """Authenticated user id, as forwarded by the auth layer in front of this API."""
    return (x_user_id or "").strip() or None


class InFlightRegistry:
    """
    One analysis at a time per session. A second submission while the first
    is still running is rejected, not queued.
    """

    def __init__(self):
        self._active: Set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._active:
                return False
            self._active.add(session_id)
            return True

    def release(self, session_id: str) -> None:
        with self._lock:
            self._active.discard(session_id)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    @contextmanager
    def hold(self, session_id: str):
        if not self.try_acquire(session_id):
            logger.warning(f"Rejected concurrent submission for session {session_id}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An analysis is already in progress for this session.",
            )
        try:
            yield
        finally:
            self.release(session_id)
