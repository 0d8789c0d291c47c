# auth.py - Bearer token authentication and rate limiting for the scrape API

import hmac
import time
from typing import Dict, List, Optional
from fastapi import HTTPException, Header, Request
import logging

from backend.src import config

logger = logging.getLogger(__name__)

# =============================================================================
# API KEY MANAGEMENT
# =============================================================================

class APIKeyManager:
    """Validates bearer tokens against the configured API keys."""

    def __init__(self, api_keys: Optional[List[str]] = None):
        self.api_keys = list(config.API_KEYS if api_keys is None else api_keys)
        if self.api_keys:
            logger.info(f"Loaded {len(self.api_keys)} API keys for authentication")
        else:
            logger.warning("No API keys configured - authentication disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.api_keys)

    def validate_token(self, token: str) -> bool:
        """Constant-time comparison against every configured key."""
        if not token:
            return False
        ok = False
        for key in self.api_keys:
            if hmac.compare_digest(key.encode(), token.encode()):
                ok = True
        if not ok:
            logger.warning(f"Invalid API key attempted: {token[:4]}...")
        return ok

# Global API key manager instance
api_key_manager = APIKeyManager()

# =============================================================================
# RATE LIMITING
# =============================================================================

class RateLimiter:
    """Simple in-memory sliding-window rate limiter per client"""

    def __init__(self, window_ms: Optional[int] = None, max_requests: Optional[int] = None):
        self.requests: Dict[str, List[float]] = {}
        self._last_sweep = time.monotonic()
        self.window_seconds = (config.RATE_LIMIT_WINDOW_MS if window_ms is None else window_ms) / 1000
        self.max_requests = config.RATE_LIMIT_MAX if max_requests is None else max_requests
        logger.info(f"Rate limiting enabled: {self.max_requests} requests per {self.window_seconds}s")

    def check_rate_limit(self, client_id: str) -> None:
        """Raise 429 if the client exceeded the window budget, else record the request."""
        now = time.monotonic()
        self._sweep(now)

        recent = [t for t in self.requests.get(client_id, []) if now - t < self.window_seconds]

        if len(recent) >= self.max_requests:
            self.requests[client_id] = recent
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later."
            )

        recent.append(now)
        self.requests[client_id] = recent

    def _sweep(self, now: float) -> None:
        """Drop clients with no request inside the window, at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for client_id in list(self.requests):
            if not any(now - t < self.window_seconds for t in self.requests[client_id]):
                del self.requests[client_id]

    def reset(self):
        self.requests.clear()
        self._last_sweep = time.monotonic()

# Global rate limiter instance
rate_limiter = RateLimiter()

# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

async def enforce_rate_limit(request: Request):
    """FastAPI dependency applying the rate limit per client address"""
    client_id = request.client.host if request.client else "unknown"
    try:
        rate_limiter.check_rate_limit(client_id)
    except HTTPException:
        logger.warning(f"Rate limit exceeded for client {client_id}")
        raise

async def verify_bearer_token(authorization: Optional[str] = Header(None)):
    """FastAPI dependency checking `Authorization: Bearer <key>`; a no-op when no keys are configured"""
    if not api_key_manager.enabled:
        return None

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})

    token = authorization[len("Bearer "):].strip()
    if not api_key_manager.validate_token(token):
        raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})

    return token
