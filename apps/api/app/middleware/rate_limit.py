from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.auth import bearer_token, decode_access_token
from app.core.config import Settings, get_settings
from app.core.errors import AuthenticationError, error_response


WINDOW_SECONDS = 60


@dataclass
class _Bucket:
    tokens: float
    updated_at: float

    def consume(self, capacity: int, now: float) -> int:
        """Take one token; return 0 when allowed, otherwise seconds until one is available."""

        rate = capacity / WINDOW_SECONDS
        self.tokens = min(float(capacity), self.tokens + max(0.0, now - self.updated_at) * rate)
        self.updated_at = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0
        return max(1, math.ceil((1.0 - self.tokens) / rate))


class RateLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def hit(self, subject: str, group: str, capacity: int) -> int:
        if capacity <= 0:
            return WINDOW_SECONDS
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.setdefault((subject, group), _Bucket(tokens=float(capacity), updated_at=now))
            return bucket.consume(capacity, now)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = RateLimiter()


def route_limit(path: str, settings: Settings) -> tuple[str, int]:
    """Bucket name and per-minute capacity for a mutating ``/api`` path."""

    parts = [part for part in path.split("/") if part]
    if parts[1:3] == ["leads", "bulk"]:
        return "leads.bulk", settings.rate_limit_bulk_per_minute
    group = parts[1] if len(parts) > 1 else "api"
    return group, settings.rate_limit_mutations_per_minute


def _subject(request: Request) -> str:
    token = bearer_token(request)
    if token:
        try:
            return f"user:{decode_access_token(token).sub}"
        except AuthenticationError:
            pass
    client = request.client
    return f"ip:{client.host if client else 'unknown'}"


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    mutating_methods = {"POST", "PUT", "PATCH", "DELETE"}
    exempt_paths = {"/api/auth/login", "/api/auth/register"}

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if (
            settings.rate_limit_disabled
            or request.method.upper() not in self.mutating_methods
            or not path.startswith("/api/")
            or path in self.exempt_paths
        ):
            return await call_next(request)

        group, capacity = route_limit(path, settings)
        retry_after = _limiter.hit(_subject(request), group, capacity)
        if not retry_after:
            return await call_next(request)

        response = error_response(
            request,
            status_code=429,
            code="rate_limited",
            message="Too many requests",
            details={"group": group, "limit_per_minute": capacity},
        )
        response.headers["Retry-After"] = str(retry_after)
        return response


def reset_rate_limiter() -> None:
    _limiter.clear()
