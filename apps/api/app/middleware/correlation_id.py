from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_actor_id, reset_correlation_id, set_actor_id, set_correlation_id
from app.core.auth import bearer_token, decode_access_token
from app.core.errors import AuthenticationError


def _token_actor_id(request: Request) -> int | None:
    token = bearer_token(request)
    if not token:
        return None
    try:
        return int(decode_access_token(token).sub)
    except (AuthenticationError, ValueError):
        return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        # Bound here so sync endpoints running in the threadpool inherit it.
        actor_token = set_actor_id(_token_actor_id(request))
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_actor_id(actor_token)
            reset_correlation_id(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
