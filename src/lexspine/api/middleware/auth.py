"""
API-key authentication middleware.

When ``LEXSPINE_API_KEY`` is set, every request must include a matching
``X-API-Key`` header. Unauthenticated requests receive a 401 problem
response. ``/health`` and the OpenAPI docs are always reachable.

An accepted request carries ``request.state.principal``, a digest of the
key, which per-caller rate limits use as the caller identity.
"""

from __future__ import annotations

import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lexspine.api.middleware.errors import problem_response
from lexspine.core.hashing import compute_hash

_BYPASS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"/health$"),
    re.compile(r"/docs$"),
    re.compile(r"/redoc$"),
    re.compile(r"/openapi\.json$"),
]


def _is_bypass(path: str) -> bool:
    return any(p.search(path) for p in _BYPASS_PATTERNS)


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject requests that lack a valid API key.

    ``api_key=None`` disables enforcement.
    """

    def __init__(self, app: object, api_key: str | None = None) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._api_key = api_key
        self._principal = f"api-key:{compute_hash(api_key, length=12)}" if api_key else None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._api_key is None or _is_bypass(request.url.path):
            return await call_next(request)

        if request.headers.get("X-API-Key") != self._api_key:
            return problem_response(
                status=401,
                title="Unauthorized",
                detail="Missing or invalid API key. Provide X-API-Key header.",
                instance=request.url.path,
            )
        request.state.principal = self._principal
        return await call_next(request)
