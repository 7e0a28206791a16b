"""Bearer token resolution middleware."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.queue_api.dependencies.auth import User, resolve_user_from_token

logger = logging.getLogger(__name__)


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate the request state with the authenticated user."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        token: str | None = None

        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer":
                return JSONResponse(
                    status_code=401, content={"detail": "Invalid authentication credentials"}
                )
            token = credentials.strip() or None

        try:
            user: User = resolve_user_from_token(token)
        except HTTPException as exc:
            logger.info("Rejected request to %s: %s", request.url.path, exc.detail)
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.user = user
        return await call_next(request)
