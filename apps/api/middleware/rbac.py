"""Attach the calling user to every request before routing."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from apps.api.dependencies.auth import User, resolve_user_from_token

logger = logging.getLogger(__name__)

DEFAULT_PUBLIC_PATHS = ("/ping", "/metrics", "/docs", "/openapi.json")


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token once and store the user on ``request.state``.

    Health check and documentation paths are served even when the token is bad.
    """

    def __init__(self, app: ASGIApp, *, public_paths: Iterable[str] = DEFAULT_PUBLIC_PATHS) -> None:
        super().__init__(app)
        self._public_paths = tuple(public_paths)

    def _is_public(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self._public_paths)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        token: str | None = None

        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer" and not self._is_public(request.url.path):
                return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})
            token = credentials or None

        try:
            user: User = resolve_user_from_token(token)
        except HTTPException as exc:
            if not self._is_public(request.url.path):
                logger.info("Rejected request to %s: %s", request.url.path, exc.detail)
                return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
            user = resolve_user_from_token(None)

        request.state.user = user
        return await call_next(request)
