"""Resolve the request's authorization context before routing."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from repairdesk.dependencies.auth import resolve_actor_from_token
from repairdesk.tickets.models import Actor


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate ``request.state.actor`` when a bearer token is presented.

    Requests without credentials pass through untouched; protected routes reject
    them through their dependencies.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return await call_next(request)

        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            actor: Actor = resolve_actor_from_token(credentials.strip())
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.actor = actor
        return await call_next(request)
