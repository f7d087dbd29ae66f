from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from repairdesk.tickets.models import Actor, Role

# Tokens are issued by the external login service; this table stands in for its lookup.
TOKEN_ACTOR_MAP: dict[str, Actor] = {
    "admin-token": Actor(user_id=1, role=Role.ADMIN, name="admin"),
    "it-token": Actor(user_id=2, role=Role.IT, name="technician"),
    "it2-token": Actor(user_id=3, role=Role.IT, name="technician-2"),
    "user-token": Actor(user_id=10, role=Role.USER, name="reporter"),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(token: str | None) -> Actor:
    """Return the actor associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    actor = TOKEN_ACTOR_MAP.get(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Resolve the authorization context of the request.

    The middleware may already have resolved it; otherwise the bearer token is
    looked up here.
    """

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(token)
    request.state.actor = actor
    return actor


def role_required(*roles: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds one of ``roles``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
