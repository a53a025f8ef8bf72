from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.tickets.enums import Role
from helpdesk.tickets.models import Actor

TOKEN_ACTOR_MAP: dict[str, Actor] = {
    "l1-token": Actor(id="agent-l1", role=Role.L1),
    "l2-token": Actor(id="agent-l2", role=Role.L2),
    "l3-token": Actor(id="agent-l3", role=Role.L3),
    "admin-token": Actor(id="admin", role=Role.ADMIN),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(token: str | None) -> Actor:
    """Return the actor associated with the provided bearer token."""

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    actor = TOKEN_ACTOR_MAP.get(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Very small identity stub.

    Tokens map to fixed actors. The session layer in front of this service is
    trusted to have authenticated the caller already; the role carried by the
    actor is taken as given.
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

    allowed = frozenset(roles)

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
