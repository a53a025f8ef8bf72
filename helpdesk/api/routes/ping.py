import asyncio

import asyncpg
from fastapi import APIRouter, Depends, Request

from helpdesk.dependencies.auth import CurrentActor, role_required
from helpdesk.tickets.enums import Role

router = APIRouter(prefix="/ping", tags=["health"])

_CHECK_TIMEOUT = 2.0


async def _database_state(request: Request) -> str:
    postgres = getattr(request.app.state, "postgres", None)
    if postgres is None:
        return "unavailable"
    try:
        await asyncio.wait_for(postgres.test_connection(), timeout=_CHECK_TIMEOUT)
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError):
        return "unavailable"
    return "ok"


@router.get("", summary="Public health check")
async def ping(request: Request) -> dict[str, str]:
    configured = getattr(request.app.state, "ticket_service", None) is not None
    return {
        "status": "ok",
        "tickets": "ready" if configured else "unavailable",
        "database": await _database_state(request),
    }


@router.get(
    "/secure",
    summary="Authenticated health check",
    dependencies=[Depends(role_required(Role.L1, Role.L2, Role.L3, Role.ADMIN))],
)
async def secure_ping(actor: CurrentActor) -> dict[str, str]:
    return {"status": "ok", "actor": actor.id, "role": actor.role.value}
