from fastapi import APIRouter, Depends

from repairdesk.dependencies.auth import CurrentActor, role_required
from repairdesk.tickets.models import Role

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/secure",
    summary="Staff-only probe",
    dependencies=[Depends(role_required(Role.IT, Role.ADMIN))],
)
async def secure_ping(actor: CurrentActor) -> dict[str, str]:
    return {"status": "ok", "user": actor.name, "role": actor.role.value}
