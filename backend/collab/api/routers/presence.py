from __future__ import annotations

from fastapi import APIRouter, Depends

from collab.api.deps import get_current_principal
from collab.core.security import Principal
from collab.realtime.server import RealtimeHub, get_hub
from collab.schemas.meeting import OnlineUser, PrincipalRead

router = APIRouter(prefix="/api", tags=["presence"])


@router.get("/profile", response_model=PrincipalRead)
async def profile(principal: Principal = Depends(get_current_principal)):
    return PrincipalRead(id=principal.id, email=principal.email, name=principal.display_name)


@router.get("/presence", response_model=list[OnlineUser])
async def online_users(
    principal: Principal = Depends(get_current_principal),
    hub: RealtimeHub = Depends(get_hub),
):
    return [OnlineUser(**user) for user in hub.presence.registry.list()]
