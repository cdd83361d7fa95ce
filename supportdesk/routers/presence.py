from uuid import UUID

from fastapi import APIRouter, Depends

from supportdesk.runtime import SupportRuntime, get_runtime
from supportdesk.schemas.conversation import TypingRequest
from supportdesk.services.presence_service import PresenceTracker

router = APIRouter(tags=["presence"])


def get_presence(runtime: SupportRuntime = Depends(get_runtime)) -> PresenceTracker:
    return PresenceTracker(runtime.redis)


@router.post("/presence/{tenant_id}/agents/{agent_id}/heartbeat")
async def heartbeat(tenant_id: UUID, agent_id: UUID, presence: PresenceTracker = Depends(get_presence)):
    await presence.heartbeat(tenant_id, agent_id)
    return {"success": True}


@router.delete("/presence/{tenant_id}/agents/{agent_id}")
async def go_offline(tenant_id: UUID, agent_id: UUID, presence: PresenceTracker = Depends(get_presence)):
    await presence.go_offline(tenant_id, agent_id)
    return {"success": True}


@router.get("/presence/{tenant_id}/agents")
async def online_agents(tenant_id: UUID, presence: PresenceTracker = Depends(get_presence)):
    return {"agents": await presence.list_online_agents(tenant_id)}


@router.post("/conversations/{conversation_id}/typing")
async def set_typing(conversation_id: UUID, request: TypingRequest, presence: PresenceTracker = Depends(get_presence)):
    await presence.set_typing(conversation_id, request.user_id, request.is_typing)
    return {"success": True}
