from uuid import UUID

from fastapi import APIRouter, Depends

from supportdesk.routers.conversations import get_store, raise_for_result
from supportdesk.schemas.usage import UsageResetResponse, UsageResponse
from supportdesk.services.store import ConversationStore
from supportdesk.services.usage_service import get_current_usage, reset_monthly_usage

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/{tenant_id}", response_model=UsageResponse)
def current_usage(tenant_id: UUID, store: ConversationStore = Depends(get_store)):
    result = get_current_usage(store, tenant_id)
    raise_for_result(result)
    return result.value


@router.post("/{tenant_id}/reset", response_model=UsageResetResponse)
def reset_usage(tenant_id: UUID, store: ConversationStore = Depends(get_store)):
    result = reset_monthly_usage(store, tenant_id)
    raise_for_result(result)
    return UsageResetResponse(success=True, next_reset_at=result.value)
