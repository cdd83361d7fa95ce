from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from supportdesk.database import get_db
from supportdesk.runtime import SupportRuntime, get_runtime
from supportdesk.schemas.conversation import (
    AcceptResponse,
    AgentActionRequest,
    AgentMessageRequest,
    ConversationResponse,
    CustomerActionRequest,
    CustomerMessageRequest,
    MessageResponse,
    ReadReceiptResponse,
    ResolveRequest,
    StartConversationRequest,
)
from supportdesk.services import message_service, state_service
from supportdesk.services.conversation_service import get_or_create_conversation
from supportdesk.services.result import Result
from supportdesk.services.store import ConversationStore

router = APIRouter(prefix="/conversations", tags=["conversations"])

ERROR_STATUS = {
    "not_found": 404,
    "forbidden": 403,
    "invalid_state": 409,
    "usage_limit_reached": 402,
    "lock_timeout": 423,
}


def raise_for_result(result: Result) -> None:
    if result.ok:
        return
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_code, 400),
        detail={"error": result.error, "code": result.error_code, "retryable": result.retryable},
    )


def get_store(db: Session = Depends(get_db)) -> ConversationStore:
    return ConversationStore(db)


@router.post("", response_model=ConversationResponse)
def start_conversation(request: StartConversationRequest, store: ConversationStore = Depends(get_store)):
    conversation = get_or_create_conversation(store, request.tenant_id, request.customer_id)
    store.commit()
    return store.get_conversation(conversation.id)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: UUID, store: ConversationStore = Depends(get_store)):
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
def list_messages(conversation_id: UUID, limit: int = 50, store: ConversationStore = Depends(get_store)):
    if not store.get_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return store.list_recent_messages(conversation_id, limit=min(max(limit, 1), 200))


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
async def send_customer_message(
    conversation_id: UUID,
    request: CustomerMessageRequest,
    store: ConversationStore = Depends(get_store),
    runtime: SupportRuntime = Depends(get_runtime),
):
    result = await message_service.send_customer_message(
        runtime,
        store,
        conversation_id,
        request.customer_id,
        request.content,
        attachment=request.attachment.model_dump() if request.attachment else None,
    )
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/request-human", response_model=ConversationResponse)
async def request_human(
    conversation_id: UUID,
    request: CustomerActionRequest,
    store: ConversationStore = Depends(get_store),
    runtime: SupportRuntime = Depends(get_runtime),
):
    result = await state_service.request_human_support(store, runtime.notifier, conversation_id, request.customer_id)
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/accept", response_model=AcceptResponse)
async def accept_conversation(
    conversation_id: UUID,
    request: AgentActionRequest,
    store: ConversationStore = Depends(get_store),
    runtime: SupportRuntime = Depends(get_runtime),
):
    result = await state_service.agent_accept(runtime.redis, store, conversation_id, request.agent_id)
    raise_for_result(result)
    return AcceptResponse(success=True, joined=result.value)


@router.post("/{conversation_id}/agent-messages", response_model=MessageResponse)
async def send_agent_message(
    conversation_id: UUID,
    request: AgentMessageRequest,
    store: ConversationStore = Depends(get_store),
    runtime: SupportRuntime = Depends(get_runtime),
):
    result = await state_service.agent_send_message(
        runtime.redis,
        store,
        conversation_id,
        request.agent_id,
        request.content,
        attachment=request.attachment.model_dump() if request.attachment else None,
    )
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/hand-back-to-queue", response_model=ConversationResponse)
def hand_back_to_queue(conversation_id: UUID, request: AgentActionRequest, store: ConversationStore = Depends(get_store)):
    result = state_service.hand_back_to_queue(store, conversation_id, request.agent_id)
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/hand-back-to-ai", response_model=ConversationResponse)
def hand_back_to_ai(conversation_id: UUID, request: AgentActionRequest, store: ConversationStore = Depends(get_store)):
    result = state_service.hand_back_to_ai(store, conversation_id)
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/resolve", response_model=ConversationResponse)
def resolve_conversation(conversation_id: UUID, request: ResolveRequest, store: ConversationStore = Depends(get_store)):
    result = state_service.mark_resolved(store, conversation_id, request.resolved_by, request.agent_id)
    raise_for_result(result)
    return result.value


@router.post("/{conversation_id}/read/agent", response_model=ReadReceiptResponse)
def mark_read_by_agent(conversation_id: UUID, request: AgentActionRequest, store: ConversationStore = Depends(get_store)):
    result = message_service.mark_read_by_agent(store, conversation_id, request.agent_id)
    raise_for_result(result)
    return ReadReceiptResponse(success=True, marked=result.value)


@router.post("/{conversation_id}/read/customer", response_model=ReadReceiptResponse)
def mark_read_by_customer(
    conversation_id: UUID,
    request: CustomerActionRequest,
    store: ConversationStore = Depends(get_store),
):
    result = message_service.mark_read_by_customer(store, conversation_id, request.customer_id)
    raise_for_result(result)
    return ReadReceiptResponse(success=True, marked=result.value)
