from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from chatsync.schemas.chat import (
    ConversationSummary,
    CreateGroupRequest,
    EnsureConversationRequest,
    MessageHistory,
    MessageOut,
    Pagination,
)
from chatsync.services.chat_service import MAX_PAGE_SIZE, ChatService
from chatsync.services.conversation_service import ConversationService
from chatsync.utils.dependencies import get_chat_service, get_conversation_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.list_conversations(current_user["_id"])


@router.post("", response_model=ConversationSummary, status_code=status.HTTP_201_CREATED)
async def ensure_conversation(body: EnsureConversationRequest, response: Response, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    summary, created = await service.ensure_direct(current_user["_id"], body.target_user_id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return summary


@router.post("/groups", response_model=ConversationSummary, status_code=status.HTTP_201_CREATED)
async def create_group(body: CreateGroupRequest, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.create_group(current_user["_id"], body.name, body.member_ids)


@router.get("/{conversation_id}", response_model=ConversationSummary)
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.get_detail(conversation_id, current_user["_id"])


@router.get("/{conversation_id}/messages", response_model=MessageHistory)
async def list_messages(conversation_id: str, page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE), current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages, pagination = await service.get_history(conversation_id, current_user["_id"], page=page, limit=limit)
    return MessageHistory(
        messages=[MessageOut.from_document(m) for m in messages],
        pagination=Pagination(**pagination),
    )
