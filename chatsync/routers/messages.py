from fastapi import APIRouter, Depends, status

from chatsync.schemas.chat import MessageOut, ReactionRequest, SendMessageRequest
from chatsync.services.chat_service import ChatService
from chatsync.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    message = await service.send_message(
        current_user["_id"],
        body.conversation_id,
        message_type=body.type,
        text=body.text,
        file_url=body.file_url,
        file_name=body.file_name,
        file_size=body.file_size,
    )
    return MessageOut.from_document(message)


@router.post("/{message_id}/reactions", response_model=MessageOut)
async def add_reaction(message_id: str, body: ReactionRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    message = await service.add_reaction(message_id, current_user["_id"], body.reaction)
    return MessageOut.from_document(message)
