"""Chat endpoint routes.

Provides:
- POST /api/chat - Relay one message to the language model
- GET /api/{user_id}/chats - List user's chats, newest activity first
- POST /api/{user_id}/chats - Create a chat
- PATCH /api/{user_id}/chats/{chat_id} - Rename a chat
- DELETE /api/{user_id}/chats/{chat_id} - Delete chat and its messages
- GET /api/{user_id}/chats/{chat_id}/messages - Messages in send order
- PUT /api/{user_id}/chats/{chat_id}/messages/{message_id}/reaction - Set reaction
"""
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mental_buddy.core.deps import get_current_user, get_relay, get_store
from mental_buddy.core.errors import BuddyError, NotFoundError, PersistenceError
from mental_buddy.models.conversation import MAX_TITLE_LENGTH, Chat, Message
from mental_buddy.services.relay import MessageRelay
from mental_buddy.services.session_store import SessionStore
from mental_buddy.utils import format_timestamp

router = APIRouter(prefix="/api", tags=["chat"])


class RelayRequest(BaseModel):
    """Request model for the relay."""
    message: Optional[str] = None


class RelayReply(BaseModel):
    reply: str


class ChatCreate(BaseModel):
    is_secret: bool = False


class ChatRename(BaseModel):
    title: str


class ReactionUpdate(BaseModel):
    reaction: Optional[Literal["like", "dislike"]] = None


class ChatSummary(BaseModel):
    """Response model for chat list entries."""
    id: str
    title: str
    is_secret: bool
    created_at: datetime
    last_updated_at: datetime
    updated_label: str


class MessageResponse(BaseModel):
    """Response model for a single message."""
    id: str
    chat_id: str
    sender: str
    text: str
    sent_at: datetime
    sent_label: str
    reaction: Optional[str]


def _chat_summary(chat: Chat) -> ChatSummary:
    return ChatSummary(
        id=chat.id,
        title=chat.title,
        is_secret=chat.is_secret,
        created_at=chat.created_at,
        last_updated_at=chat.last_updated_at,
        updated_label=format_timestamp(chat.last_updated_at),
    )


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        sender=message.sender,
        text=message.text,
        sent_at=message.sent_at,
        sent_label=format_timestamp(message.sent_at),
        reaction=message.reaction,
    )


def _check_user(user_id: str, current_user_id: str) -> None:
    # Token user must match path user
    if current_user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User ID mismatch",
        )


def _storage_failure(e: PersistenceError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/chat", response_model=RelayReply)
async def relay_message(
    request: RelayRequest,
    relay: MessageRelay = Depends(get_relay),
):
    """
    Forward one user message to the language model.

    Returns:
        200 {"reply": str}, or {"error": str} with 400 for a missing
        message, the provider's code for provider failures, 500 otherwise
    """
    try:
        reply = await relay.reply(request.message)
    except BuddyError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    return RelayReply(reply=reply)


@router.get("/{user_id}/chats", response_model=list[ChatSummary])
def list_chats(
    user_id: str,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> list[ChatSummary]:
    """List all chats for the authenticated user, most recent activity first."""
    _check_user(user_id, current_user_id)
    try:
        chats = store.list_chats(user_id)
    except PersistenceError as e:
        raise _storage_failure(e)
    return [_chat_summary(chat) for chat in chats]


@router.post("/{user_id}/chats", response_model=ChatSummary, status_code=status.HTTP_201_CREATED)
def create_chat(
    user_id: str,
    request: ChatCreate,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> ChatSummary:
    _check_user(user_id, current_user_id)
    try:
        chat = store.create_chat(user_id, is_secret=request.is_secret)
    except PersistenceError as e:
        raise _storage_failure(e)
    return _chat_summary(chat)


@router.patch("/{user_id}/chats/{chat_id}", response_model=ChatSummary)
def rename_chat(
    user_id: str,
    chat_id: str,
    request: ChatRename,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> ChatSummary:
    """
    Rename a chat.

    Raises:
        HTTPException: 400 if the trimmed title is empty
        HTTPException: 404 if chat not found or not owned
    """
    _check_user(user_id, current_user_id)
    title = request.title.strip()
    if not title:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Title cannot be empty",
        )
    try:
        chat = store.rename_chat(user_id, chat_id, title[:MAX_TITLE_LENGTH])
    except PersistenceError as e:
        raise _storage_failure(e)
    return _chat_summary(chat)


@router.delete("/{user_id}/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chat(
    user_id: str,
    chat_id: str,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> Response:
    """Delete a chat and all of its messages."""
    _check_user(user_id, current_user_id)
    try:
        store.delete_chat(user_id, chat_id)
    except PersistenceError as e:
        raise _storage_failure(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/chats/{chat_id}/messages", response_model=list[MessageResponse])
def list_messages(
    user_id: str,
    chat_id: str,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> list[MessageResponse]:
    _check_user(user_id, current_user_id)
    try:
        if store.get_chat(user_id, chat_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Chat not found",
            )
        messages = store.list_messages(user_id, chat_id)
    except PersistenceError as e:
        raise _storage_failure(e)
    return [_message_response(message) for message in messages]


@router.put(
    "/{user_id}/chats/{chat_id}/messages/{message_id}/reaction",
    response_model=MessageResponse,
)
def set_reaction(
    user_id: str,
    chat_id: str,
    message_id: str,
    request: ReactionUpdate,
    current_user_id: str = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
) -> MessageResponse:
    """
    Set or clear a message reaction.

    Raises:
        HTTPException: 400 for secret chats
        HTTPException: 404 if chat or message not found
    """
    _check_user(user_id, current_user_id)
    try:
        chat = store.get_chat(user_id, chat_id)
        if chat is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Chat not found",
            )
        if chat.is_secret:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Reactions are disabled for secret chats",
            )
        message = store.set_reaction(user_id, chat_id, message_id, request.reaction)
    except PersistenceError as e:
        raise _storage_failure(e)
    return _message_response(message)
