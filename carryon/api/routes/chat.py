"""
Chat endpoints
==============

GET  /api/v1/orders/{order_id}/messages      -- conversation, oldest first
POST /api/v1/orders/{order_id}/messages      -- send (also pushed to chat:<id>)
POST /api/v1/orders/{order_id}/messages/read -- mark the other party's messages read
"""

from fastapi import APIRouter, Depends, Request

from carryon.api.dependencies import get_chat, require_identity
from carryon.api.errors import unwrap
from carryon.api.middleware import limiter
from carryon.api.schemas import ChatMessageResponse, ChatSendRequest, MarkReadResponse
from carryon.config import settings
from carryon.domain.identity import Identity
from carryon.services.chat import ChatRelay

router = APIRouter(prefix="/orders/{order_id}/messages", tags=["chat"])


@router.get("", response_model=list[ChatMessageResponse], summary="Chat history")
@limiter.limit(settings.rate_limit)
async def history(
    request: Request,
    order_id: int,
    identity: Identity = Depends(require_identity),
    chat: ChatRelay = Depends(get_chat),
):
    messages = unwrap(await chat.history(identity, order_id))
    return [ChatMessageResponse.from_message(m) for m in messages]


@router.post("", status_code=201, response_model=ChatMessageResponse, summary="Send a message")
@limiter.limit(settings.rate_limit)
async def send_message(
    request: Request,
    order_id: int,
    body: ChatSendRequest,
    identity: Identity = Depends(require_identity),
    chat: ChatRelay = Depends(get_chat),
):
    message = unwrap(await chat.send(identity, order_id, body.body))
    return ChatMessageResponse.from_message(message)


@router.post("/read", response_model=MarkReadResponse, summary="Mark messages read")
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    order_id: int,
    identity: Identity = Depends(require_identity),
    chat: ChatRelay = Depends(get_chat),
):
    return MarkReadResponse(updated=unwrap(await chat.mark_read(identity, order_id)))
