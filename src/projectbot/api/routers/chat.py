from __future__ import annotations

import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatExchange, ChatRequest
from ...domain.models import Chatbot, Message, PublicChatbot, Settings, UserAccount
from ...infrastructure.events import MESSAGE_CREATED, publish_event
from ...infrastructure.storage import Storage, get_storage
from ...security.rbac import Permission, require_permission
from ...services import llm as llm_service
from ...services.chat_responder import FALLBACK_CONTENT, prepare_turn, respond, token_accepted
from ...services.streaming import SSE_HEADERS, StreamRelay, token_stream
from ..deps import get_settings, require_chatbot


logger = logging.getLogger("projectbot.api.chat")

router = APIRouter(tags=["chat"])


def is_test_harness(referer: Optional[str]) -> bool:
    """True when the request comes from a configured internal test page."""
    fragments = [f.strip() for f in os.getenv("PROJECTBOT_TEST_HARNESS_REFERERS", "").split(",") if f.strip()]
    return bool(referer) and any(f in referer for f in fragments)


def _chat_target(storage: Storage, chatbot_id: int, token: Optional[str], *, internal_harness: bool = False) -> Chatbot:
    chatbot = require_chatbot(storage, chatbot_id)
    if not token_accepted(chatbot, token, internal_harness=internal_harness):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Valid token required")
    if not chatbot.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Chatbot is inactive")
    return chatbot


def _persist(storage: Storage, chatbot_id: int, content: str, *, is_user: bool, citation: Optional[str] = None) -> Message:
    try:
        message = storage.create_message(chatbot_id, content=content, is_user_message=is_user, citation=citation)
    except Exception as exc:
        logger.exception("Failed to persist %s message for chatbot %s", "user" if is_user else "assistant", chatbot_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process chat message"
        ) from exc
    publish_event(MESSAGE_CREATED, {"chatbot_id": chatbot_id, "message_id": message.id})
    return message


@router.get("/public/chatbot/{token}", response_model=PublicChatbot)
def public_chatbot(token: str, storage: Storage = Depends(get_storage)) -> PublicChatbot:
    chatbot = storage.get_chatbot_by_token(token)
    if chatbot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbot not found")
    return PublicChatbot(**chatbot.model_dump(include=set(PublicChatbot.model_fields)))


@router.get("/chatbots/{chatbot_id}/messages", response_model=List[Message])
def list_messages(
    chatbot_id: int,
    token: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    storage: Storage = Depends(get_storage),
) -> List[Message]:
    chatbot = require_chatbot(storage, chatbot_id)
    if not token_accepted(chatbot, token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Valid token required")
    return storage.list_messages(chatbot_id, limit=limit)


@router.delete("/chatbots/{chatbot_id}/messages")
def clear_messages(
    chatbot_id: int,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(require_permission(Permission.CHATBOT_WRITE)),
) -> dict:
    require_chatbot(storage, chatbot_id)
    removed = storage.clear_messages(chatbot_id)
    logger.info("chat_history_cleared chatbot=%s removed=%s by=%s", chatbot_id, removed, user.id)
    return {"deleted": removed}


@router.post("/chatbots/{chatbot_id}/chat", response_model=ChatExchange)
def chat(
    chatbot_id: int,
    req: ChatRequest,
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> ChatExchange:
    chatbot = _chat_target(storage, chatbot_id, req.token, internal_harness=is_test_harness(request.headers.get("referer")))
    user_message = _persist(storage, chatbot.id, req.message, is_user=True)
    reply = respond(storage, chatbot, req.message, settings)
    bot_message = _persist(storage, chatbot.id, reply.content, is_user=False, citation=reply.citation)
    return ChatExchange(user_message=user_message, bot_message=bot_message)


@router.post("/chatbots/{chatbot_id}/stream")
async def stream_chat(
    chatbot_id: int,
    req: ChatRequest,
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """Relay model tokens as server-sent events.

    Validation, the user-message insert and model configuration happen before
    the response starts, so their failures are plain HTTP errors. Headers are
    flushed as soon as the stream opens; every provider failure, including a
    slow or failed first token, arrives as an ``error`` event.
    """
    internal = is_test_harness(request.headers.get("referer"))
    chatbot = await run_in_threadpool(_chat_target, storage, chatbot_id, req.token, internal_harness=internal)
    await run_in_threadpool(_persist, storage, chatbot.id, req.message, is_user=True)
    messages = await run_in_threadpool(prepare_turn, storage, chatbot, req.message, settings)

    try:
        llm = llm_service.get_chat_model(settings, temperature=llm_service.CHAT_TEMPERATURE)
    except llm_service.ModelUnavailableError as exc:
        logger.warning("stream_model_unavailable chatbot=%s", chatbot.id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=FALLBACK_CONTENT) from exc

    relay = StreamRelay(storage, chatbot.id, token_stream(llm, messages), settings)
    return StreamingResponse(relay.stream(), media_type="text/event-stream", headers=SSE_HEADERS)
