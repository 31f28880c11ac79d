from __future__ import annotations

from typing import Dict, List, Optional
import logging

from ..domain.chat_models import ChatReply
from ..domain.models import Chatbot, Settings
from ..infrastructure.storage import Storage
from . import llm as llm_service
from .citations import NO_SOURCE, extract_citation
from .context_assembler import assemble_context
from .prompt_builder import build_chat_messages, build_system_prompt


logger = logging.getLogger("projectbot.services.chat")
LOG = logging.getLogger("projectbot.llm")

FALLBACK_CONTENT = "I'm having trouble connecting to my knowledge base. Please try again later."
FALLBACK_CITATION = "Error"
EMPTY_RESPONSE = "I wasn't able to find that information in the project files or Slack messages."


def token_accepted(chatbot: Chatbot, token: Optional[str], *, internal_harness: bool = False) -> bool:
    """True when the caller may chat with ``chatbot``.

    The token only matters for chatbots with ``require_auth`` set, and the
    internal streaming test harness is exempt.
    """
    if not chatbot.require_auth or internal_harness:
        return True
    return token is not None and token == chatbot.public_token


def prepare_turn(storage: Storage, chatbot: Chatbot, question: str, settings: Optional[Settings]) -> List[Dict[str, str]]:
    context = assemble_context(storage, chatbot, settings)
    system_prompt = build_system_prompt(chatbot, context, settings)
    return build_chat_messages(system_prompt, context, question)


def finalize_reply(text: str, settings: Optional[Settings]) -> ChatReply:
    """Turn a complete model answer into the persisted content and citation."""
    if not (text or "").strip():
        return ChatReply(content=EMPTY_RESPONSE, citation=NO_SOURCE)
    include_details = bool(settings and settings.include_source_details)
    content, citation = extract_citation(text, include_source_details=include_details)
    return ChatReply(content=content, citation=citation)


def fallback_reply() -> ChatReply:
    return ChatReply(content=FALLBACK_CONTENT, citation=FALLBACK_CITATION)


def generate_reply(messages: List[Dict[str, str]], settings: Optional[Settings]) -> ChatReply:
    """Blocking completion. Provider failures degrade to the fallback apology."""
    try:
        text = llm_service.complete(messages, settings, temperature=llm_service.CHAT_TEMPERATURE)
    except Exception as exc:
        LOG.warning("llm_completion_failed", extra={"err": str(exc)})
        logger.exception("Chat completion failed")
        return fallback_reply()
    return finalize_reply(text, settings)


def respond(storage: Storage, chatbot: Chatbot, question: str, settings: Optional[Settings]) -> ChatReply:
    return generate_reply(prepare_turn(storage, chatbot, question, settings), settings)
