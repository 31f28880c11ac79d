from __future__ import annotations

"""Chat model construction for the OpenAI-compatible provider.

Every caller goes through ``get_chat_model`` so that tests can swap the
``ChatOpenAI`` class in one place.
"""

from typing import Any, Dict, List, Optional
import logging
import os

from langchain_openai import ChatOpenAI

from ..domain.models import Settings


logger = logging.getLogger("projectbot.services.llm")
LOG = logging.getLogger("projectbot.llm")

DEFAULT_MODEL = "gpt-4o"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
CHAT_TEMPERATURE = 0.7
SUMMARY_TEMPERATURE = 0.5

ChatMessages = List[Dict[str, str]]


class ModelUnavailableError(RuntimeError):
    """Raised when no model provider is configured."""


def model_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def resolve_model(settings: Optional[Settings]) -> str:
    if settings and settings.openai_model:
        return settings.openai_model
    return os.getenv("OPENAI_MODEL", DEFAULT_MODEL)


def get_chat_model(settings: Optional[Settings] = None, *, temperature: float = CHAT_TEMPERATURE, **overrides: Any):
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ModelUnavailableError("LLM not configured")
    base_url = os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)
    model = overrides.pop("model", None) or resolve_model(settings)
    LOG.debug("llm_client_built", extra={"model": model, "base_url": base_url})
    return ChatOpenAI(api_key=api_key, base_url=base_url, model=model, temperature=temperature, **overrides)


def response_text(res: Any) -> str:
    if res is None:
        return ""
    content = res.content if hasattr(res, "content") else res
    if isinstance(content, list):
        # Content blocks from newer providers.
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get("text", "")))
            else:
                parts.append(str(block))
        return "".join(parts)
    return str(content or "")


def complete(messages: ChatMessages, settings: Optional[Settings] = None, *, temperature: float = CHAT_TEMPERATURE) -> str:
    """Blocking completion; provider errors propagate to the caller."""
    llm = get_chat_model(settings, temperature=temperature)
    res = llm.invoke(messages)
    return response_text(res)
