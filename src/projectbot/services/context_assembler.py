from __future__ import annotations

from datetime import date
from threading import RLock
from typing import Dict, List, Optional
import logging

from ..domain.chat_models import AsanaTaskBlocks, ChatContext
from ..domain.models import Chatbot, Settings
from ..infrastructure.storage import Storage
from .asana_client import AsanaClient, build_task_blocks, get_asana_client
from .doc_ingest import split_chunks
from .slack_client import SlackClient, format_for_context, get_slack_client


logger = logging.getLogger("projectbot.services.context")

_doc_cache: Dict[int, List[str]] = {}
_doc_cache_lock = RLock()


def clear_document_cache(chatbot_id: Optional[int] = None) -> None:
    with _doc_cache_lock:
        if chatbot_id is None:
            _doc_cache.clear()
        else:
            _doc_cache.pop(chatbot_id, None)


def document_chunks(storage: Storage, chatbot_id: int) -> List[str]:
    with _doc_cache_lock:
        cached = _doc_cache.get(chatbot_id)
        if cached is not None:
            return list(cached)
    chunks: List[str] = []
    for doc in storage.list_documents(chatbot_id):
        chunks.extend(split_chunks(doc.content))
    with _doc_cache_lock:
        _doc_cache[chatbot_id] = chunks
    return list(chunks)


def slack_context(chatbot: Chatbot, settings: Optional[Settings], slack: SlackClient) -> List[str]:
    if not chatbot.slack_channel_id or not slack.configured:
        return []
    try:
        return [format_for_context(m, settings) for m in slack.history(chatbot.slack_channel_id)]
    except Exception as exc:
        logger.warning("slack_context_unavailable chatbot=%s channel=%s err=%s", chatbot.id, chatbot.slack_channel_id, exc)
        return []


def asana_context(storage: Storage, chatbot: Chatbot, asana: AsanaClient, today: date) -> List[AsanaTaskBlocks]:
    """Collect task blocks for the legacy link and every linked Asana project.

    A failing project is logged and skipped; the others still contribute.
    """
    targets = []
    if chatbot.asana_project_id:
        targets.append((chatbot.asana_project_id, None))
    for link in storage.list_asana_links(chatbot.id):
        targets.append((link.asana_project_id, f"[{(link.project_type or 'main').upper()}] {link.project_name}"))
    if not targets or not asana.configured:
        return []

    blocks: List[AsanaTaskBlocks] = []
    for project_gid, label in targets:
        try:
            tasks = asana.list_tasks(project_gid)
            if not tasks:
                continue
            if label is None:
                label = asana.project_name(project_gid) or "Project"
            blocks.append(build_task_blocks(project_gid, label, tasks, today))
        except Exception as exc:
            logger.warning("asana_project_failed chatbot=%s project=%s err=%s", chatbot.id, project_gid, exc)
    return blocks


def assemble_context(
    storage: Storage,
    chatbot: Chatbot,
    settings: Optional[Settings] = None,
    *,
    slack: Optional[SlackClient] = None,
    asana: Optional[AsanaClient] = None,
    today: Optional[date] = None,
) -> ChatContext:
    context = ChatContext(
        documents=document_chunks(storage, chatbot.id),
        slack_messages=slack_context(chatbot, settings, slack or get_slack_client()),
        asana=asana_context(storage, chatbot, asana or get_asana_client(), today or date.today()),
    )
    logger.debug(
        "context_assembled chatbot=%s documents=%s slack=%s asana_projects=%s",
        chatbot.id,
        len(context.documents),
        len(context.slack_messages),
        len(context.asana),
    )
    return context
