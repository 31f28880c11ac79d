from __future__ import annotations

"""System prompt assembly for chatbot conversations.

The template (chatbot override, then the settings template, then the built-in
default) is used verbatim apart from the three placeholders; nothing is
escaped before it goes to the model provider.
"""

from typing import Dict, List, Optional

from ..domain.chat_models import ChatContext
from ..domain.models import Chatbot, Settings


DOCUMENTS_SOURCE = "1. The project's initial documentation (budget, timeline, notes, plans, spreadsheets)."
SLACK_SOURCE = "2. The Slack message history from the project's dedicated Slack channel."
ASANA_SOURCE = "3. The project's Asana tasks and their status from multiple Asana projects."
ASANA_NOTE = "- Asana: always mention that the information comes from Asana project tasks and include the project name."

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant assigned to the {{chatbotName}} homebuilding project. Your role is to give project managers and executives accurate, up-to-date answers about this construction project by referencing the following sources of information:

{{contextSources}}

Answer clearly and concisely and always cite your source. If your answer comes from:
- a document: mention the filename and, if available, the page, sheet or section.
- Slack: mention the date and approximate time of the Slack message.
{{asanaNote}}

DOCUMENTS:
1. Search the provided project documents thoroughly; they hold the budget, schedule and specifications.
2. Content that begins with "SPREADSHEET DATA:" comes from spreadsheets. Use the cell references (for example "B12: $45,000") to answer budget and financial questions and mention the cell when citing.
3. For costs, timelines and specifications prefer documents over conversations.

ASANA TASKS:
1. For questions about tasks, project status, overdue or upcoming work, check the Asana data first.
2. Content that begins with "ASANA TASK DATA:" lists tasks with status, due date and assignee, split into all, overdue, upcoming and completed views. Use the view that matches the question.

Put the main source at the end of your answer in square brackets, for example [Source: Budget.xlsx].
Respond using complete sentences. If the information is unavailable, say:
"I wasn't able to find that information in the project files or Slack messages."

Never make up information. You may summarize or synthesize details when the answer is spread across several sources."""

ATTRIBUTION_BASE = (
    "\n\nIMPORTANT: You MUST provide source attribution whenever you use information from Slack messages. "
    "This is critical for users to trust the information. "
)
ATTRIBUTION_BOTH = "ALWAYS include BOTH the name of the person who sent the message AND the date/time when responding."
ATTRIBUTION_USER = "ALWAYS include the name of the person who sent the message when responding."
ATTRIBUTION_DATE = "ALWAYS include the date and time when the message was sent when responding."
ATTRIBUTION_FORMAT = (
    " Format source attribution at the end of your response like this: 'according to [NAME] on [DATE]' "
    "or similar natural phrasing. Never skip this attribution part even if the information seems unimportant."
)


def context_sources(context: ChatContext) -> str:
    sources = [DOCUMENTS_SOURCE, SLACK_SOURCE]
    # Any linked project with tasks counts here; the asanaNote below only
    # looks at the legacy single-project field. The two conditions differ.
    if context.has_asana_tasks:
        sources.append(ASANA_SOURCE)
    return "\n".join(sources)


def select_template(chatbot: Chatbot, settings: Optional[Settings]) -> str:
    if chatbot.system_prompt:
        return chatbot.system_prompt
    if settings and settings.system_prompt_template:
        return settings.system_prompt_template
    return DEFAULT_SYSTEM_PROMPT


def attribution_instructions(settings: Optional[Settings]) -> str:
    if not settings or not settings.include_source_details:
        return ""
    text = ATTRIBUTION_BASE
    if settings.include_user_in_source and settings.include_date_in_source:
        text += ATTRIBUTION_BOTH
    elif settings.include_user_in_source:
        text += ATTRIBUTION_USER
    elif settings.include_date_in_source:
        text += ATTRIBUTION_DATE
    return text + ATTRIBUTION_FORMAT


def build_system_prompt(chatbot: Chatbot, context: ChatContext, settings: Optional[Settings] = None) -> str:
    prompt = (
        select_template(chatbot, settings)
        .replace("{{chatbotName}}", chatbot.name)
        .replace("{{contextSources}}", context_sources(context))
        .replace("{{asanaNote}}", ASANA_NOTE if chatbot.asana_project_id else "")
    )
    if chatbot.output_format:
        prompt += f"\n\n{chatbot.output_format}"
    return prompt + attribution_instructions(settings)


def context_message(context: ChatContext) -> Optional[str]:
    asana_blocks: List[str] = []
    for block in context.asana:
        asana_blocks.extend([block.all_tasks, block.overdue, block.upcoming, block.completed])
    if not (context.documents or context.slack_messages or asana_blocks):
        return None
    text = "Here is relevant context to help answer the question:\n\n"
    if context.documents:
        text += "PROJECT DOCUMENTS:\n" + "\n\n".join(context.documents) + "\n\n"
    if context.slack_messages:
        text += "SLACK MESSAGES:\n" + "\n\n".join(context.slack_messages) + "\n\n"
    if asana_blocks:
        text += "ASANA TASKS:\n" + "\n\n".join(asana_blocks)
    return text


def build_chat_messages(system_prompt: str, context: ChatContext, question: str) -> List[Dict[str, str]]:
    """Provider payload shared by the streaming and blocking chat paths."""
    messages = [{"role": "system", "content": system_prompt}]
    ctx = context_message(context)
    if ctx:
        messages.append({"role": "system", "content": ctx})
    messages.append({"role": "user", "content": question})
    return messages
