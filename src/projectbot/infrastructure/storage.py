from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Protocol
import logging
import os
import secrets
import uuid

from ..domain.models import (
    Chatbot,
    ChatbotAsanaProject,
    ChatbotAsanaProjectCreate,
    ChatbotCreate,
    Document,
    EmailRecipient,
    Message,
    Project,
    ProjectCreate,
    ProjectEmailRecipient,
    ProjectSummary,
    Settings,
    Summary,
    UserAccount,
)


logger = logging.getLogger("projectbot.storage")


class Storage(Protocol):
    kind: str

    # users
    def get_user(self, user_id: int) -> Optional[UserAccount]: ...

    def get_user_by_username(self, username: str) -> Optional[UserAccount]: ...

    def list_users(self) -> List[UserAccount]: ...

    def create_user(self, username: str, password_hash: str, display_name: str, role: str = "user") -> UserAccount: ...

    def update_user(self, user_id: int, **fields: Any) -> UserAccount: ...

    def delete_user(self, user_id: int) -> bool: ...

    # projects
    def list_projects(self) -> List[Project]: ...

    def get_project(self, project_id: int) -> Optional[Project]: ...

    def create_project(self, data: ProjectCreate) -> Project: ...

    def update_project(self, project_id: int, **fields: Any) -> Project: ...

    def delete_project(self, project_id: int) -> bool: ...

    def list_project_chatbots(self, project_id: int) -> List[Chatbot]: ...

    # chatbots
    def list_chatbots(self) -> List[Chatbot]: ...

    def get_chatbot(self, chatbot_id: int) -> Optional[Chatbot]: ...

    def get_chatbot_by_token(self, token: str) -> Optional[Chatbot]: ...

    def create_chatbot(self, data: ChatbotCreate, created_by_id: int, public_token: str) -> Chatbot: ...

    def update_chatbot(self, chatbot_id: int, **fields: Any) -> Chatbot: ...

    def delete_chatbot(self, chatbot_id: int) -> bool: ...

    def list_asana_links(self, chatbot_id: int) -> List[ChatbotAsanaProject]: ...

    def add_asana_link(self, chatbot_id: int, data: ChatbotAsanaProjectCreate) -> ChatbotAsanaProject: ...

    def delete_asana_link(self, link_id: int) -> bool: ...

    # documents
    def list_documents(self, chatbot_id: int) -> List[Document]: ...

    def get_document(self, document_id: int) -> Optional[Document]: ...

    def create_document(
        self,
        chatbot_id: int,
        original_name: str,
        file_type: str,
        content: str,
        uploaded_by_id: Optional[int] = None,
    ) -> Document: ...

    def delete_document(self, document_id: int) -> bool: ...

    # messages
    def list_messages(self, chatbot_id: int, limit: Optional[int] = None) -> List[Message]: ...

    def list_messages_between(self, chatbot_id: int, start: datetime, end: datetime) -> List[Message]: ...

    def count_messages(self, chatbot_id: int) -> int: ...

    def create_message(
        self,
        chatbot_id: int,
        content: str,
        is_user_message: bool,
        user_id: Optional[int] = None,
        citation: Optional[str] = None,
    ) -> Message: ...

    def clear_messages(self, chatbot_id: int) -> int: ...

    # summaries
    def list_summaries(self, chatbot_id: int) -> List[Summary]: ...

    def create_summary(self, chatbot_id: int, content: str, week: str) -> Summary: ...

    def list_project_summaries(self, project_id: int) -> List[ProjectSummary]: ...

    def create_project_summary(
        self, project_id: int, content: str, week: str, slack_channel_id: Optional[str] = None
    ) -> ProjectSummary: ...

    # recipients
    def list_recipients(self, chatbot_id: int) -> List[EmailRecipient]: ...

    def add_recipient(self, chatbot_id: int, email: str) -> EmailRecipient: ...

    def delete_recipient(self, recipient_id: int) -> bool: ...

    def list_project_recipients(self, project_id: int) -> List[ProjectEmailRecipient]: ...

    def add_project_recipient(self, project_id: int, email: str) -> ProjectEmailRecipient: ...

    def delete_project_recipient(self, recipient_id: int) -> bool: ...

    # settings
    def get_settings(self) -> Settings: ...

    def update_settings(self, **fields: Any) -> Settings: ...


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def derive_initial(display_name: str) -> str:
    name = (display_name or "").strip()
    return name[:1].upper() if name else "?"


def new_public_token(exists: Callable[[str], bool], attempts: int = 5) -> str:
    """Return a fresh 12 character URL-safe token that ``exists`` rejects.

    Falls back to a uuid4 hex string after ``attempts`` collisions.
    """
    for _ in range(attempts):
        token = secrets.token_urlsafe(9)
        if not exists(token):
            return token
    logger.warning("public_token_collisions attempts=%s; using uuid4", attempts)
    return uuid.uuid4().hex


@dataclass
class _Tables:
    users: Dict[int, UserAccount]
    projects: Dict[int, Project]
    chatbots: Dict[int, Chatbot]
    asana_links: Dict[int, ChatbotAsanaProject]
    documents: Dict[int, Document]
    messages: Dict[int, Message]
    summaries: Dict[int, Summary]
    project_summaries: Dict[int, ProjectSummary]
    recipients: Dict[int, EmailRecipient]
    project_recipients: Dict[int, ProjectEmailRecipient]


class InMemoryStorage:
    kind = "memory"

    def __init__(self) -> None:
        self._t = _Tables({}, {}, {}, {}, {}, {}, {}, {}, {}, {})
        self._seq: Dict[str, int] = {}
        self._settings = Settings(updated_at=now_iso())
        self._lock = RLock()

    def _next_id(self, table: str) -> int:
        self._seq[table] = self._seq.get(table, 0) + 1
        return self._seq[table]

    # users
    def get_user(self, user_id: int) -> Optional[UserAccount]:
        with self._lock:
            return self._t.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[UserAccount]:
        with self._lock:
            for user in self._t.users.values():
                if user.username == username:
                    return user
            return None

    def list_users(self) -> List[UserAccount]:
        with self._lock:
            return sorted(self._t.users.values(), key=lambda u: u.id)

    def create_user(self, username: str, password_hash: str, display_name: str, role: str = "user") -> UserAccount:
        with self._lock:
            if self.get_user_by_username(username):
                raise ValueError("Username already exists")
            user = UserAccount(
                id=self._next_id("users"),
                username=username,
                display_name=display_name,
                initial=derive_initial(display_name),
                role=role,
                created_at=now_iso(),
                password_hash=password_hash,
            )
            self._t.users[user.id] = user
            return user

    def update_user(self, user_id: int, **fields: Any) -> UserAccount:
        with self._lock:
            user = self._t.users.get(user_id)
            if not user:
                raise KeyError("User not found")
            if "display_name" in fields:
                fields["initial"] = derive_initial(fields["display_name"])
            user = user.model_copy(update=fields)
            self._t.users[user_id] = user
            return user

    def delete_user(self, user_id: int) -> bool:
        with self._lock:
            return self._t.users.pop(user_id, None) is not None

    # projects
    def list_projects(self) -> List[Project]:
        with self._lock:
            return sorted(self._t.projects.values(), key=lambda p: p.id)

    def get_project(self, project_id: int) -> Optional[Project]:
        with self._lock:
            return self._t.projects.get(project_id)

    def create_project(self, data: ProjectCreate) -> Project:
        with self._lock:
            project = Project(id=self._next_id("projects"), created_at=now_iso(), **data.model_dump())
            self._t.projects[project.id] = project
            return project

    def update_project(self, project_id: int, **fields: Any) -> Project:
        with self._lock:
            project = self._t.projects.get(project_id)
            if not project:
                raise KeyError("Project not found")
            project = project.model_copy(update=fields)
            self._t.projects[project_id] = project
            return project

    def delete_project(self, project_id: int) -> bool:
        with self._lock:
            if self._t.projects.pop(project_id, None) is None:
                return False
            for bot in list(self._t.chatbots.values()):
                if bot.project_id == project_id:
                    self._t.chatbots[bot.id] = bot.model_copy(update={"project_id": None})
            self._drop_where(self._t.project_summaries, lambda r: r.project_id == project_id)
            self._drop_where(self._t.project_recipients, lambda r: r.project_id == project_id)
            return True

    def list_project_chatbots(self, project_id: int) -> List[Chatbot]:
        with self._lock:
            return [b for b in self.list_chatbots() if b.project_id == project_id]

    # chatbots
    def list_chatbots(self) -> List[Chatbot]:
        with self._lock:
            return sorted(self._t.chatbots.values(), key=lambda b: b.id)

    def get_chatbot(self, chatbot_id: int) -> Optional[Chatbot]:
        with self._lock:
            return self._t.chatbots.get(chatbot_id)

    def get_chatbot_by_token(self, token: str) -> Optional[Chatbot]:
        with self._lock:
            for bot in self._t.chatbots.values():
                if bot.public_token == token:
                    return bot
            return None

    def create_chatbot(self, data: ChatbotCreate, created_by_id: int, public_token: str) -> Chatbot:
        with self._lock:
            if self.get_chatbot_by_token(public_token):
                raise ValueError("Public token already in use")
            bot = Chatbot(
                id=self._next_id("chatbots"),
                public_token=public_token,
                created_by_id=created_by_id,
                created_at=now_iso(),
                **data.model_dump(),
            )
            self._t.chatbots[bot.id] = bot
            return bot

    def update_chatbot(self, chatbot_id: int, **fields: Any) -> Chatbot:
        with self._lock:
            bot = self._t.chatbots.get(chatbot_id)
            if not bot:
                raise KeyError("Chatbot not found")
            bot = bot.model_copy(update=fields)
            self._t.chatbots[chatbot_id] = bot
            return bot

    def delete_chatbot(self, chatbot_id: int) -> bool:
        with self._lock:
            if self._t.chatbots.pop(chatbot_id, None) is None:
                return False
            for table in (
                self._t.asana_links,
                self._t.documents,
                self._t.messages,
                self._t.summaries,
                self._t.recipients,
            ):
                self._drop_where(table, lambda r: r.chatbot_id == chatbot_id)
            return True

    def list_asana_links(self, chatbot_id: int) -> List[ChatbotAsanaProject]:
        with self._lock:
            return [r for r in self._sorted(self._t.asana_links) if r.chatbot_id == chatbot_id]

    def add_asana_link(self, chatbot_id: int, data: ChatbotAsanaProjectCreate) -> ChatbotAsanaProject:
        with self._lock:
            link = ChatbotAsanaProject(
                id=self._next_id("asana_links"),
                chatbot_id=chatbot_id,
                created_at=now_iso(),
                **data.model_dump(),
            )
            self._t.asana_links[link.id] = link
            return link

    def delete_asana_link(self, link_id: int) -> bool:
        with self._lock:
            return self._t.asana_links.pop(link_id, None) is not None

    # documents
    def list_documents(self, chatbot_id: int) -> List[Document]:
        with self._lock:
            return [d for d in self._sorted(self._t.documents) if d.chatbot_id == chatbot_id]

    def get_document(self, document_id: int) -> Optional[Document]:
        with self._lock:
            return self._t.documents.get(document_id)

    def create_document(
        self,
        chatbot_id: int,
        original_name: str,
        file_type: str,
        content: str,
        uploaded_by_id: Optional[int] = None,
    ) -> Document:
        with self._lock:
            doc = Document(
                id=self._next_id("documents"),
                chatbot_id=chatbot_id,
                original_name=original_name,
                file_type=file_type,
                content=content,
                uploaded_by_id=uploaded_by_id,
                created_at=now_iso(),
            )
            self._t.documents[doc.id] = doc
            return doc

    def delete_document(self, document_id: int) -> bool:
        with self._lock:
            return self._t.documents.pop(document_id, None) is not None

    # messages
    def list_messages(self, chatbot_id: int, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            rows = [m for m in self._sorted(self._t.messages) if m.chatbot_id == chatbot_id]
            if limit is not None:
                rows = rows[-limit:] if limit > 0 else []
            return rows

    def list_messages_between(self, chatbot_id: int, start: datetime, end: datetime) -> List[Message]:
        with self._lock:
            return [
                m
                for m in self.list_messages(chatbot_id)
                if start <= parse_iso(m.created_at) <= end
            ]

    def count_messages(self, chatbot_id: int) -> int:
        with self._lock:
            return sum(1 for m in self._t.messages.values() if m.chatbot_id == chatbot_id)

    def create_message(
        self,
        chatbot_id: int,
        content: str,
        is_user_message: bool,
        user_id: Optional[int] = None,
        citation: Optional[str] = None,
    ) -> Message:
        with self._lock:
            if chatbot_id not in self._t.chatbots:
                raise KeyError("Chatbot not found")
            msg = Message(
                id=self._next_id("messages"),
                chatbot_id=chatbot_id,
                user_id=user_id,
                content=content,
                is_user_message=is_user_message,
                citation=citation,
                created_at=now_iso(),
            )
            self._t.messages[msg.id] = msg
            return msg

    def clear_messages(self, chatbot_id: int) -> int:
        with self._lock:
            return self._drop_where(self._t.messages, lambda r: r.chatbot_id == chatbot_id)

    # summaries
    def list_summaries(self, chatbot_id: int) -> List[Summary]:
        with self._lock:
            rows = [s for s in self._sorted(self._t.summaries) if s.chatbot_id == chatbot_id]
            return list(reversed(rows))

    def create_summary(self, chatbot_id: int, content: str, week: str) -> Summary:
        with self._lock:
            row = Summary(id=self._next_id("summaries"), chatbot_id=chatbot_id, content=content, week=week, sent_at=now_iso())
            self._t.summaries[row.id] = row
            return row

    def list_project_summaries(self, project_id: int) -> List[ProjectSummary]:
        with self._lock:
            rows = [s for s in self._sorted(self._t.project_summaries) if s.project_id == project_id]
            return list(reversed(rows))

    def create_project_summary(
        self, project_id: int, content: str, week: str, slack_channel_id: Optional[str] = None
    ) -> ProjectSummary:
        with self._lock:
            row = ProjectSummary(
                id=self._next_id("project_summaries"),
                project_id=project_id,
                content=content,
                week=week,
                slack_channel_id=slack_channel_id,
                sent_at=now_iso(),
            )
            self._t.project_summaries[row.id] = row
            return row

    # recipients
    def list_recipients(self, chatbot_id: int) -> List[EmailRecipient]:
        with self._lock:
            return [r for r in self._sorted(self._t.recipients) if r.chatbot_id == chatbot_id]

    def add_recipient(self, chatbot_id: int, email: str) -> EmailRecipient:
        with self._lock:
            row = EmailRecipient(id=self._next_id("recipients"), chatbot_id=chatbot_id, email=email)
            self._t.recipients[row.id] = row
            return row

    def delete_recipient(self, recipient_id: int) -> bool:
        with self._lock:
            return self._t.recipients.pop(recipient_id, None) is not None

    def list_project_recipients(self, project_id: int) -> List[ProjectEmailRecipient]:
        with self._lock:
            return [r for r in self._sorted(self._t.project_recipients) if r.project_id == project_id]

    def add_project_recipient(self, project_id: int, email: str) -> ProjectEmailRecipient:
        with self._lock:
            row = ProjectEmailRecipient(id=self._next_id("project_recipients"), project_id=project_id, email=email)
            self._t.project_recipients[row.id] = row
            return row

    def delete_project_recipient(self, recipient_id: int) -> bool:
        with self._lock:
            return self._t.project_recipients.pop(recipient_id, None) is not None

    # settings
    def get_settings(self) -> Settings:
        with self._lock:
            return self._settings

    def update_settings(self, **fields: Any) -> Settings:
        with self._lock:
            fields["updated_at"] = now_iso()
            self._settings = self._settings.model_copy(update=fields)
            return self._settings

    @staticmethod
    def _sorted(table: Dict[int, Any]) -> List[Any]:
        return [table[k] for k in sorted(table)]

    @staticmethod
    def _drop_where(table: Dict[int, Any], predicate: Callable[[Any], bool]) -> int:
        doomed = [k for k, row in table.items() if predicate(row)]
        for k in doomed:
            del table[k]
        return len(doomed)


_storage: Optional[Storage] = None


def get_storage() -> Storage:
    """Return the process-wide storage, chosen once from PROJECTBOT_STORAGE_IMPL."""
    global _storage
    if _storage is not None:
        return _storage
    impl = os.getenv("PROJECTBOT_STORAGE_IMPL", "memory").lower()
    if impl == "sql":
        from .storage_sql import SqlStorage

        _storage = SqlStorage(os.getenv("PROJECTBOT_DATABASE_URL", "sqlite:///./projectbot.db"))
    else:
        _storage = InMemoryStorage()
    logger.info("storage_selected kind=%s", _storage.kind)
    return _storage
