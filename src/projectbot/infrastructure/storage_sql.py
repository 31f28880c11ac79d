"""
Relational storage implementation using SQLAlchemy.

Implements the same contract as ``InMemoryStorage``; rows are converted to the
pydantic domain models at the session boundary so callers never see ORM
objects.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator, List, Optional
import logging

from sqlalchemy import create_engine, func
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
from .sql_models import (
    Base,
    ChatbotAsanaProjectRow,
    ChatbotRow,
    DocumentRow,
    EmailRecipientRow,
    MessageRow,
    ProjectEmailRecipientRow,
    ProjectRow,
    ProjectSummaryRow,
    SettingsRow,
    SummaryRow,
    UserRow,
)
from .storage import derive_initial


logger = logging.getLogger("projectbot.storage")

_SETTINGS_FIELDS = tuple(name for name in Settings.model_fields if name != "updated_at")


def _iso(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _user(row: UserRow) -> UserAccount:
    return UserAccount(
        id=row.id,
        username=row.username,
        display_name=row.display_name,
        initial=row.initial,
        role=row.role,
        created_at=_iso(row.created_at),
        password_hash=row.password,
    )


def _project(row: ProjectRow) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        slack_channel_id=row.slack_channel_id,
        created_at=_iso(row.created_at),
    )


def _chatbot(row: ChatbotRow) -> Chatbot:
    return Chatbot(
        id=row.id,
        name=row.name,
        slack_channel_id=row.slack_channel_id or "",
        public_token=row.public_token,
        is_active=bool(row.is_active),
        require_auth=bool(row.require_auth),
        project_id=row.project_id,
        asana_project_id=row.asana_project_id,
        system_prompt=row.system_prompt,
        output_format=row.output_format,
        created_by_id=row.created_by_id,
        created_at=_iso(row.created_at),
    )


def _asana_link(row: ChatbotAsanaProjectRow) -> ChatbotAsanaProject:
    return ChatbotAsanaProject(
        id=row.id,
        chatbot_id=row.chatbot_id,
        asana_project_id=row.asana_project_id,
        project_name=row.project_name,
        project_type=row.project_type,
        created_at=_iso(row.created_at),
    )


def _document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        chatbot_id=row.chatbot_id,
        original_name=row.original_name,
        file_type=row.file_type,
        content=row.content or "",
        uploaded_by_id=row.uploaded_by_id,
        created_at=_iso(row.created_at),
    )


def _message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        chatbot_id=row.chatbot_id,
        user_id=row.user_id,
        content=row.content,
        is_user_message=bool(row.is_user_message),
        citation=row.citation,
        created_at=_iso(row.created_at),
    )


def _summary(row: SummaryRow) -> Summary:
    return Summary(id=row.id, chatbot_id=row.chatbot_id, content=row.content, week=row.week, sent_at=_iso(row.sent_at))


def _project_summary(row: ProjectSummaryRow) -> ProjectSummary:
    return ProjectSummary(
        id=row.id,
        project_id=row.project_id,
        content=row.content,
        week=row.week,
        slack_channel_id=row.slack_channel_id,
        sent_at=_iso(row.sent_at),
    )


def _settings(row: SettingsRow) -> Settings:
    values = {name: getattr(row, name) for name in _SETTINGS_FIELDS}
    values["project_schedules"] = dict(row.project_schedules or {})
    return Settings(updated_at=_iso(row.updated_at), **values)


class SqlStorage:
    kind = "sql"

    def __init__(self, database_url: str) -> None:
        if database_url.startswith("sqlite"):
            self._engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=False,
            )
        else:
            self._engine = create_engine(database_url, pool_pre_ping=True)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        Base.metadata.create_all(bind=self._engine)
        logger.info("sql_storage_ready dialect=%s", self._engine.dialect.name)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _require(db: Session, model: Any, row_id: int, label: str) -> Any:
        row = db.get(model, row_id)
        if row is None:
            raise KeyError(f"{label} not found")
        return row

    @staticmethod
    def _delete(db: Session, model: Any, row_id: int) -> bool:
        row = db.get(model, row_id)
        if row is None:
            return False
        db.delete(row)
        return True

    # users
    def get_user(self, user_id: int) -> Optional[UserAccount]:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            return _user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[UserAccount]:
        with self._session() as db:
            row = db.query(UserRow).filter(UserRow.username == username).first()
            return _user(row) if row else None

    def list_users(self) -> List[UserAccount]:
        with self._session() as db:
            return [_user(r) for r in db.query(UserRow).order_by(UserRow.id).all()]

    def create_user(self, username: str, password_hash: str, display_name: str, role: str = "user") -> UserAccount:
        with self._session() as db:
            if db.query(UserRow).filter(UserRow.username == username).first():
                raise ValueError("Username already exists")
            row = UserRow(
                username=username,
                password=password_hash,
                display_name=display_name,
                initial=derive_initial(display_name),
                role=role,
            )
            db.add(row)
            db.flush()
            return _user(row)

    def update_user(self, user_id: int, **fields: Any) -> UserAccount:
        with self._session() as db:
            row = self._require(db, UserRow, user_id, "User")
            if "password_hash" in fields:
                row.password = fields.pop("password_hash")
            if "display_name" in fields:
                row.initial = derive_initial(fields["display_name"])
            for key, value in fields.items():
                setattr(row, key, value)
            db.flush()
            return _user(row)

    def delete_user(self, user_id: int) -> bool:
        with self._session() as db:
            return self._delete(db, UserRow, user_id)

    # projects
    def list_projects(self) -> List[Project]:
        with self._session() as db:
            return [_project(r) for r in db.query(ProjectRow).order_by(ProjectRow.id).all()]

    def get_project(self, project_id: int) -> Optional[Project]:
        with self._session() as db:
            row = db.get(ProjectRow, project_id)
            return _project(row) if row else None

    def create_project(self, data: ProjectCreate) -> Project:
        with self._session() as db:
            row = ProjectRow(**data.model_dump())
            db.add(row)
            db.flush()
            return _project(row)

    def update_project(self, project_id: int, **fields: Any) -> Project:
        with self._session() as db:
            row = self._require(db, ProjectRow, project_id, "Project")
            for key, value in fields.items():
                setattr(row, key, value)
            db.flush()
            return _project(row)

    def delete_project(self, project_id: int) -> bool:
        with self._session() as db:
            if db.get(ProjectRow, project_id) is None:
                return False
            db.query(ChatbotRow).filter(ChatbotRow.project_id == project_id).update({ChatbotRow.project_id: None})
            db.query(ProjectSummaryRow).filter(ProjectSummaryRow.project_id == project_id).delete()
            db.query(ProjectEmailRecipientRow).filter(ProjectEmailRecipientRow.project_id == project_id).delete()
            return self._delete(db, ProjectRow, project_id)

    def list_project_chatbots(self, project_id: int) -> List[Chatbot]:
        with self._session() as db:
            rows = db.query(ChatbotRow).filter(ChatbotRow.project_id == project_id).order_by(ChatbotRow.id).all()
            return [_chatbot(r) for r in rows]

    # chatbots
    def list_chatbots(self) -> List[Chatbot]:
        with self._session() as db:
            return [_chatbot(r) for r in db.query(ChatbotRow).order_by(ChatbotRow.id).all()]

    def get_chatbot(self, chatbot_id: int) -> Optional[Chatbot]:
        with self._session() as db:
            row = db.get(ChatbotRow, chatbot_id)
            return _chatbot(row) if row else None

    def get_chatbot_by_token(self, token: str) -> Optional[Chatbot]:
        with self._session() as db:
            row = db.query(ChatbotRow).filter(ChatbotRow.public_token == token).first()
            return _chatbot(row) if row else None

    def create_chatbot(self, data: ChatbotCreate, created_by_id: int, public_token: str) -> Chatbot:
        with self._session() as db:
            if db.query(ChatbotRow).filter(ChatbotRow.public_token == public_token).first():
                raise ValueError("Public token already in use")
            row = ChatbotRow(public_token=public_token, created_by_id=created_by_id, **data.model_dump())
            db.add(row)
            db.flush()
            return _chatbot(row)

    def update_chatbot(self, chatbot_id: int, **fields: Any) -> Chatbot:
        with self._session() as db:
            row = self._require(db, ChatbotRow, chatbot_id, "Chatbot")
            for key, value in fields.items():
                setattr(row, key, value)
            db.flush()
            return _chatbot(row)

    def delete_chatbot(self, chatbot_id: int) -> bool:
        with self._session() as db:
            if db.get(ChatbotRow, chatbot_id) is None:
                return False
            for model in (ChatbotAsanaProjectRow, DocumentRow, MessageRow, SummaryRow, EmailRecipientRow):
                db.query(model).filter(model.chatbot_id == chatbot_id).delete()
            return self._delete(db, ChatbotRow, chatbot_id)

    def list_asana_links(self, chatbot_id: int) -> List[ChatbotAsanaProject]:
        with self._session() as db:
            rows = (
                db.query(ChatbotAsanaProjectRow)
                .filter(ChatbotAsanaProjectRow.chatbot_id == chatbot_id)
                .order_by(ChatbotAsanaProjectRow.id)
                .all()
            )
            return [_asana_link(r) for r in rows]

    def add_asana_link(self, chatbot_id: int, data: ChatbotAsanaProjectCreate) -> ChatbotAsanaProject:
        with self._session() as db:
            row = ChatbotAsanaProjectRow(chatbot_id=chatbot_id, **data.model_dump())
            db.add(row)
            db.flush()
            return _asana_link(row)

    def delete_asana_link(self, link_id: int) -> bool:
        with self._session() as db:
            return self._delete(db, ChatbotAsanaProjectRow, link_id)

    # documents
    def list_documents(self, chatbot_id: int) -> List[Document]:
        with self._session() as db:
            rows = db.query(DocumentRow).filter(DocumentRow.chatbot_id == chatbot_id).order_by(DocumentRow.id).all()
            return [_document(r) for r in rows]

    def get_document(self, document_id: int) -> Optional[Document]:
        with self._session() as db:
            row = db.get(DocumentRow, document_id)
            return _document(row) if row else None

    def create_document(
        self,
        chatbot_id: int,
        original_name: str,
        file_type: str,
        content: str,
        uploaded_by_id: Optional[int] = None,
    ) -> Document:
        with self._session() as db:
            row = DocumentRow(
                chatbot_id=chatbot_id,
                original_name=original_name,
                file_type=file_type,
                content=content,
                uploaded_by_id=uploaded_by_id,
            )
            db.add(row)
            db.flush()
            return _document(row)

    def delete_document(self, document_id: int) -> bool:
        with self._session() as db:
            return self._delete(db, DocumentRow, document_id)

    # messages
    def list_messages(self, chatbot_id: int, limit: Optional[int] = None) -> List[Message]:
        with self._session() as db:
            query = db.query(MessageRow).filter(MessageRow.chatbot_id == chatbot_id)
            if limit is not None:
                rows = query.order_by(MessageRow.created_at.desc(), MessageRow.id.desc()).limit(max(limit, 0)).all()
                rows.reverse()
            else:
                rows = query.order_by(MessageRow.created_at, MessageRow.id).all()
            return [_message(r) for r in rows]

    def list_messages_between(self, chatbot_id: int, start: datetime, end: datetime) -> List[Message]:
        with self._session() as db:
            rows = (
                db.query(MessageRow)
                .filter(
                    MessageRow.chatbot_id == chatbot_id,
                    MessageRow.created_at >= _naive_utc(start),
                    MessageRow.created_at <= _naive_utc(end),
                )
                .order_by(MessageRow.created_at, MessageRow.id)
                .all()
            )
            return [_message(r) for r in rows]

    def count_messages(self, chatbot_id: int) -> int:
        with self._session() as db:
            return int(db.query(func.count(MessageRow.id)).filter(MessageRow.chatbot_id == chatbot_id).scalar() or 0)

    def create_message(
        self,
        chatbot_id: int,
        content: str,
        is_user_message: bool,
        user_id: Optional[int] = None,
        citation: Optional[str] = None,
    ) -> Message:
        with self._session() as db:
            self._require(db, ChatbotRow, chatbot_id, "Chatbot")
            row = MessageRow(
                chatbot_id=chatbot_id,
                user_id=user_id,
                content=content,
                is_user_message=is_user_message,
                citation=citation,
            )
            db.add(row)
            db.flush()
            return _message(row)

    def clear_messages(self, chatbot_id: int) -> int:
        with self._session() as db:
            return db.query(MessageRow).filter(MessageRow.chatbot_id == chatbot_id).delete()

    # summaries
    def list_summaries(self, chatbot_id: int) -> List[Summary]:
        with self._session() as db:
            rows = db.query(SummaryRow).filter(SummaryRow.chatbot_id == chatbot_id).order_by(SummaryRow.id.desc()).all()
            return [_summary(r) for r in rows]

    def create_summary(self, chatbot_id: int, content: str, week: str) -> Summary:
        with self._session() as db:
            row = SummaryRow(chatbot_id=chatbot_id, content=content, week=week)
            db.add(row)
            db.flush()
            return _summary(row)

    def list_project_summaries(self, project_id: int) -> List[ProjectSummary]:
        with self._session() as db:
            rows = (
                db.query(ProjectSummaryRow)
                .filter(ProjectSummaryRow.project_id == project_id)
                .order_by(ProjectSummaryRow.id.desc())
                .all()
            )
            return [_project_summary(r) for r in rows]

    def create_project_summary(
        self, project_id: int, content: str, week: str, slack_channel_id: Optional[str] = None
    ) -> ProjectSummary:
        with self._session() as db:
            row = ProjectSummaryRow(project_id=project_id, content=content, week=week, slack_channel_id=slack_channel_id)
            db.add(row)
            db.flush()
            return _project_summary(row)

    # recipients
    def list_recipients(self, chatbot_id: int) -> List[EmailRecipient]:
        with self._session() as db:
            rows = db.query(EmailRecipientRow).filter(EmailRecipientRow.chatbot_id == chatbot_id).order_by(EmailRecipientRow.id).all()
            return [EmailRecipient(id=r.id, chatbot_id=r.chatbot_id, email=r.email) for r in rows]

    def add_recipient(self, chatbot_id: int, email: str) -> EmailRecipient:
        with self._session() as db:
            row = EmailRecipientRow(chatbot_id=chatbot_id, email=email)
            db.add(row)
            db.flush()
            return EmailRecipient(id=row.id, chatbot_id=row.chatbot_id, email=row.email)

    def delete_recipient(self, recipient_id: int) -> bool:
        with self._session() as db:
            return self._delete(db, EmailRecipientRow, recipient_id)

    def list_project_recipients(self, project_id: int) -> List[ProjectEmailRecipient]:
        with self._session() as db:
            rows = (
                db.query(ProjectEmailRecipientRow)
                .filter(ProjectEmailRecipientRow.project_id == project_id)
                .order_by(ProjectEmailRecipientRow.id)
                .all()
            )
            return [ProjectEmailRecipient(id=r.id, project_id=r.project_id, email=r.email) for r in rows]

    def add_project_recipient(self, project_id: int, email: str) -> ProjectEmailRecipient:
        with self._session() as db:
            row = ProjectEmailRecipientRow(project_id=project_id, email=email)
            db.add(row)
            db.flush()
            return ProjectEmailRecipient(id=row.id, project_id=row.project_id, email=row.email)

    def delete_project_recipient(self, recipient_id: int) -> bool:
        with self._session() as db:
            return self._delete(db, ProjectEmailRecipientRow, recipient_id)

    # settings
    def _settings_row(self, db: Session) -> SettingsRow:
        row = db.query(SettingsRow).order_by(SettingsRow.id).first()
        if row is None:
            row = SettingsRow(project_schedules={})
            db.add(row)
            db.flush()
        return row

    def get_settings(self) -> Settings:
        with self._session() as db:
            return _settings(self._settings_row(db))

    def update_settings(self, **fields: Any) -> Settings:
        with self._session() as db:
            row = self._settings_row(db)
            for key, value in fields.items():
                if key in _SETTINGS_FIELDS:
                    setattr(row, key, value)
            db.flush()
            return _settings(row)
