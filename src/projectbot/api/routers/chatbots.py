from __future__ import annotations

import logging
from typing import List, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from ...domain.models import (
    Chatbot,
    ChatbotAsanaProject,
    ChatbotAsanaProjectCreate,
    ChatbotCreate,
    ChatbotSummaryResult,
    ChatbotUpdate,
    Document,
    EmailRecipient,
    RecipientCreate,
    Settings,
    Summary,
    UserAccount,
)
from ...infrastructure.storage import Storage, get_storage, new_public_token
from ...security.rbac import Permission, require_permission
from ...services.context_assembler import clear_document_cache
from ...services.doc_ingest import UnsupportedDocumentError, extract_chunks, join_chunks
from ...services.summaries import NoActivityError, SummaryError, generate_chatbot_summary
from ..deps import get_settings, require_chatbot


logger = logging.getLogger("projectbot.api.chatbots")

router = APIRouter(tags=["chatbots"])

read_access = require_permission(Permission.CHATBOT_READ)
write_access = require_permission(Permission.CHATBOT_WRITE)


def _fresh_token(storage: Storage) -> str:
    return new_public_token(lambda t: storage.get_chatbot_by_token(t) is not None)


@router.get("/chatbots", response_model=List[Chatbot])
def list_chatbots(storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> List[Chatbot]:
    return storage.list_chatbots()


@router.post("/chatbots", response_model=Chatbot, status_code=status.HTTP_201_CREATED)
def create_chatbot(
    payload: ChatbotCreate, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)
) -> Chatbot:
    if payload.project_id is not None and storage.get_project(payload.project_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project not found")
    chatbot = storage.create_chatbot(payload, created_by_id=user.id, public_token=_fresh_token(storage))
    logger.info("chatbot_created id=%s by=%s", chatbot.id, user.id)
    return chatbot


@router.get("/chatbots/{chatbot_id}", response_model=Chatbot)
def get_chatbot(chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> Chatbot:
    return require_chatbot(storage, chatbot_id)


@router.patch("/chatbots/{chatbot_id}", response_model=Chatbot)
def update_chatbot(
    chatbot_id: int,
    payload: ChatbotUpdate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> Chatbot:
    require_chatbot(storage, chatbot_id)
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("project_id") is not None and storage.get_project(fields["project_id"]) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project not found")
    return storage.update_chatbot(chatbot_id, **fields)


@router.delete("/chatbots/{chatbot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chatbot(chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Response:
    if not storage.delete_chatbot(chatbot_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbot not found")
    clear_document_cache(chatbot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/chatbots/{chatbot_id}/regenerate-token", response_model=Chatbot)
def regenerate_token(chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Chatbot:
    require_chatbot(storage, chatbot_id)
    return storage.update_chatbot(chatbot_id, public_token=_fresh_token(storage))


# Asana links
@router.get("/chatbots/{chatbot_id}/asana-projects", response_model=List[ChatbotAsanaProject])
def list_asana_projects(
    chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)
) -> List[ChatbotAsanaProject]:
    require_chatbot(storage, chatbot_id)
    return storage.list_asana_links(chatbot_id)


@router.post("/chatbots/{chatbot_id}/asana-projects", response_model=ChatbotAsanaProject, status_code=status.HTTP_201_CREATED)
def add_asana_project(
    chatbot_id: int,
    payload: ChatbotAsanaProjectCreate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> ChatbotAsanaProject:
    require_chatbot(storage, chatbot_id)
    if any(link.asana_project_id == payload.asana_project_id for link in storage.list_asana_links(chatbot_id)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Asana project already linked")
    return storage.add_asana_link(chatbot_id, payload)


@router.delete("/chatbots/{chatbot_id}/asana-projects/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_asana_project(
    chatbot_id: int, link_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)
) -> Response:
    require_chatbot(storage, chatbot_id)
    # link ids are global; only links of this chatbot may be removed through it
    owned = any(link.id == link_id for link in storage.list_asana_links(chatbot_id))
    if not owned or not storage.delete_asana_link(link_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asana link not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Documents
@router.get("/chatbots/{chatbot_id}/documents", response_model=List[Document])
def list_documents(chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> List[Document]:
    require_chatbot(storage, chatbot_id)
    return storage.list_documents(chatbot_id)


@router.post("/chatbots/{chatbot_id}/documents", response_model=List[Document], status_code=status.HTTP_201_CREATED)
async def upload_documents(
    chatbot_id: int,
    files: List[UploadFile] = File(...),
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> List[Document]:
    await run_in_threadpool(require_chatbot, storage, chatbot_id)
    # every file is parsed before any is stored, so a bad file stores nothing
    parsed: List[Tuple[str, str, List[str]]] = []
    for upload in files:
        data = await upload.read()
        name = upload.filename or "document"
        try:
            kind, chunks = await run_in_threadpool(extract_chunks, name, upload.content_type, data)
        except UnsupportedDocumentError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Failed to parse upload %s for chatbot %s", name, chatbot_id)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Could not read {name}") from exc
        parsed.append((name, kind, chunks))

    created: List[Document] = []
    try:
        for name, kind, chunks in parsed:
            doc = await run_in_threadpool(
                storage.create_document, chatbot_id, name, kind, join_chunks(chunks), uploaded_by_id=user.id
            )
            created.append(doc)
            logger.info("document_ingested chatbot=%s name=%s kind=%s chunks=%s", chatbot_id, name, kind, len(chunks))
    finally:
        clear_document_cache(chatbot_id)
    return created


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(document_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Response:
    doc = storage.get_document(document_id)
    if doc is None or not storage.delete_document(document_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    clear_document_cache(doc.chatbot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Recipients
@router.get("/chatbots/{chatbot_id}/recipients", response_model=List[EmailRecipient])
def list_recipients(
    chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)
) -> List[EmailRecipient]:
    require_chatbot(storage, chatbot_id)
    return storage.list_recipients(chatbot_id)


@router.post("/chatbots/{chatbot_id}/recipients", response_model=EmailRecipient, status_code=status.HTTP_201_CREATED)
def add_recipient(
    chatbot_id: int,
    payload: RecipientCreate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> EmailRecipient:
    require_chatbot(storage, chatbot_id)
    return storage.add_recipient(chatbot_id, str(payload.email))


@router.delete("/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recipient(recipient_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Response:
    if not storage.delete_recipient(recipient_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Summaries
@router.get("/chatbots/{chatbot_id}/summaries", response_model=List[Summary])
def list_summaries(chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> List[Summary]:
    require_chatbot(storage, chatbot_id)
    return storage.list_summaries(chatbot_id)


@router.post("/chatbots/{chatbot_id}/generate-summary", response_model=ChatbotSummaryResult)
def generate_summary(
    chatbot_id: int,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: UserAccount = Depends(write_access),
) -> ChatbotSummaryResult:
    chatbot = require_chatbot(storage, chatbot_id)
    try:
        return generate_chatbot_summary(storage, chatbot, settings)
    except NoActivityError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SummaryError as exc:
        logger.error("Chatbot summary failed for %s: %s", chatbot_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to generate summary") from exc
