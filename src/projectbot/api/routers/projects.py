from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import (
    Chatbot,
    Project,
    ProjectCreate,
    ProjectEmailRecipient,
    ProjectSummary,
    ProjectUpdate,
    RecipientCreate,
    Settings,
    SummaryPeriod,
    SummaryResult,
    UserAccount,
)
from ...infrastructure.storage import Storage, get_storage
from ...security.rbac import Permission, require_permission
from ...services.summaries import (
    NoChatbotsError,
    ProjectNotFoundError,
    SummaryGenerationError,
    generate_project_summary,
)
from ..deps import get_settings, require_chatbot, require_project


logger = logging.getLogger("projectbot.api.projects")

router = APIRouter(prefix="/projects", tags=["projects"])

read_access = require_permission(Permission.PROJECT_READ)
write_access = require_permission(Permission.PROJECT_WRITE)


@router.get("", response_model=List[Project])
def list_projects(storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> List[Project]:
    return storage.list_projects()


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Project:
    return storage.create_project(payload)


@router.get("/{project_id}", response_model=Project)
def get_project(project_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> Project:
    return require_project(storage, project_id)


@router.patch("/{project_id}", response_model=Project)
def update_project(
    project_id: int,
    payload: ProjectUpdate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> Project:
    require_project(storage, project_id)
    return storage.update_project(project_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)) -> Response:
    if not storage.delete_project(project_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/chatbots", response_model=List[Chatbot])
def list_project_chatbots(project_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)) -> List[Chatbot]:
    require_project(storage, project_id)
    return storage.list_project_chatbots(project_id)


@router.post("/{project_id}/chatbots/{chatbot_id}", response_model=Chatbot)
def attach_chatbot(
    project_id: int, chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)
) -> Chatbot:
    require_project(storage, project_id)
    require_chatbot(storage, chatbot_id)
    return storage.update_chatbot(chatbot_id, project_id=project_id)


@router.delete("/{project_id}/chatbots/{chatbot_id}", response_model=Chatbot)
def detach_chatbot(
    project_id: int, chatbot_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)
) -> Chatbot:
    require_project(storage, project_id)
    chatbot = require_chatbot(storage, chatbot_id)
    if chatbot.project_id != project_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Chatbot is not part of this project")
    return storage.update_chatbot(chatbot_id, project_id=None)


@router.get("/{project_id}/recipients", response_model=List[ProjectEmailRecipient])
def list_project_recipients(
    project_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)
) -> List[ProjectEmailRecipient]:
    require_project(storage, project_id)
    return storage.list_project_recipients(project_id)


@router.post("/{project_id}/recipients", response_model=ProjectEmailRecipient, status_code=status.HTTP_201_CREATED)
def add_project_recipient(
    project_id: int,
    payload: RecipientCreate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(write_access),
) -> ProjectEmailRecipient:
    require_project(storage, project_id)
    return storage.add_project_recipient(project_id, str(payload.email))


@router.get("/{project_id}/summaries", response_model=List[ProjectSummary])
def list_project_summaries(
    project_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(read_access)
) -> List[ProjectSummary]:
    require_project(storage, project_id)
    return storage.list_project_summaries(project_id)


@router.post("/{project_id}/summaries/{period}", response_model=SummaryResult)
def generate_summary(
    project_id: int,
    period: SummaryPeriod,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: UserAccount = Depends(write_access),
) -> SummaryResult:
    project = require_project(storage, project_id)
    try:
        return generate_project_summary(
            storage, project_id, period, settings, slack_channel_id=project.slack_channel_id
        )
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found") from exc
    except NoChatbotsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SummaryGenerationError as exc:
        logger.error("Project summary failed for %s (%s): %s", project_id, period, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to generate summary") from exc


recipients_router = APIRouter(tags=["projects"])


@recipients_router.delete("/project-recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project_recipient(
    recipient_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(write_access)
) -> Response:
    if not storage.delete_project_recipient(recipient_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
