from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ...domain.models import SchedulerStatus, Settings, SettingsUpdate, UserAccount
from ...infrastructure.storage import Storage, get_storage
from ...security.rbac import Permission, require_permission
from ...services.scheduler import get_scheduler
from ..deps import get_settings


logger = logging.getLogger("projectbot.api.settings")

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("", response_model=Settings)
def read_settings(
    settings: Settings = Depends(get_settings),
    user: UserAccount = Depends(require_permission(Permission.SETTINGS_READ)),
) -> Settings:
    return settings


@router.patch("", response_model=Settings)
def update_settings(
    payload: SettingsUpdate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(require_permission(Permission.SETTINGS_WRITE)),
) -> Settings:
    changes = payload.model_dump(exclude_unset=True)
    updated = storage.update_settings(**changes)
    logger.info("settings_updated by=%s fields=%s", user.id, sorted(changes))
    get_scheduler().reschedule(updated)
    return updated


@router.get("/scheduler", response_model=SchedulerStatus)
def scheduler_status(user: UserAccount = Depends(require_permission(Permission.SETTINGS_READ))) -> SchedulerStatus:
    return get_scheduler().status()
