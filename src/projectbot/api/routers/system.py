from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from ...domain.models import Settings, UserAccount
from ...security.rbac import Permission, require_permission
from ...services import llm as llm_service
from ...services.slack_client import get_slack_client
from ..deps import get_settings


logger = logging.getLogger("projectbot.api.system")

router = APIRouter(prefix="/system", tags=["system"])

read_access = require_permission(Permission.CHATBOT_READ)


@router.get("/test-openai")
def test_openai(settings: Settings = Depends(get_settings), user: UserAccount = Depends(read_access)) -> Dict[str, Any]:
    model = llm_service.resolve_model(settings)
    try:
        reply = llm_service.complete(
            [{"role": "user", "content": "Reply with the single word OK."}], settings, temperature=0
        )
    except Exception as exc:
        logger.warning("openai_connection_test_failed model=%s err=%s", model, exc)
        return {"success": False, "model": model, "message": str(exc)}
    return {"success": True, "model": model, "message": reply.strip()}


@router.get("/test-slack")
def test_slack(user: UserAccount = Depends(read_access)) -> Dict[str, Any]:
    return get_slack_client().test_connection()


@router.get("/validate-slack-channel")
def validate_slack_channel(channel_id: str = Query(...), user: UserAccount = Depends(read_access)) -> Dict[str, Any]:
    return get_slack_client().validate_channel(channel_id)


@router.get("/slack-channels")
def slack_channels(user: UserAccount = Depends(read_access)) -> List[Dict[str, Any]]:
    slack = get_slack_client()
    if not slack.configured:
        return []
    return slack.list_channels()
