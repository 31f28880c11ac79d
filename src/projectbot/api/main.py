from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
import os

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .. import __version__
from ..infrastructure.storage import get_storage
from ..observability.metrics import metrics_middleware_factory
from ..security.auth import ensure_admin_user
from ..services import llm as llm_service
from ..services.scheduler import get_scheduler
from ..services.slack_client import get_slack_client
from .routers.auth import router as auth_router
from .routers.chat import router as chat_router
from .routers.chatbots import router as chatbots_router
from .routers.projects import recipients_router as project_recipients_router
from .routers.projects import router as projects_router
from .routers.settings import router as settings_router
from .routers.system import router as system_router
from .routers.users import router as users_router

load_dotenv()  # provider keys and JWT_SECRET for local runs

logger = logging.getLogger("projectbot.api")

APP_NAME = "Project Chatbot API"
APP_VERSION = __version__


def _scheduler_enabled() -> bool:
    return os.getenv("PROJECTBOT_ENABLE_SCHEDULER", "0").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = get_storage()
    ensure_admin_user(storage)
    scheduler = get_scheduler()
    if _scheduler_enabled():
        scheduler.start(storage.get_settings())
    yield
    scheduler.stop_all()


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

for router in (
    auth_router,
    chatbots_router,
    chat_router,
    projects_router,
    project_recipients_router,
    settings_router,
    users_router,
    system_router,
):
    app.include_router(router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("PROJECTBOT_CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Access-Token"],
)


def health_payload() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "storage": get_storage().kind,
            "model": "configured" if llm_service.model_configured() else "missing",
            "slack": "configured" if get_slack_client().configured else "missing",
            "scheduler": "running" if get_scheduler().running else "stopped",
        },
    }


def metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


# Served both at the root and under /api
ops = APIRouter(tags=["ops"])
ops.add_api_route("/health", health_payload, methods=["GET"])
ops.add_api_route("/metrics", metrics_response, methods=["GET"])
app.include_router(ops)
app.include_router(ops, prefix="/api")


@app.get("/")
def root():
    return {"name": APP_NAME, "version": APP_VERSION}
