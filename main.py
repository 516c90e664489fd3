import logging
import os
import secrets

from fastapi import FastAPI, Header, HTTPException, Request, Response, status
from fastapi.staticfiles import StaticFiles
from typing import List, Optional

import db
from app.errors import ValidationError, register_exception_handlers
from app.services.auth_state import AuthSnapshot, AuthStateTracker
from app.services.chat_session import SessionState, build_chat_session
from app.services.scheduler_loop import SchedulerLoop
from app.types.schedule_contract import (
    ChatGroup, GatewayEvent, ItemKind, LinkPostIn, ScheduledItemView, ScheduledResponse, StatusChangeIn,
)
from app.utils import qr
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
_LOGGER = logging.getLogger("main")

app = FastAPI(title="Chat Scheduler")
register_exception_handlers(app)

# Chat session, auth tracker and scheduler live on app.state

@app.on_event("startup")
async def startup_event():
    if settings.AUTO_CREATE_TABLES:
        await db.create_all()  # embedded DB; hosted DBs are migrated with Alembic

    session = build_chat_session()
    tracker = AuthStateTracker().attach(session)
    session.on_credential(qr.print_credential)
    app.state.session = session
    app.state.tracker = tracker
    await session.start()

    app.state.scheduler = None
    if settings.SCHEDULER_MODE == "inprocess":
        scheduler = SchedulerLoop(session, interval=settings.SCHEDULER_INTERVAL_SECONDS)
        await scheduler.start()
        app.state.scheduler = scheduler
    else:
        _LOGGER.info("SCHEDULER_MODE=%s: ticks run in the Celery beat worker", settings.SCHEDULER_MODE)

@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
    session = getattr(app.state, "session", None)
    if session is not None:
        await session.aclose()
    await db.dispose_engine()

# --------------------------------------------
# Schedules
# --------------------------------------------

@app.post("/schedules/link", response_model=ScheduledResponse, status_code=status.HTTP_201_CREATED)
async def schedule_link(body: LinkPostIn):
    rid = await db.insert_link_post(**body.model_dump())
    return ScheduledResponse(id=rid, kind=ItemKind.LINK)


@app.post("/schedules/status", response_model=ScheduledResponse, status_code=status.HTTP_201_CREATED)
async def schedule_status(body: StatusChangeIn):
    rid = await db.insert_status_change(**body.model_dump())
    return ScheduledResponse(id=rid, kind=ItemKind.STATUS)


@app.get("/schedules", response_model=List[ScheduledItemView])
async def list_schedules():
    return await db.list_all()


@app.delete("/schedules/{kind}/{item_id}")
async def remove_schedule(kind: ItemKind, item_id: int):
    deleted = await db.delete(kind, item_id)
    return {"deleted": deleted}

# --------------------------------------------
# Chat session / login status
# --------------------------------------------

@app.get("/auth/status", response_model=AuthSnapshot)
async def auth_status(request: Request):
    return request.app.state.tracker.snapshot()


@app.get("/auth/qr.svg")
async def auth_qr(request: Request):
    artifact = request.app.state.tracker.artifact
    if artifact is None or artifact.type != "qr":
        raise HTTPException(404, "No QR code pending")
    return Response(content=qr.render_svg(artifact.value), media_type="image/svg+xml")


@app.get("/groups", response_model=List[ChatGroup])
async def list_groups(request: Request):
    session = request.app.state.session
    if await session.get_state() is not SessionState.READY:
        raise HTTPException(503, "Chat session not ready")
    return await session.list_groups()


@app.post("/v1/chat/events", status_code=status.HTTP_204_NO_CONTENT)
async def gateway_event(
    event: GatewayEvent,
    request: Request,
    x_gateway_token: Optional[str] = Header(default=None),
):
    secret = settings.CHAT_GATEWAY_WEBHOOK_SECRET
    if secret and not secrets.compare_digest(x_gateway_token or "", secret):
        raise HTTPException(401, "Bad gateway token")
    try:
        request.app.state.session.handle_event(event)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# --------------------------------------------
# Scheduler
# --------------------------------------------

@app.post("/scheduler/tick")
async def trigger_tick(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(409, "In-process scheduler is not running")
    report = await scheduler.run_once()
    return report.summary()


@app.get("/healthz")
async def healthz(request: Request):
    tracker = getattr(request.app.state, "tracker", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "auth": tracker.state.value if tracker else None,
        "scheduler": settings.SCHEDULER_MODE if scheduler is None else ("running" if scheduler.running else "stopped"),
    }

# --------------------------------------------
# Panel
# --------------------------------------------

if os.path.isdir(settings.STATIC_DIR):
    app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")
