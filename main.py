"""Incident Warden — JSON API over the transition engine.

Flow of a transition request:
    POST /incidents/{channel_id}/resolve
        → TransitionEngine.resolve()
            → conditional store write
            → fan-out to incident channel (+ product channel, + requester DM)
            → reminder job retargeted to the resolved interval
        → 200 + updated incident

    on failure:
        → explicit failure notice to the requester (when one is given)
        → 404 / 409 / 422 / 500 / 502 depending on the error

The reminder scheduler is started in the app lifespan: one job per active
incident is rebuilt from the store at startup and every job is stopped on
shutdown.

Run locally:
    uv run uvicorn main:app --reload
"""

import logging
import logging.handlers
import pathlib
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from channels.base import NotificationClient
from channels.memory import InMemoryNotificationClient
from channels.slack import SlackClient
from core.config import Settings, load_settings
from core.engine import TransitionEngine
from core.errors import (
    DeliveryError,
    IncidentError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from core.fanout import NotificationFanOut
from core.reminder import ReminderScheduler
from core.store import IncidentStore, InMemoryIncidentStore
from schemas.events import ReminderJobInfo
from schemas.incident import Incident, IncidentEdit
from utils.timestamps import Clock, utc_now

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE = pathlib.Path(__file__).parent / "incident_warden.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.addHandler(_file_handler)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ResolveRequest(BaseModel):
    description: str
    requester: str | None = None


class CancelRequest(BaseModel):
    reason: str
    requester: str | None = None


class CloseRequest(BaseModel):
    """start_ts accepts an ISO datetime or text like 2024-01-02T15:04:05+0000."""
    root_cause: str
    severity: int | None = None
    start_ts: datetime | str | None = None
    requester: str | None = None


class SnoozeRequest(BaseModel):
    """until=None lifts an active snooze."""
    until: datetime | None = None
    requester: str | None = None


_STATUS_CODES: dict[type[IncidentError], int] = {
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ValidationError: 422,
    PersistenceError: 500,
    DeliveryError: 502,
}


def _status_code(exc: IncidentError) -> int:
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 500


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def _build_client(settings: Settings) -> NotificationClient:
    if settings.slack_token:
        return SlackClient(settings.slack_token)
    logger.warning("WARDEN_SLACK_TOKEN not set — notifications go to the in-memory client.")
    return InMemoryNotificationClient()


def create_app(
    settings: Settings | None = None,
    store: IncidentStore | None = None,
    client: NotificationClient | None = None,
    clock: Clock = utc_now,
    arm_timers: bool = True,
) -> FastAPI:
    """Wire store, client, fan-out, scheduler and engine into a FastAPI app.

    Every collaborator can be injected, which is how the tests run the API
    against in-memory backends with a pinned clock.
    """
    settings = settings or load_settings()
    store = store or InMemoryIncidentStore(clock=clock)
    client = client or _build_client(settings)

    fanout = NotificationFanOut(client)
    scheduler = ReminderScheduler(store, fanout, settings, clock=clock, arm_timers=arm_timers)
    engine = TransitionEngine(store, fanout, scheduler, settings, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await scheduler.start_all()
        try:
            yield
        finally:
            await scheduler.stop_all()
            if isinstance(client, SlackClient):
                await client.aclose()

    app = FastAPI(title="Incident Warden", lifespan=lifespan)
    app.state.engine = engine
    app.state.scheduler = scheduler
    app.state.client = client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
    )

    @app.exception_handler(IncidentError)
    async def incident_error_handler(request: Request, exc: IncidentError):
        body: dict = {"detail": str(exc)}
        if isinstance(exc, DeliveryError):
            # The transition is committed; say so alongside the failures.
            body["incident"] = exc.incident.model_dump(mode="json")
            body["failures"] = [f.model_dump(mode="json") for f in exc.failures]
        return JSONResponse(status_code=_status_code(exc), content=body)

    async def _transition(channel_id: str, requester: str | None, operation):
        try:
            return await operation
        except IncidentError as exc:
            logger.warning("Transition on %s failed: %s", channel_id, exc)
            await engine.report_failure(requester, channel_id, exc)
            raise

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health():
        return {"status": "ok", "reminders": len(scheduler.jobs())}

    @app.get("/incidents", response_model=list[Incident])
    async def list_incidents(limit: int = 100):
        """Active (open or resolved) incidents, oldest first."""
        if limit < 1:
            raise HTTPException(status_code=422, detail="limit must be positive.")
        return await engine.list_active(limit)

    @app.get("/incidents/{channel_id}", response_model=Incident)
    async def get_incident(channel_id: str):
        return await engine.get(channel_id)

    @app.post("/incidents", response_model=Incident, status_code=201)
    async def open_incident(body: dict[str, Any] = Body(...)):
        """Takes the raw draft so a malformed one still reaches the author."""
        author = body.get("author_id")
        requester = author if isinstance(author, str) and author else None
        channel_id = str(body.get("channel_id") or "")
        return await _transition(channel_id, requester, engine.open(body))

    @app.post("/incidents/{channel_id}/resolve", response_model=Incident)
    async def resolve_incident(channel_id: str, body: ResolveRequest):
        return await _transition(
            channel_id, body.requester,
            engine.resolve(channel_id, body.description, requester=body.requester),
        )

    @app.post("/incidents/{channel_id}/close", response_model=Incident)
    async def close_incident(channel_id: str, body: CloseRequest):
        return await _transition(
            channel_id, body.requester,
            engine.close(
                channel_id,
                body.root_cause,
                severity=body.severity,
                start_ts=body.start_ts,
                requester=body.requester,
            ),
        )

    @app.post("/incidents/{channel_id}/cancel", response_model=Incident)
    async def cancel_incident(channel_id: str, body: CancelRequest):
        return await _transition(
            channel_id, body.requester,
            engine.cancel(channel_id, body.reason, requester=body.requester),
        )

    @app.post("/incidents/{channel_id}/snooze", response_model=Incident)
    async def snooze_incident(channel_id: str, body: SnoozeRequest):
        return await _transition(channel_id, body.requester, engine.snooze(channel_id, body.until))

    @app.patch("/incidents/{channel_id}", response_model=Incident)
    async def edit_incident(channel_id: str, body: IncidentEdit):
        return await engine.edit(channel_id, body)

    @app.get("/reminders", response_model=list[ReminderJobInfo])
    def list_reminders():
        """Live reminder jobs, one per active incident."""
        return [job.info() for job in scheduler.jobs()]

    return app


app = create_app()
