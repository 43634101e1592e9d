"""
FastAPI Application — HTTP entry point and slot inspection.

Provides:
- POST endpoint accepting schedule/reschedule requests (raw JSON body)
- Read-only views of slots and placements for the processor and operators
- Optional in-process consumer for the inbound topic
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from api.bootstrap import build_components
from core.errors import (
    RequestValidationError, SchedulerError, TimeParseError, TimeSlotFormatError,
)
from core.time_slots import is_valid_time_slot
from job_queue.consumer import ScheduleRequestConsumer

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

components = build_components()
settings = components.settings

consumer = ScheduleRequestConsumer(
    components.scheduler, components.bus,
    topic=settings.bus.inbound_topic,
    consumer_group=settings.bus.consumer_group,
    concurrency=settings.bus.concurrency,
    max_attempts=settings.bus.max_attempts,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await components.bus.connect()
    if settings.bus.consume_inbound:
        await consumer.start_background()

    logger.info("notification_scheduler_started",
                store=type(components.store).__name__,
                bus=type(components.bus).__name__,
                consuming=settings.bus.consume_inbound)
    yield

    if settings.bus.consume_inbound:
        await consumer.stop()
    await components.bus.close()
    logger.info("notification_scheduler_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="Notification Scheduler API",
    description="Places notifications into 5-minute UTC send slots",
    version="1.0.0",
    lifespan=lifespan,
)

_CLIENT_ERRORS = (RequestValidationError, TimeParseError, TimeSlotFormatError)


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError):
    status = 422 if isinstance(exc, _CLIENT_ERRORS) else 503
    content: dict[str, Any] = {
        "error": type(exc).__name__,
        "detail": str(exc),
        "retryable": exc.retryable,
    }
    if isinstance(exc, RequestValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=status, content=content)


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "app": settings.app_name,
        "store": settings.store.backend,
        "bus": settings.bus.backend,
    }


# ══════════════════════════════════════════════════════════════
#  SCHEDULING
# ══════════════════════════════════════════════════════════════

@app.post("/api/notifications")
async def schedule_notification(request: Request):
    raw = await request.body()
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RequestValidationError(f"Request body is not UTF-8: {e}") from e
    result = await components.scheduler.handle_body(body)
    return result.to_dict()


# ══════════════════════════════════════════════════════════════
#  SLOTS
# ══════════════════════════════════════════════════════════════

def _require_slot(time_slot: str) -> None:
    if not is_valid_time_slot(time_slot):
        raise HTTPException(status_code=400, detail=f"Invalid time slot: {time_slot}")


@app.get("/api/slots")
async def list_slots():
    return {"slots": await components.store.list_slots()}


@app.get("/api/slots/{time_slot}")
async def get_slot(time_slot: str):
    _require_slot(time_slot)
    placements = await components.store.list_placements(time_slot)
    return {
        "time_slot": time_slot,
        "count": len(placements),
        "notifications": {p.notification_id: p.payload for p in placements},
    }


@app.get("/api/slots/{time_slot}/{notification_id}")
async def get_placement(time_slot: str, notification_id: str):
    _require_slot(time_slot)
    placement = await components.store.get_placement(time_slot, notification_id)
    if placement is None:
        raise HTTPException(status_code=404, detail="Placement not found")
    return placement.payload


@app.get("/api/notifications/{notification_id}/slots")
async def find_notification(notification_id: str):
    return {
        "notification_id": notification_id,
        "slots": await components.store.discover(notification_id),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
