"""
Live Counter Endpoints
======================
Door staff tap entries and exits; admins reset the day.
"""

from fastapi import APIRouter, Depends, Request

from app import limiter
from app.auth import require_admin
from app.config import RECORD_RATE_LIMIT
from app.engine import EventKind, Gender
from app.responses import success_response
from app.schemas import EventIn, ResetRequest
from app.state import live_counter

router = APIRouter()


@router.get("/counter")
async def get_counter():
    """Current occupancy. Retries the connection if the store was unreachable."""
    await live_counter.ensure_connected()
    return success_response(live_counter.snapshot())


@router.post("/counter/events")
@limiter.limit(RECORD_RATE_LIMIT)
async def record_event(request: Request, event: EventIn):
    """Log one person entering or leaving."""
    await live_counter.ensure_connected()
    stored = await live_counter.record(Gender(event.gender), EventKind(event.kind))
    return success_response({"event": stored.to_dict(), **live_counter.snapshot()}, status_code=201)


@router.post("/counter/reset")
async def reset_counter(body: ResetRequest, admin: dict = Depends(require_admin)):
    """Archive today's entries and start over at zero."""
    await live_counter.ensure_connected()
    result = await live_counter.reset(confirmed=body.confirm)
    return success_response({
        "archive": result.to_dict() if result else None,
        **live_counter.snapshot(),
    })


@router.post("/counter/error/dismiss")
async def dismiss_error():
    live_counter.dismiss_error()
    return success_response(live_counter.snapshot())
