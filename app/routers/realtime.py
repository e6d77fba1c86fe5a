"""
Realtime Endpoints
==================
WebSocket feeds: raw entry changes for counter screens, and recomputed
dashboard snapshots for admins.
"""

import logging
from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.auth import admin_for_token
from app.config import AUTH_ENABLED
from app.controllers.dashboard import DashboardController, DashboardSnapshot
from app.errors import TallyError
from app.state import hub, schedule, store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/entries")
async def entry_changes(websocket: WebSocket, date: Optional[str] = None):
    """Stream insert/delete notifications on the entries table.

    With `date`, only rows tagged with that business date are sent.
    """
    await websocket.accept()
    predicate = None
    if date:
        predicate = lambda record: record.get("logical_date") == date  # noqa: E731
    subscription = hub.subscribe("entries", predicate)
    try:
        async for note in subscription:
            await websocket.send_json(note.to_dict())
    except WebSocketDisconnect:
        logger.debug("Entries feed client disconnected")
    finally:
        subscription.close()


@router.websocket("/ws/dashboard")
async def dashboard_feed(websocket: WebSocket, date: Optional[str] = None,
                         session_id: Optional[str] = None, token: Optional[str] = None):
    """Push a fresh dashboard snapshot whenever the selected day changes."""
    if AUTH_ENABLED:
        try:
            await admin_for_token(token)
        except TallyError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
    await websocket.accept()

    async def push(snapshot: DashboardSnapshot):
        await websocket.send_json(snapshot.to_dict())

    controller = DashboardController(store, hub, schedule, on_update=push)
    try:
        business_date = date_type.fromisoformat(date) if date else controller.today()
        snapshot = await controller.watch(business_date, session_id)
        if snapshot is not None:
            await push(snapshot)
        # Client messages select another date: {"date": "YYYY-MM-DD"}
        while True:
            message = await websocket.receive_json()
            if message.get("date"):
                snapshot = await controller.watch(
                    date_type.fromisoformat(message["date"]), message.get("session_id")
                )
                if snapshot is not None:
                    await push(snapshot)
    except WebSocketDisconnect:
        logger.debug("Dashboard feed client disconnected")
    except ValueError as e:
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason=str(e))
    finally:
        await controller.close()
