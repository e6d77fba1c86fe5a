"""
Dashboard Endpoints
===================
Interval statistics for a business day, plus archive and snapshot history.
"""

from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import require_admin
from app.controllers.dashboard import DashboardController
from app.controllers.snapshots import take_snapshot
from app.responses import success_response
from app.state import hub, schedule, store

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _parse_date(value: Optional[str]) -> Optional[date_type]:
    if not value:
        return None
    try:
        return date_type.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid date '{value}', expected YYYY-MM-DD")


@router.get("/dashboard")
async def get_dashboard(date: Optional[str] = None, session_id: Optional[str] = None):
    """15-minute interval stats for one business day (defaults to today)."""
    controller = DashboardController(store, hub, schedule)
    business_date = _parse_date(date) or controller.today()
    if business_date > controller.today():
        raise HTTPException(status_code=422, detail="Date cannot be in the future")
    snapshot = await controller.load_date(business_date, session_id)
    return success_response(snapshot.to_dict())


@router.get("/archives")
async def list_archives(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Archived sessions, newest first."""
    items, total = await store.list_archives(limit=limit, offset=offset)
    return success_response(items, pagination={
        "limit": limit, "offset": offset, "total": total,
        "has_more": offset + limit < total
    })


@router.get("/archives/{archive_id}")
async def get_archive(archive_id: int):
    archive = await store.get_archive(archive_id)
    if archive is None:
        raise HTTPException(status_code=404, detail="Archive not found")
    return success_response(archive)


@router.post("/snapshots")
async def create_snapshot():
    """Record the current occupancy as a point-in-time reading."""
    snapshot = await take_snapshot(store, schedule)
    return success_response(snapshot, status_code=201)


@router.get("/snapshots")
async def list_snapshots(limit: int = Query(default=100, ge=1, le=1000)):
    return success_response(await store.list_snapshots(limit=limit))
