"""
Health Check Router
===================
Health check endpoint for Railway / load balancers, including store reachability.
"""

from datetime import datetime, UTC

from fastapi import APIRouter

from app.errors import StoreUnavailableError
from app.state import hub, live_counter, store

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness plus store reachability and live counter state."""
    try:
        await store.ping()
        database_status = "ok"
    except StoreUnavailableError:
        database_status = "unreachable"
    return {
        "status": "healthy",
        "database": database_status,
        "counter_state": live_counter.state.value,
        "subscribers": hub.subscriber_count,
        "timestamp": datetime.now(UTC).isoformat(),
    }
