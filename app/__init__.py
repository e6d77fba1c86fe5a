"""
Venue Tally App Package
=======================
FastAPI app factory with lifespan, CORS, error handlers and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.config import CORS_ORIGINS

logger = logging.getLogger(__name__)

# Rate limiter, keyed by client IP
limiter = Limiter(key_func=get_remote_address)
from app.database import database  # noqa: E402
from app.errors import StoreUnavailableError, TallyError  # noqa: E402
from app.responses import tally_error_handler, value_error_handler  # noqa: E402
from app.state import live_counter  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await database.connect()
    except Exception as e:
        # The store ping reconnects on the next attempt
        logger.error(f"Database connect failed at startup: {e}")
    try:
        await live_counter.connect()
    except StoreUnavailableError as e:
        # Stays disconnected; GET /counter retries
        logger.error(f"Live counter starting disconnected: {e}")
    yield
    await live_counter.close()
    if database.is_connected:
        await database.disconnect()


app = FastAPI(
    title="Venue Tally",
    description="Door counter and occupancy analytics API",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(TallyError, tally_error_handler)
app.add_exception_handler(ValueError, value_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
from app.routers import health, counter, sessions, dashboard, realtime  # noqa: E402

app.include_router(health.router)
app.include_router(counter.router)
app.include_router(sessions.router)
app.include_router(dashboard.router)
app.include_router(realtime.router)
