"""
Venue Tally - Backend Entry Point
=================================
Door counter, live occupancy and admin dashboard for a single venue.

Run locally:
    uvicorn main:app --reload
"""

import logging
import os

from app.config import LOG_LEVEL

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from app import app  # noqa: E402
from app.database import database, metadata, entries, historical_entries, historical_intervals, admins  # noqa: E402,F401

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
