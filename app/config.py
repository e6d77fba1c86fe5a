"""
Application Configuration
=========================
Central config loaded from environment variables.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tally.db")

# Handle Railway's postgres:// vs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# CORS origins (comma-separated in env, or * for dev)
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Authentication
AUTH_ENABLED = os.getenv("AUTH_ENABLED", "true").lower() == "true"
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "43200"))

# Venue schedule: doors open at 16:00, close at 03:00, and the business day
# rolls over at 04:00 local time.
VENUE_TIMEZONE = os.getenv("VENUE_TIMEZONE", "America/Toronto")
VENUE_OPEN_HOUR = int(os.getenv("VENUE_OPEN_HOUR", "16"))
VENUE_CLOSE_HOUR = int(os.getenv("VENUE_CLOSE_HOUR", "3"))
BUSINESS_DAY_CUTOVER_HOUR = int(os.getenv("BUSINESS_DAY_CUTOVER_HOUR", "4"))
BUCKET_MINUTES = int(os.getenv("BUCKET_MINUTES", "15"))

# Quiet period before the dashboard recomputes after a change notification
DASHBOARD_DEBOUNCE_SECONDS = float(os.getenv("DASHBOARD_DEBOUNCE_SECONDS", "0.25"))

# Rows per query page when reading the entries log
EVENT_PAGE_SIZE = int(os.getenv("EVENT_PAGE_SIZE", "5000"))

# Tap rate limit on the counter endpoint, keyed by client IP
RECORD_RATE_LIMIT = os.getenv("RECORD_RATE_LIMIT", "300/minute")
