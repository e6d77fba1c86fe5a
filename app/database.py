"""
Database Setup
==============
SQLAlchemy table definitions, async database connection, and engine.
All tables defined here as module-level objects importable by the store and routers.
"""

from datetime import datetime, UTC

import databases
import sqlalchemy

from app.config import DATABASE_URL as _RAW_DB_URL

# Force psycopg3 dialect for Python 3.13 compatibility
DATABASE_URL = _RAW_DB_URL
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

database = databases.Database(DATABASE_URL)

metadata = sqlalchemy.MetaData()


def naive_utc_now() -> datetime:
    """Current time as naive UTC, the form every DateTime column stores."""
    return datetime.now(UTC).replace(tzinfo=None)


# Entries table - append-only log of door events (timestamps stored as naive UTC)
entries = sqlalchemy.Table(
    "entries",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("gender", sqlalchemy.String(10), nullable=False),
    sqlalchemy.Column("kind", sqlalchemy.String(20), nullable=False),
    sqlalchemy.Column("occurred_at", sqlalchemy.DateTime, nullable=False, index=True),
    sqlalchemy.Column("logical_date", sqlalchemy.Date, nullable=True, index=True),
    sqlalchemy.Column("session_id", sqlalchemy.String(36), nullable=True, index=True),
    sqlalchemy.Column("count_before_reset", sqlalchemy.Integer, nullable=True),
    # Set while a reset is archiving the row; the delete step removes by this tag
    sqlalchemy.Column("archive_id", sqlalchemy.Integer, nullable=True, index=True),
)

# Archive summary - one row per reset
historical_entries = sqlalchemy.Table(
    "historical_entries",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("date", sqlalchemy.Date, index=True),
    sqlalchemy.Column("start_time", sqlalchemy.DateTime, nullable=True),
    sqlalchemy.Column("end_time", sqlalchemy.DateTime, nullable=True),
    sqlalchemy.Column("total_entries", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("total_exits", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("male_entries", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("female_entries", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("male_exits", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("female_exits", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("final_count", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("session_id", sqlalchemy.String(36), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, default=naive_utc_now),
)

# Archive breakdown - one row per non-empty bucket
historical_intervals = sqlalchemy.Table(
    "historical_intervals",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column(
        "archive_id",
        sqlalchemy.Integer,
        sqlalchemy.ForeignKey("historical_entries.id", ondelete="CASCADE"),
        index=True,
    ),
    sqlalchemy.Column("interval_label", sqlalchemy.String(5)),
    sqlalchemy.Column("interval_start", sqlalchemy.DateTime),
    sqlalchemy.Column("interval_end", sqlalchemy.DateTime),
    sqlalchemy.Column("male_entries", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("female_entries", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("male_exits", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("female_exits", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("running_total", sqlalchemy.Integer, default=0),
)

# Point-in-time occupancy readings
occupancy_snapshots = sqlalchemy.Table(
    "occupancy_snapshots",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("taken_at", sqlalchemy.DateTime, index=True),
    sqlalchemy.Column("business_date", sqlalchemy.Date, index=True),
    sqlalchemy.Column("male_count", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("female_count", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("total_count", sqlalchemy.Integer, default=0),
)

# Admin principals allowed onto the dashboard
admins = sqlalchemy.Table(
    "admins",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("email", sqlalchemy.String(254), unique=True, index=True),
    sqlalchemy.Column("password_hash", sqlalchemy.String(200)),
    sqlalchemy.Column("role", sqlalchemy.String(20), default="admin"),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, default=naive_utc_now),
)

engine = sqlalchemy.create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
)
metadata.create_all(engine)
