"""
Hardening Torture Tests
=======================
Tests for auth, session expiry, rate limiting, response format and startup.
"""

import asyncio
import tomllib
from datetime import datetime, UTC
from pathlib import Path

import pytest
import sqlalchemy
from cachetools import TTLCache

from app import auth
from app.controllers.live_counter import ConnectionState
from app.database import admins, database
from app.realtime import ChangeNotification, ChangeType
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD


# ===========================================================================
# Auth Tests
# ===========================================================================

class TestAuth:
    """Test admin session enforcement."""

    @pytest.mark.asyncio
    async def test_public_endpoints_no_auth(self, client):
        """Health and the door counter work without signing in."""
        health = await client.get("/health")
        assert health.status_code == 200

        counter = await client.get("/counter")
        assert counter.status_code == 200

        tap = await client.post("/counter/events", json={"gender": "male", "kind": "entry"})
        assert tap.status_code == 201

    @pytest.mark.asyncio
    async def test_admin_endpoints_protected(self, client):
        for path in ("/admin/dashboard", "/admin/archives", "/admin/snapshots", "/auth/me"):
            resp = await client.get(path)
            assert resp.status_code == 401, path

    @pytest.mark.asyncio
    async def test_auth_disabled_allows_all(self, client, monkeypatch):
        """With AUTH_ENABLED=false, admin endpoints work without a token."""
        monkeypatch.setattr(auth, "AUTH_ENABLED", False)
        resp = await client.get("/admin/dashboard?date=2024-05-01")
        assert resp.status_code == 200
        me = await client.get("/auth/me")
        assert me.json()["data"]["id"] == "__dev__"

    @pytest.mark.asyncio
    async def test_session_cache_exists(self):
        """Session cache should be initialized."""
        from app.auth import _sessions, _lock
        assert _sessions is not None
        assert _lock is not None

    @pytest.mark.asyncio
    async def test_session_expires(self, client, monkeypatch):
        monkeypatch.setattr(auth, "_sessions", TTLCache(maxsize=10, ttl=0.05))
        await auth.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
        token = await auth.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
        headers = {"Authorization": f"Bearer {token}"}

        assert (await client.get("/auth/me", headers=headers)).status_code == 200
        await asyncio.sleep(0.1)
        resp = await client.get("/auth/me", headers=headers)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_email_case_insensitive(self, client):
        await auth.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = await client.post("/auth/login", json={
            "email": ADMIN_EMAIL.upper(), "password": ADMIN_PASSWORD
        })
        assert resp.status_code == 200

    def test_malformed_password_hash_never_verifies(self):
        assert not auth.verify_password("anything", "no-separator")
        assert not auth.verify_password("anything", None)


# ===========================================================================
# Rate Limiting Tests
# ===========================================================================

class TestRateLimiting:
    """Test rate limiting configuration."""

    @pytest.mark.asyncio
    async def test_limiter_configured(self):
        """Limiter should be configured on the app."""
        from app import limiter
        from main import app
        assert limiter is not None
        assert app.state.limiter is limiter

    @pytest.mark.asyncio
    async def test_read_endpoints_not_rate_limited(self, client):
        """GET endpoints should not be rate limited."""
        for _ in range(20):
            resp = await client.get("/health")
            assert resp.status_code == 200


# ===========================================================================
# Response Format Tests
# ===========================================================================

class TestResponseFormat:
    """Test standardized response envelope."""

    @pytest.mark.asyncio
    async def test_success_envelope(self, client):
        """API responses should have status, data, generated_at."""
        resp = await client.get("/counter")
        body = resp.json()
        assert body["status"] == "success"
        assert "data" in body
        assert "generated_at" in body

    @pytest.mark.asyncio
    async def test_health_not_wrapped(self, client):
        """Health endpoint should NOT use the envelope."""
        resp = await client.get("/health")
        body = resp.json()
        assert body["status"] == "healthy"
        assert "data" not in body

    @pytest.mark.asyncio
    async def test_domain_error_envelope(self, client):
        resp = await client.post("/counter/reset", json={"confirm": True})
        body = resp.json()
        assert body["status"] == "error"
        assert body["message"] == "Sign in required"
        assert "generated_at" in body

    @pytest.mark.asyncio
    async def test_http_error_format(self, client, admin_headers):
        """Plain HTTP errors keep the HTTPException format."""
        resp = await client.get("/admin/archives/424242", headers=admin_headers)
        assert resp.status_code == 404
        assert "detail" in resp.json()


# ===========================================================================
# Startup Tests
# ===========================================================================

class TestStartup:
    """The app starts even when the database does not answer."""

    @pytest.mark.asyncio
    async def test_unreachable_database_does_not_abort_startup(self, setup_database, monkeypatch):
        from app import app, lifespan
        from app.state import live_counter

        await database.disconnect()

        async def refuse():
            raise OSError("connection refused")

        monkeypatch.setattr(database, "connect", refuse)

        async with lifespan(app):
            assert live_counter.state == ConnectionState.DISCONNECTED
            assert "Unable to connect" in live_counter.connection_error

            monkeypatch.undo()
            await live_counter.ensure_connected()
            assert live_counter.state == ConnectionState.CONNECTED
            assert live_counter.connection_error is None

        assert not database.is_connected
        await database.connect()


# ===========================================================================
# Timestamp Tests
# ===========================================================================

class TestTimestamps:
    """Generated timestamps carry a zone."""

    def test_notification_time_is_aware(self):
        note = ChangeNotification("entries", ChangeType.INSERT)
        assert note.committed_at.tzinfo is not None
        assert note.to_dict()["committed_at"].endswith("+00:00")

    @pytest.mark.asyncio
    async def test_health_timestamp_is_aware(self, client):
        body = (await client.get("/health")).json()
        assert body["timestamp"].endswith("+00:00")

    @pytest.mark.asyncio
    async def test_admin_created_at_is_utc(self, setup_database):
        await auth.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
        row = await database.fetch_one(sqlalchemy.select(admins).where(admins.c.email == ADMIN_EMAIL))
        now = datetime.now(UTC).replace(tzinfo=None)
        assert abs((now - row["created_at"]).total_seconds()) < 60


# ===========================================================================
# Packaging Tests
# ===========================================================================

class TestPackaging:
    """Optional extras match the drivers the code loads."""

    def test_postgres_extra_is_psycopg_only(self):
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        extras = tomllib.loads(pyproject.read_text())["project"]["optional-dependencies"]
        assert extras["postgres"] == ["psycopg[binary]>=3.1"]
