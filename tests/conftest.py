"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise, connections

from playlink.deps import (
    can_cancel_booking,
    can_manage_booking,
    can_read_booking,
    can_read_wallet,
    can_write_booking,
    get_current_user,
    get_notifications_client,
    get_payments_client,
    get_users_client,
)
from playlink.routers import booking, venue, wallet

from .factories import make_customer, make_venue_owner

# ---------------------------------------------------------------------------
# Database: Tortoise on in-memory SQLite, fresh schema per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["playlink.models"]},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await connections.close_all(discard=True)


# ---------------------------------------------------------------------------
# Default no-op client mocks: prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def noop_users_client():
    mock = MagicMock()
    mock.find_ids_by_emails = AsyncMock(return_value={})
    return mock


def noop_payments_client():
    mock = MagicMock()
    mock.create_session = AsyncMock()
    mock.get_session = AsyncMock(return_value=None)
    mock.refund_session = AsyncMock(return_value=True)
    return mock


def noop_notifications_client():
    mock = MagicMock()
    mock.send_invite = AsyncMock(return_value=True)
    return mock


@pytest.fixture(autouse=True)
def _no_redis():
    """Routers touch the slot cache; keep tests off the network."""
    with (
        patch("playlink.routers.booking.invalidate_slots_cache", AsyncMock()),
        patch("playlink.routers.venue.invalidate_slots_cache", AsyncMock()),
        patch("playlink.routers.venue.get_slots_cache", AsyncMock(return_value=None)),
        patch("playlink.routers.venue.set_slots_cache", AsyncMock()),
    ):
        yield


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def bare_app() -> FastAPI:
    app = FastAPI()
    app.include_router(booking.router)
    app.include_router(venue.router)
    app.include_router(wallet.router)
    return app


def build_app(
    current_user,
    users_client=None,
    payments_client=None,
    notifications_client=None,
) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass client mocks to inject custom behaviour. Defaults to no-op mocks,
    avoiding real HTTP calls.
    """
    app = bare_app()

    async def _user():
        return current_user

    for dep in (
        can_read_booking,
        can_write_booking,
        can_cancel_booking,
        can_manage_booking,
        can_read_wallet,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    uc = users_client if users_client is not None else noop_users_client()
    pc = payments_client if payments_client is not None else noop_payments_client()
    nc = (
        notifications_client
        if notifications_client is not None
        else noop_notifications_client()
    )
    app.dependency_overrides[get_users_client] = lambda: uc
    app.dependency_overrides[get_payments_client] = lambda: pc
    app.dependency_overrides[get_notifications_client] = lambda: nc

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def owner_client():
    return TestClient(build_app(make_venue_owner()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return bare_app()


@pytest.fixture()
def client_factory():
    def _make(
        current_user,
        users_client=None,
        payments_client=None,
        notifications_client=None,
    ) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                users_client=users_client,
                payments_client=payments_client,
                notifications_client=notifications_client,
            ),
            raise_server_exceptions=True,
        )

    return _make
