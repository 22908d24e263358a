import os

# Credential fields have no defaults (services must fail without secrets).
# Provide test values so Settings() can be constructed in tests.
os.environ.setdefault("API_KEY", "test-api-key")

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from ride_dispatch.account import Account
from ride_dispatch.api import create_app
from ride_dispatch.api.rate_limit import limiter, ws_limiter
from ride_dispatch.db.database import init_database
from ride_dispatch.db.repositories import AccountRepository, RideRepository
from ride_dispatch.db.transaction import transaction
from ride_dispatch.geo.osrm_client import RouteResponse
from ride_dispatch.pubsub import LocalChangeFeed
from ride_dispatch.ride import SearchingRide
from ride_dispatch.service import DispatchCore, build_core
from ride_dispatch.settings import Settings
from ride_dispatch.store import RideStore
from tests.factories import AccountFactory


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "dispatch.db"


@pytest.fixture
def session_factory(db_path: Path) -> sessionmaker[Any]:
    """Temporary SQLite database file shared by every worker thread."""
    return init_database(f"sqlite:///{db_path}", busy_timeout_seconds=10.0)


@pytest.fixture
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def store(session_factory: sessionmaker[Any], feed: LocalChangeFeed) -> RideStore:
    return RideStore(session_factory, feed, operation_timeout=10.0)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def mock_routing_client() -> Mock:
    """Routing client answering 1.5 km / 4 min for every lookup."""
    client = Mock()
    client.get_route = AsyncMock(
        return_value=RouteResponse(distance_meters=1500, duration_seconds=240, osrm_code="Ok")
    )
    return client


@pytest.fixture
def mock_notifier() -> Mock:
    notifier = Mock()
    notifier.send = AsyncMock()
    return notifier


@pytest.fixture
def core(
    settings: Settings,
    session_factory: sessionmaker[Any],
    feed: LocalChangeFeed,
    mock_routing_client: Mock,
    mock_notifier: Mock,
) -> DispatchCore:
    return build_core(settings, session_factory, feed, mock_routing_client, notifier=mock_notifier)


@pytest.fixture
def account_factory() -> AccountFactory:
    return AccountFactory(seed=42)


@pytest.fixture
def seed_account(session_factory: sessionmaker[Any]) -> Callable[[Account], Account]:
    """Persist an account directly, bypassing the service layer."""

    def _seed(account: Account) -> Account:
        with session_factory() as session, transaction(session):
            AccountRepository(session).create(account)
        return account

    return _seed


@pytest.fixture
def seed_ride(session_factory: sessionmaker[Any]) -> Callable[[SearchingRide], SearchingRide]:
    def _seed(ride: SearchingRide) -> SearchingRide:
        with session_factory() as session, transaction(session):
            RideRepository(session).create(ride)
        return ride

    return _seed


@pytest.fixture
def rider(account_factory: AccountFactory, seed_account) -> Account:
    return seed_account(account_factory.rider())


@pytest.fixture
def driver(account_factory: AccountFactory, seed_account) -> Account:
    return seed_account(account_factory.driver())


@pytest.fixture
def admin(account_factory: AccountFactory, seed_account) -> Account:
    return seed_account(account_factory.admin())


@pytest.fixture
def app(core: DispatchCore, settings: Settings) -> FastAPI:
    limiter.reset()
    ws_limiter.reset()
    return create_app(core, settings, run_background_tasks=False)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Headers for an authenticated request made on behalf of ``account_id``."""

    def _headers(account_id: str) -> dict[str, str]:
        return {"X-API-Key": "test-api-key", "X-Account-Id": account_id}

    return _headers
