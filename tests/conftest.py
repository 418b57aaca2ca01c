from __future__ import annotations

import pytest
import pytest_asyncio

from apps.api.core.database import Database
from apps.api.metrics import metrics_registry
from apps.api.services.assignment import AssignmentCursor
from factories import Marketplace, Services, build_services, seed_marketplace


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_registry.reset()
    yield


@pytest_asyncio.fixture
async def database(tmp_path) -> Database:
    # A file database gives every session its own connection, which the
    # concurrency tests rely on.
    db = Database.from_url(f"sqlite+aiosqlite:///{tmp_path / 'support.db'}")
    await db.ensure_schema()
    await AssignmentCursor().ensure(db)
    try:
        yield db
    finally:
        await db.dispose()


@pytest_asyncio.fixture
async def marketplace(database: Database) -> Marketplace:
    return await seed_marketplace(database)


@pytest.fixture
def services(database: Database) -> Services:
    return build_services(database)
