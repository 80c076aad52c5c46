"""
Shared fixtures.

Every test gets its own SQLite database file (aiosqlite), created from the
ORM metadata, and an AsyncSession on it. API tests drive the FastAPI app
through httpx's ASGI transport with the same store handle.
"""
import httpx
import pytest

from catalog_pricing.config import Settings
from catalog_pricing.database import Database
from catalog_pricing.main import create_app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'pricing.db'}",
        AUTO_CREATE_TABLES=False,
        LOG_LEVEL="WARNING",
        BULK_OPERATION_TIMEOUT_SECONDS=5.0,
        DEFAULT_PAGE_LIMIT=50,
        MAX_PAGE_LIMIT=500,
        PREVIEW_SAMPLE_SIZE=3,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings)
    db.connect()
    await db.create_all()
    yield db
    await db.disconnect()


@pytest.fixture
async def session(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
async def client(settings, database):
    app = create_app(settings)
    # ASGITransport does not run the lifespan; hand the store over directly
    app.state.db = database
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
