import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from catalog_pricing.config import Settings


logger = logging.getLogger(__name__)


# Custom JSON encoder that handles Decimal, datetime, UUID, etc.
class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and other types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    """JSON serializer used for every JSON column."""
    return json.dumps(obj, cls=CustomJSONEncoder)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _normalize_url(url: str) -> str:
    # Use psycopg (v3) for async PostgreSQL
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    return url


class Database:
    """
    Explicitly constructed store handle.

    Owns the async engine and session factory. Created once per process,
    opened on startup and disposed on shutdown (see main.lifespan), and
    handed to request handlers through app.state.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def connect(self) -> None:
        if self.engine is not None:
            return

        url = _normalize_url(self.settings.DATABASE_URL)
        if self.settings.is_sqlite:
            self.engine = create_async_engine(
                url,
                echo=self.settings.DEBUG,
                json_serializer=custom_json_dumps,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(
                url,
                echo=self.settings.DEBUG,
                json_serializer=custom_json_dumps,
                pool_pre_ping=True,  # Check connection health before use
                pool_size=self.settings.DB_POOL_SIZE,
                max_overflow=self.settings.DB_MAX_OVERFLOW,
                pool_timeout=self.settings.DB_POOL_TIMEOUT,
                pool_recycle=self.settings.DB_POOL_RECYCLE,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created for %s", self.engine.url.render_as_string(hide_password=True))

    async def disconnect(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_factory = None
        logger.info("Database engine disposed")

    async def create_all(self) -> None:
        """Create tables that do not exist yet (local/dev and tests; production uses alembic)."""
        from catalog_pricing import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Registered %d tables", len(Base.metadata.tables))

    async def ping(self) -> int:
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar_one()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for a session outside of a request."""
        if self.session_factory is None:
            raise RuntimeError("Database is not connected")
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session from the application's store handle."""
    database: Database = request.app.state.db
    async with database.session() as session:
        yield session
