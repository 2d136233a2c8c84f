"""Datastore connections and session management.

The engine talks to two independently transactional stores:

- relational: workers, organizations, payment requests, wallets, addresses
- timeseries: work timestamps, time applications and every audit log

There is no cross-store transaction. Callers that touch both stores
coordinate through the saga runner in ``payroll_settlement.services.saga``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payroll_settlement.models.base import RelationalBase, TimeseriesBase

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from payroll_settlement.config import Settings


def create_engine_for(url: str) -> AsyncEngine:
    """Create an async engine, applying pool sizing only where supported."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


class Datastores:
    """Explicitly constructed pair of datastore connections.

    Opened once at process start and disposed at shutdown. Services receive
    this object instead of importing a module-level engine.
    """

    def __init__(self, relational_url: str, timeseries_url: str):
        self.relational_engine = create_engine_for(relational_url)
        self.timeseries_engine = create_engine_for(timeseries_url)
        self._relational_factory = async_sessionmaker(
            self.relational_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._timeseries_factory = async_sessionmaker(
            self.timeseries_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Datastores:
        return cls(settings.relational_database_url, settings.timeseries_database_url)

    @asynccontextmanager
    async def relational(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a relational session that commits on success."""
        async with self._relational_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def timeseries(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a time-series session that commits on success."""
        async with self._timeseries_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create tables on both stores (development and tests)."""
        async with self.relational_engine.begin() as conn:
            await conn.run_sync(RelationalBase.metadata.create_all)
        async with self.timeseries_engine.begin() as conn:
            await conn.run_sync(TimeseriesBase.metadata.create_all)

    async def ping(self) -> dict[str, str]:
        """Check connectivity of both stores."""
        statuses: dict[str, str] = {}
        for name, engine in (
            ("relational", self.relational_engine),
            ("timeseries", self.timeseries_engine),
        ):
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                statuses[name] = "healthy"
            except Exception:
                statuses[name] = "unhealthy"
        return statuses

    async def dispose(self) -> None:
        await self.relational_engine.dispose()
        await self.timeseries_engine.dispose()
