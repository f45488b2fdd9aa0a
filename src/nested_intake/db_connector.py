from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .models import DatabaseConfig
from .rules import RuleRegistry
from .schema import SchemaSpec, build_schema

LOGGER = logging.getLogger("nested_intake.db")


class DatabaseSession:
    """Own the async engine and the tables derived from the mapping rules."""

    def __init__(self, config: DatabaseConfig, registry: RuleRegistry) -> None:
        self._config = config
        self._registry = registry
        self._engine: Optional[AsyncEngine] = None
        self._schema: Optional[SchemaSpec] = None

    @property
    def display_url(self) -> str:
        return make_url(self._config.url).render_as_string(hide_password=True)

    async def open(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine

        deadline = time.monotonic() + self._config.connect_timeout
        attempt = 0
        while self._engine is None:
            attempt += 1
            LOGGER.info("Connecting to %s (attempt %s)", self.display_url, attempt)
            try:
                self._engine = await self._connect()
            except OperationalError as exc:
                if time.monotonic() >= deadline:
                    raise RuntimeError(
                        f"Database at {self.display_url} not reachable "
                        f"within {self._config.connect_timeout:.0f}s"
                    ) from exc
                LOGGER.warning("Database not ready yet (%s), retrying...", exc)
                await asyncio.sleep(min(2 * attempt, 10))

        if self._config.apply_schema:
            await self.ensure_schema()
        return self._engine

    async def _connect(self) -> AsyncEngine:
        engine = create_async_engine(self._config.url)
        try:
            async with engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except OperationalError:
            await engine.dispose()
            raise
        return engine

    async def ensure_schema(self) -> None:
        """Create any missing entity tables; existing tables are left alone."""
        engine = self.engine
        LOGGER.info("Creating tables: %s", ", ".join(self.schema.tables_in_order()))
        async with engine.begin() as conn:
            await conn.run_sync(self.schema.metadata.create_all)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Engine not initialised; call open() first")
        return self._engine

    @property
    def schema(self) -> SchemaSpec:
        if self._schema is None:
            self._schema = build_schema(self._registry)
        return self._schema

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            LOGGER.info("Closed database connections")
        self._engine = None
