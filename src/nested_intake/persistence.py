"""Stores that take an assembled aggregate and make it durable as one unit."""

from __future__ import annotations

import copy
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from .assembler import Aggregate, Entity
from .db_connector import DatabaseSession
from .errors import PersistError
from .nodes import coerce_scalar
from .schema import ScalarField, SchemaSpec

LOGGER = logging.getLogger("nested_intake.persistence")


@dataclass(frozen=True)
class PersistedRecord:
    """The stored root entity: identifier, creation time and scalar fields."""

    type_name: str
    id: int
    created_at: datetime
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "created_at": self.created_at.isoformat()}
        data.update(self.attributes)
        return data


class AggregateStore(Protocol):
    async def persist(self, aggregate: Aggregate) -> PersistedRecord: ...


def convert_scalar(field: ScalarField, value: Any) -> Any:
    """Convert a payload value into the Python type expected by its column.

    Values that cannot be converted are stored as NULL rather than rejected.
    """
    return coerce_scalar(field.scalar_type, value)


class MemoryStore:
    """In-process store used when no database is configured."""

    def __init__(self) -> None:
        self._sequences: Dict[str, Iterator[int]] = defaultdict(lambda: itertools.count(1))
        self._records: Dict[Tuple[str, int], Dict[str, Any]] = {}

    async def persist(self, aggregate: Aggregate) -> PersistedRecord:
        record = PersistedRecord(
            type_name=aggregate.type_name,
            id=next(self._sequences[aggregate.type_name]),
            created_at=datetime.now(timezone.utc),
            attributes=dict(aggregate.root.attributes),
        )
        self._records[(record.type_name, record.id)] = copy.deepcopy(
            aggregate.root.to_dict()
        )
        LOGGER.debug("Stored %s %s in memory", record.type_name, record.id)
        return record

    def get(self, type_name: str, record_id: int) -> Optional[Dict[str, Any]]:
        stored = self._records.get((type_name, record_id))
        return copy.deepcopy(stored) if stored is not None else None

    def __len__(self) -> int:
        return len(self._records)


class SqlAggregateStore:
    """Writes the root row and all child rows inside a single transaction."""

    def __init__(self, session: DatabaseSession) -> None:
        self._session = session

    @property
    def schema(self) -> SchemaSpec:
        return self._session.schema

    async def persist(self, aggregate: Aggregate) -> PersistedRecord:
        created_at = datetime.now(timezone.utc)
        try:
            async with self._session.engine.begin() as conn:
                root_id = await self._insert(conn, aggregate.root, created_at)
        except SQLAlchemyError as exc:
            LOGGER.error("Failed to store %s: %s", aggregate.type_name, exc)
            raise PersistError(f"Could not store {aggregate.type_name}: {exc}") from exc

        LOGGER.info(
            "Stored %s %s with %s child entities",
            aggregate.type_name,
            root_id,
            len(aggregate.entities()) - 1,
        )
        return PersistedRecord(
            type_name=aggregate.type_name,
            id=root_id,
            created_at=created_at,
            attributes=dict(aggregate.root.attributes),
        )

    async def fetch_children(
        self, parent_type: str, child_type: str, parent_id: int
    ) -> list[Dict[str, Any]]:
        """Return child rows of ``parent_id`` ordered by position."""
        spec = self.schema.table_for(child_type)
        fk = spec.parent_fks[parent_type]
        stmt = (
            select(spec.table)
            .where(spec.table.c[fk] == parent_id)
            .order_by(spec.table.c.position)
        )
        async with self._session.engine.connect() as conn:
            result = await conn.execute(stmt)
            return [dict(row) for row in result.mappings()]

    async def _insert(
        self,
        conn: AsyncConnection,
        entity: Entity,
        created_at: datetime,
        parent: Optional[Entity] = None,
        parent_id: Optional[int] = None,
        position: Optional[int] = None,
    ) -> int:
        spec = self.schema.table_for(entity.type_name)
        row: Dict[str, Any] = {"created_at": created_at}
        for scalar in spec.scalars.values():
            row[scalar.column_name] = convert_scalar(
                scalar, entity.attributes.get(scalar.name)
            )
        if parent is not None:
            row[spec.parent_fks[parent.type_name]] = parent_id
            row["position"] = position

        result = await conn.execute(insert(spec.table).values(**row))
        row_id = result.inserted_primary_key[0]

        for relation in spec.relations:
            for index, child in enumerate(entity.children.get(relation.name, ())):
                await self._insert(
                    conn,
                    child,
                    created_at,
                    parent=entity,
                    parent_id=row_id,
                    position=index,
                )
        return row_id
