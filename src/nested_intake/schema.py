"""Relational tables derived from the mapping rules, one table per entity type."""

from __future__ import annotations

from dataclasses import dataclass, field
from hashlib import blake2s
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (BigInteger, Boolean, Column, DateTime, ForeignKey,
                        Integer, MetaData, Numeric, Table, Text)

from .rules import RuleRegistry

ScalarType = str  # "boolean" | "integer" | "number" | "datetime" | "text"
MAX_IDENTIFIER_LENGTH = 63

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer, "sqlite")


@dataclass
class ScalarField:
    """Metadata for a scalar column of an entity table."""

    name: str
    column_name: str
    scalar_type: ScalarType
    nullable: bool = True


@dataclass
class RelationSpec:
    """A nested collection stored in a child table."""

    name: str
    target: "TableSpec"


@dataclass
class TableSpec:
    name: str
    type_name: str
    table: Table
    scalars: Dict[str, ScalarField] = field(default_factory=dict)
    relations: List[RelationSpec] = field(default_factory=list)
    parent_fks: Dict[str, str] = field(default_factory=dict)

    @property
    def position_column(self) -> bool:
        return bool(self.parent_fks)


@dataclass
class SchemaSpec:
    metadata: MetaData
    tables: Dict[str, TableSpec]

    def table_for(self, type_name: str) -> TableSpec:
        try:
            return self.tables[type_name]
        except KeyError:
            raise KeyError(f"No table for entity type {type_name!r}") from None

    def tables_in_order(self) -> List[str]:
        """Table names with every parent before its children."""
        return [table.name for table in self.metadata.sorted_tables]


def to_snake_case(value: str) -> str:
    result: List[str] = []
    prev_lower = False
    for char in value:
        if char.isupper() and prev_lower:
            result.append("_")
        result.append(char.lower() if char.isalnum() else "_")
        prev_lower = char.islower() or char.isdigit()
    snake = "".join(result)
    while "__" in snake:
        snake = snake.replace("__", "_")
    return snake.strip("_")


def make_identifier(parts: Iterable[str]) -> str:
    base = "_".join(p for p in (to_snake_case(part) for part in parts if part) if p)
    if len(base) <= MAX_IDENTIFIER_LENGTH:
        return base or "unnamed"
    digest = blake2s(base.encode("utf-8"), digest_size=4).hexdigest()
    prefix = base[: MAX_IDENTIFIER_LENGTH - len(digest) - 1].rstrip("_")
    return f"{prefix}_{digest}"


def _scalar_type_to_sa(scalar_type: ScalarType):
    if scalar_type == "boolean":
        return Boolean
    if scalar_type == "integer":
        return BigInteger
    if scalar_type == "number":
        return Numeric
    if scalar_type == "datetime":
        return DateTime(timezone=True)
    return Text


def build_schema(registry: RuleRegistry, metadata: Optional[MetaData] = None) -> SchemaSpec:
    metadata = metadata if metadata is not None else MetaData()
    table_names = {rule.type_name: make_identifier((rule.collection,)) for rule in registry}

    owners: Dict[str, List[Tuple[str, str]]] = {}
    for rule in registry:
        for name, child_type in rule.nested_collections.items():
            owners.setdefault(child_type, []).append((rule.type_name, name))

    tables: Dict[str, TableSpec] = {}
    for rule in registry:
        columns: List[Column] = [
            Column("id", IdType, primary_key=True, autoincrement=True),
            Column("created_at", DateTime(timezone=True), nullable=False),
        ]
        taken = {"id", "created_at", "position"}

        parent_fks: Dict[str, str] = {}
        for parent_type, _ in owners.get(rule.type_name, ()):
            if parent_type in parent_fks:
                continue
            fk_name = make_identifier((parent_type, "id"))
            parent_fks[parent_type] = fk_name
            taken.add(fk_name)
            columns.append(
                Column(
                    fk_name,
                    IdType,
                    ForeignKey(f"{table_names[parent_type]}.id", ondelete="CASCADE"),
                    nullable=True,
                    index=True,
                )
            )
        if parent_fks:
            columns.append(Column("position", Integer, nullable=True))

        scalars: Dict[str, ScalarField] = {}
        for prop, scalar_type in rule.scalar_fields.items():
            column_name = make_identifier((prop,))
            if column_name in taken:
                column_name = make_identifier((prop, "value"))
            taken.add(column_name)
            nullable = prop not in rule.required_fields
            columns.append(
                Column(column_name, _scalar_type_to_sa(scalar_type), nullable=nullable)
            )
            scalars[prop] = ScalarField(
                name=prop,
                column_name=column_name,
                scalar_type=scalar_type,
                nullable=nullable,
            )

        table = Table(table_names[rule.type_name], metadata, *columns)
        tables[rule.type_name] = TableSpec(
            name=table.name,
            type_name=rule.type_name,
            table=table,
            scalars=scalars,
            parent_fks=parent_fks,
        )

    for rule in registry:
        spec = tables[rule.type_name]
        for name, child_type in rule.nested_collections.items():
            spec.relations.append(RelationSpec(name=name, target=tables[child_type]))

    return SchemaSpec(metadata=metadata, tables=tables)
