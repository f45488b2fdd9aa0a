"""Decode -> map -> assemble -> persist, with every failure returned as a value."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .assembler import Aggregate, EntityAssembler
from .decoders import Body, decode
from .errors import IntakeError
from .mapper import SchemaMapper
from .persistence import AggregateStore, MemoryStore, PersistedRecord
from .rules import RuleRegistry

LOGGER = logging.getLogger("nested_intake.pipeline")


@dataclass(frozen=True)
class IntakeResult:
    type_name: str
    mapped: Optional[Dict[str, Any]] = None
    aggregate: Optional[Aggregate] = None
    record: Optional[PersistedRecord] = None
    error: Optional[IntakeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IntakeService:
    def __init__(
        self,
        registry: RuleRegistry,
        store: Optional[AggregateStore] = None,
        strict: bool = False,
    ) -> None:
        self.registry = registry
        self.mapper = SchemaMapper(registry, strict=strict)
        self.assembler = EntityAssembler(registry)
        self.store: AggregateStore = store if store is not None else MemoryStore()
        self._collection_fields = registry.collection_fields()

    @property
    def strict(self) -> bool:
        return self.mapper.strict

    def prepare(self, body: Body, content_type: Optional[str], type_name: str) -> IntakeResult:
        """Decode, map and assemble without persisting anything."""
        try:
            document = decode(body, content_type, self._collection_fields)
            mapped = self.mapper.map_document(document, type_name)
        except IntakeError as exc:
            LOGGER.info("Rejected %s payload: %s at %s", type_name, exc.code, exc.field)
            return IntakeResult(type_name=type_name, error=exc)

        assembled = self.assembler.assemble(mapped[type_name], type_name, path=type_name)
        if not assembled.ok:
            return IntakeResult(type_name=type_name, mapped=mapped, error=assembled.error)
        return IntakeResult(
            type_name=type_name, mapped=mapped, aggregate=assembled.aggregate
        )

    async def submit(self, body: Body, content_type: Optional[str], type_name: str) -> IntakeResult:
        prepared = self.prepare(body, content_type, type_name)
        if not prepared.ok or prepared.aggregate is None:
            return prepared

        try:
            record = await self.store.persist(prepared.aggregate)
        except IntakeError as exc:
            return IntakeResult(
                type_name=type_name,
                mapped=prepared.mapped,
                aggregate=prepared.aggregate,
                error=exc,
            )
        LOGGER.info("Created %s %s", type_name, record.id)
        return IntakeResult(
            type_name=type_name,
            mapped=prepared.mapped,
            aggregate=prepared.aggregate,
            record=record,
        )
