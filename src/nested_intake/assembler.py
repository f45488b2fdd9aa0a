"""Entity assembler: builds an aggregate root and its owned children."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (Any, Callable, Dict, Iterable, Iterator, List, Optional,
                    Set)

from .errors import (MissingRequiredField, PayloadError,
                     ReferentialInconsistencyError, TypeMismatch, join_path)
from .nodes import coerce_scalar, describe, is_array, is_object, is_scalar
from .rules import MappingRule, RuleRegistry, attributes_key

LOGGER = logging.getLogger("nested_intake.assembler")


@dataclass(eq=False)
class Entity:
    """An in-memory, not yet persisted entity."""

    type_name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["Entity"] = field(default=None, repr=False)
    association: Optional[str] = None
    children: Dict[str, List["Entity"]] = field(default_factory=dict)

    def replace_children(self, name: str, entities: Iterable["Entity"]) -> List["Entity"]:
        """Attach already constructed entities as the ``name`` collection."""
        attached = list(entities)
        for entity in attached:
            if not isinstance(entity, Entity):
                raise TypeMismatch(
                    f"Association {name!r} expects entities, got {describe(entity)}",
                    field=name,
                )
        for previous in self.children.get(name, ()):
            if previous.parent is self:
                previous.parent = None
                previous.association = None
        for entity in attached:
            entity.parent = self
            entity.association = name
        self.children[name] = attached
        return attached

    def construct_children(
        self,
        name: str,
        raw_payloads: Iterable[Any],
        factory: Callable[[Any, int], "Entity"],
    ) -> List["Entity"]:
        """Build new entities from raw attribute payloads and attach them."""
        built = [factory(raw, index) for index, raw in enumerate(raw_payloads)]
        return self.replace_children(name, built)

    def walk(self) -> Iterator["Entity"]:
        yield self
        for children in self.children.values():
            for child in children:
                yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.attributes)
        for name, children in self.children.items():
            data[name] = [child.to_dict() for child in children]
        return data


@dataclass(eq=False)
class Aggregate:
    root: Entity

    @property
    def type_name(self) -> str:
        return self.root.type_name

    def entities(self) -> List[Entity]:
        return list(self.root.walk())

    def children(self, name: str) -> List[Entity]:
        return list(self.root.children.get(name, ()))

    def to_dict(self) -> Dict[str, Any]:
        return {self.type_name: self.root.to_dict()}


@dataclass(frozen=True)
class AssemblyResult:
    aggregate: Optional[Aggregate] = None
    error: Optional[PayloadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Aggregate:
        if self.error is not None:
            raise self.error
        if self.aggregate is None:
            raise RuntimeError("Assembly finished without an aggregate or an error")
        return self.aggregate


def verify_references(aggregate: Aggregate) -> None:
    """Check that every child is linked exactly once, to its owner, under one root."""
    root = aggregate.root
    if root.parent is not None:
        raise ReferentialInconsistencyError(
            "Aggregate root is linked to a parent entity", field=root.type_name
        )
    seen: Set[int] = {id(root)}

    def visit(owner: Entity, path: Optional[str]) -> None:
        for name, children in owner.children.items():
            for index, child in enumerate(children):
                child_path = join_path(path, f"{name}[{index}]")
                if id(child) in seen:
                    raise ReferentialInconsistencyError(
                        f"{child.type_name} entity is linked more than once",
                        field=child_path,
                    )
                seen.add(id(child))
                if child.parent is not owner or child.association != name:
                    raise ReferentialInconsistencyError(
                        f"{child.type_name} entity does not point back to its owner",
                        field=child_path,
                    )
                visit(child, child_path)

    visit(root, None)


class EntityAssembler:
    def __init__(self, registry: RuleRegistry) -> None:
        if not registry.frozen:
            raise RuntimeError("EntityAssembler requires a frozen rule registry")
        self.registry = registry

    def assemble(
        self, node: Any, type_name: str, path: Optional[str] = None
    ) -> AssemblyResult:
        """Build the aggregate for ``node``.

        Error fields use the external collection names, prefixed with ``path``
        when given (the envelope key for enveloped documents).
        """
        rule = self.registry.get(type_name)
        try:
            aggregate = Aggregate(self._build(node, rule, path))
            verify_references(aggregate)
        except PayloadError as exc:
            LOGGER.info(
                "Assembly of %s failed: %s at %s", type_name, exc.code, exc.field
            )
            return AssemblyResult(error=exc)
        LOGGER.debug(
            "Assembled %s with %s entities", type_name, len(aggregate.entities())
        )
        return AssemblyResult(aggregate=aggregate)

    def _build(self, node: Any, rule: MappingRule, path: Optional[str]) -> Entity:
        if not is_object(node):
            raise TypeMismatch(
                f"Expected {rule.type_name} attributes as an object, got {describe(node)}",
                field=path or rule.type_name,
            )

        entity = Entity(rule.type_name)
        nested_keys = rule.attributes_keys()
        for key, value in node.items():
            # Creation data is reported under the collection name the client sent.
            field_path = join_path(path, nested_keys.get(key, key))
            if rule.is_scalar(key):
                self._check_scalar(rule, key, value, field_path)
                entity.attributes[key] = value
            elif key in nested_keys:
                self._construct(entity, nested_keys[key], value, rule, field_path)
            elif rule.is_nested(key):
                self._replace(entity, key, value, rule, field_path)
            else:
                LOGGER.debug("Ignoring undeclared field %s", field_path)

        for name in sorted(rule.required_fields):
            if rule.is_nested(name):
                present = name in entity.children
            else:
                present = entity.attributes.get(name) is not None
            if not present:
                raise MissingRequiredField(
                    f"{rule.type_name} requires field {name!r}",
                    field=join_path(path, name),
                )
        return entity

    @staticmethod
    def _check_scalar(rule: MappingRule, key: str, value: Any, path: str) -> None:
        if not is_scalar(value):
            raise TypeMismatch(
                f"Field {key!r} expects a scalar value, got {describe(value)}",
                field=path,
            )
        scalar_type = rule.scalar_fields[key]
        if value is not None and coerce_scalar(scalar_type, value) is None:
            raise TypeMismatch(
                f"Field {key!r} expects a {scalar_type} value, got {describe(value)}",
                field=path,
            )

    def _construct(
        self,
        entity: Entity,
        name: str,
        value: Any,
        rule: MappingRule,
        path: str,
    ) -> None:
        if not is_array(value):
            raise TypeMismatch(
                f"Nested data for {name!r} must be a list, got {describe(value)}",
                field=path,
            )
        child_rule = self.registry.get(rule.nested_collections[name])
        entity.construct_children(
            name,
            value,
            lambda raw, index: self._build(raw, child_rule, join_path(path, f"[{index}]")),
        )

    def _replace(
        self,
        entity: Entity,
        name: str,
        value: Any,
        rule: MappingRule,
        path: str,
    ) -> None:
        child_type = rule.nested_collections[name]
        hint = f"; nested creation data belongs under {attributes_key(name)!r}"
        if not is_array(value):
            raise TypeMismatch(
                f"Association {name!r} expects {child_type} entities, got {describe(value)}{hint}",
                field=path,
            )
        for index, item in enumerate(value):
            if not isinstance(item, Entity):
                raise TypeMismatch(
                    f"Association {name!r} expects {child_type} entities, got {describe(item)}{hint}",
                    field=join_path(path, f"[{index}]"),
                )
            if item.type_name != child_type:
                raise TypeMismatch(
                    f"Association {name!r} expects {child_type} entities, got {item.type_name}",
                    field=join_path(path, f"[{index}]"),
                )
        entity.replace_children(name, value)
