"""Schema mapper: rewrites externally shaped payloads into nested-creation form.

External schemas name a nested collection after the association
(``addresses``), while entity construction expects the attributes form
(``addresses_attributes``). The mapper renames those keys, recursing into each
collection element with the child type's rule, and resolves the singleton
ambiguity left behind by XML decoders: a collection of one element that
arrives as a bare object is wrapped into a one-element list.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from .errors import SchemaMismatch, UnknownField, join_path
from .nodes import InternalNode, describe, is_array, is_object, is_scalar
from .rules import MappingRule, RuleRegistry, attributes_key

LOGGER = logging.getLogger("nested_intake.mapper")


def map_node(
    node: Any,
    rule: MappingRule,
    registry: RuleRegistry,
    strict: bool = False,
    path: Optional[str] = None,
) -> InternalNode:
    if is_scalar(node):
        return node
    if is_object(node):
        return _map_object(node, rule, registry, strict, path)
    if is_array(node):
        return [
            map_node(item, rule, registry, strict, join_path(path, f"[{index}]"))
            for index, item in enumerate(node)
        ]
    raise SchemaMismatch(
        f"Unsupported payload value of type {type(node).__name__}",
        field=path or rule.type_name,
    )


def map_document(
    document: Any,
    type_name: str,
    registry: RuleRegistry,
    strict: bool = False,
) -> Dict[str, Any]:
    """Map an enveloped document such as ``{"user": {...}}``."""
    if not is_object(document) or type_name not in document:
        raise SchemaMismatch(
            f"Expected a {type_name!r} document, got {describe(document)}",
            field=type_name,
        )
    rule = registry.get(type_name)
    result: Dict[str, Any] = {}
    for key, value in document.items():
        if key == type_name:
            result[key] = map_node(value, rule, registry, strict, path=type_name)
        elif strict:
            raise UnknownField(f"Unexpected top-level field {key!r}", field=key)
        else:
            result[key] = copy.deepcopy(value)
    return result


class SchemaMapper:
    """Binds a frozen registry and the strictness policy for repeated use."""

    def __init__(self, registry: RuleRegistry, strict: bool = False) -> None:
        if not registry.frozen:
            raise RuntimeError("SchemaMapper requires a frozen rule registry")
        self.registry = registry
        self.strict = strict

    def map(self, node: Any, type_name: str) -> InternalNode:
        return map_node(node, self.registry.get(type_name), self.registry, self.strict)

    def map_document(self, document: Any, type_name: str) -> Dict[str, Any]:
        return map_document(document, type_name, self.registry, self.strict)


def _map_object(
    node: Any,
    rule: MappingRule,
    registry: RuleRegistry,
    strict: bool,
    path: Optional[str],
) -> Dict[str, Any]:
    reserved = rule.attributes_keys()
    result: Dict[str, Any] = {}
    for key, value in node.items():
        field_path = join_path(path, key)
        if rule.is_nested(key):
            child_rule = registry.get(rule.nested_collections[key])
            result[attributes_key(key)] = _map_collection(
                value, child_rule, registry, strict, field_path
            )
        elif rule.is_scalar(key):
            result[key] = copy.deepcopy(value)
        elif key in reserved:
            raise SchemaMismatch(
                f"Field {key!r} is reserved for nested creation data; "
                f"send {reserved[key]!r} instead",
                field=field_path,
            )
        elif strict:
            raise UnknownField(
                f"Field {key!r} is not declared for type {rule.type_name!r}",
                field=field_path,
            )
        else:
            result[key] = copy.deepcopy(value)
    return result


def _map_collection(
    value: Any,
    child_rule: MappingRule,
    registry: RuleRegistry,
    strict: bool,
    path: str,
) -> List[Any]:
    if is_object(value):
        LOGGER.debug("Normalising singleton %s into a one-element collection", path)
        items: Any = [value]
    elif is_array(value):
        items = value
    else:
        raise SchemaMismatch(
            f"Expected a collection of {child_rule.type_name} entries, got {describe(value)}",
            field=path,
        )

    mapped: List[Any] = []
    for index, item in enumerate(items):
        item_path = join_path(path, f"[{index}]")
        if not is_object(item):
            raise SchemaMismatch(
                f"Expected a {child_rule.type_name} entry, got {describe(item)}",
                field=item_path,
            )
        mapped.append(_map_object(item, child_rule, registry, strict, item_path))
    return mapped
