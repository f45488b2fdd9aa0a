"""Mapping rules: which fields are scalars and which name nested collections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import (IO, Any, Dict, FrozenSet, Iterable, Iterator, List,
                    Mapping, Optional, Union)

import yaml
from pydantic import (BaseModel, ConfigDict, Field, RootModel, ValidationError,
                      field_validator)

LOGGER = logging.getLogger("nested_intake.rules")

DEFAULT_RULES_RESOURCE = "rules.yaml"
ATTRIBUTES_SUFFIX = "_attributes"
SCALAR_TYPES = ("text", "integer", "number", "boolean", "datetime")


class RuleConfigError(ValueError):
    """Raised when a rule set cannot be loaded or is internally inconsistent."""


def attributes_key(name: str) -> str:
    """Key under which the assembler expects nested-creation data for ``name``."""
    return f"{name}{ATTRIBUTES_SUFFIX}"


@dataclass(frozen=True)
class MappingRule:
    type_name: str
    scalar_fields: Mapping[str, str] = field(default_factory=dict)
    nested_collections: Mapping[str, str] = field(default_factory=dict)
    required_fields: FrozenSet[str] = frozenset()
    collection: Optional[str] = None

    def __post_init__(self) -> None:
        scalars = dict(self.scalar_fields)
        nested = dict(self.nested_collections)
        overlap = set(scalars) & set(nested)
        if overlap:
            raise RuleConfigError(
                f"{self.type_name}: fields declared both scalar and nested: "
                f"{', '.join(sorted(overlap))}"
            )
        for name, scalar_type in scalars.items():
            if scalar_type not in SCALAR_TYPES:
                raise RuleConfigError(
                    f"{self.type_name}.{name}: unsupported scalar type {scalar_type!r}"
                )
        required = frozenset(self.required_fields)
        undeclared = required - set(scalars) - set(nested)
        if undeclared:
            raise RuleConfigError(
                f"{self.type_name}: required fields not declared: "
                f"{', '.join(sorted(undeclared))}"
            )
        object.__setattr__(self, "scalar_fields", MappingProxyType(scalars))
        object.__setattr__(self, "nested_collections", MappingProxyType(nested))
        object.__setattr__(self, "required_fields", required)
        if not self.collection:
            object.__setattr__(self, "collection", f"{self.type_name}s")

    def is_scalar(self, name: str) -> bool:
        return name in self.scalar_fields

    def is_nested(self, name: str) -> bool:
        return name in self.nested_collections

    def attributes_keys(self) -> Dict[str, str]:
        """Map each ``<name>_attributes`` key back to its nested field name."""
        return {attributes_key(name): name for name in self.nested_collections}


class RuleRegistry:
    """Process-wide rule set: written during startup, read-only once frozen."""

    def __init__(self, rules: Iterable[MappingRule] = ()) -> None:
        self._rules: Dict[str, MappingRule] = {}
        self._frozen = False
        for rule in rules:
            self.register(rule)

    def register(self, rule: MappingRule) -> None:
        if self._frozen:
            raise RuntimeError("Rule registry is frozen; register rules at startup")
        if rule.type_name in self._rules:
            raise RuleConfigError(f"Duplicate rule for type {rule.type_name!r}")
        self._rules[rule.type_name] = rule

    def freeze(self) -> "RuleRegistry":
        if self._frozen:
            return self
        collections: Dict[str, str] = {}
        for rule in self._rules.values():
            for name, child_type in rule.nested_collections.items():
                if child_type not in self._rules:
                    raise RuleConfigError(
                        f"{rule.type_name}.{name} refers to undeclared type {child_type!r}"
                    )
            owner = collections.setdefault(rule.collection, rule.type_name)
            if owner != rule.type_name:
                raise RuleConfigError(
                    f"Collection {rule.collection!r} claimed by {owner!r} and {rule.type_name!r}"
                )
        self._frozen = True
        LOGGER.debug("Rule registry frozen with %s types", len(self._rules))
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, type_name: str) -> MappingRule:
        self._require_frozen()
        try:
            return self._rules[type_name]
        except KeyError:
            raise KeyError(f"No mapping rule for type {type_name!r}") from None

    def for_collection(self, collection: str) -> Optional[MappingRule]:
        self._require_frozen()
        for rule in self._rules.values():
            if rule.collection == collection:
                return rule
        return None

    def collection_fields(self) -> FrozenSet[str]:
        """Every field name declared as a nested collection by any rule."""
        return frozenset(
            name for rule in self._rules.values() for name in rule.nested_collections
        )

    def type_names(self) -> List[str]:
        return list(self._rules)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._rules

    def __iter__(self) -> Iterator[MappingRule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def _require_frozen(self) -> None:
        if not self._frozen:
            raise RuntimeError("Rule registry must be frozen before it is read")


class RuleModel(BaseModel):
    scalar_fields: Union[List[str], Dict[str, str]] = Field(default_factory=list)
    nested_collections: Dict[str, str] = Field(default_factory=dict)
    required_fields: List[str] = Field(default_factory=list)
    collection: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("scalar_fields")
    @classmethod
    def _default_scalar_types(cls, value: Any) -> Dict[str, str]:
        if isinstance(value, list):
            return {name: "text" for name in value}
        return value


class RuleSetModel(RootModel[Dict[str, RuleModel]]):
    pass


def rules_from_mapping(data: Mapping[str, Any]) -> RuleRegistry:
    """Validate a ``{type_name: {...}}`` mapping and return a frozen registry."""
    try:
        model = RuleSetModel.model_validate(data)
    except ValidationError as exc:
        raise RuleConfigError(f"Invalid mapping rules: {exc}") from exc

    registry = RuleRegistry()
    for type_name, rule in model.root.items():
        registry.register(
            MappingRule(
                type_name=type_name,
                scalar_fields=rule.scalar_fields,
                nested_collections=rule.nested_collections,
                required_fields=frozenset(rule.required_fields),
                collection=rule.collection,
            )
        )
    return registry.freeze()


def _parse_yaml(stream: IO[str], source: str) -> Any:
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        raise RuleConfigError(f"Rules file {source} is not valid YAML: {exc}") from exc


def load_rules(path: Optional[Union[str, Path]] = None) -> RuleRegistry:
    """Load rules from ``path`` or from the rule set shipped with the package."""
    if path:
        source = Path(path)
        LOGGER.info("Loading mapping rules from %s", source)
        try:
            with source.open("r", encoding="utf-8") as fh:
                data = _parse_yaml(fh, str(source))
        except OSError as exc:
            raise RuleConfigError(f"Cannot read rules file {source}: {exc}") from exc
    else:
        with (
            resources.files("nested_intake")
            .joinpath(DEFAULT_RULES_RESOURCE)
            .open("r", encoding="utf-8") as fh
        ):
            data = _parse_yaml(fh, DEFAULT_RULES_RESOURCE)

    if not isinstance(data, Mapping):
        raise RuleConfigError("Mapping rules must be a mapping of type names")
    return rules_from_mapping(data)
