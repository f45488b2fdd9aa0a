"""Normalise externally shaped payloads into nested-creation form."""

from .assembler import (Aggregate, AssemblyResult, Entity, EntityAssembler,
                        verify_references)
from .decoders import decode
from .errors import (DecodeError, IntakeError, MissingRequiredField,
                     PersistError, ReferentialInconsistencyError,
                     SchemaMismatch, TypeMismatch, UnknownField)
from .mapper import SchemaMapper, map_document, map_node
from .pipeline import IntakeResult, IntakeService
from .rules import (MappingRule, RuleRegistry, attributes_key, load_rules,
                    rules_from_mapping)

__all__ = [
    "Aggregate",
    "AssemblyResult",
    "DecodeError",
    "Entity",
    "EntityAssembler",
    "IntakeError",
    "IntakeResult",
    "IntakeService",
    "MappingRule",
    "MissingRequiredField",
    "PersistError",
    "ReferentialInconsistencyError",
    "RuleRegistry",
    "SchemaMapper",
    "SchemaMismatch",
    "TypeMismatch",
    "UnknownField",
    "attributes_key",
    "decode",
    "load_rules",
    "map_document",
    "map_node",
    "rules_from_mapping",
    "verify_references",
]
