"""Error taxonomy shared by the mapper, assembler and their collaborators."""

from __future__ import annotations

from typing import Any, Dict, Optional


class IntakeError(Exception):
    """Base class for every failure the intake pipeline reports to callers."""

    code = "intake_error"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "field": self.field, "message": self.message}


class PayloadError(IntakeError):
    """A payload-shape problem; terminal for the request, never retried."""


class SchemaMismatch(PayloadError):
    code = "schema_mismatch"


class UnknownField(PayloadError):
    code = "unknown_field"


class TypeMismatch(PayloadError):
    code = "type_mismatch"


class MissingRequiredField(PayloadError):
    code = "missing_required_field"


class ReferentialInconsistencyError(PayloadError):
    code = "referential_inconsistency"


class DecodeError(IntakeError):
    code = "decode_error"


class UnsupportedContentType(DecodeError):
    code = "unsupported_content_type"


class PersistError(IntakeError):
    code = "persist_error"


def join_path(prefix: Optional[str], name: str) -> str:
    if not prefix:
        return name
    if name.startswith("["):
        return f"{prefix}{name}"
    return f"{prefix}.{name}"
