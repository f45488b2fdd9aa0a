"""Shape helpers for decoded payload trees.

A payload tree is built from plain Python values: scalars (``str``, ``int``,
``float``, ``bool`` or ``None``), mappings with string keys, and lists.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

Scalar = Union[str, int, float, bool, None]
GenericNode = Union[Scalar, Mapping[str, Any], Sequence[Any]]
InternalNode = Union[Scalar, Dict[str, Any], List[Any]]

TRUE_WORDS = frozenset({"true", "1", "yes"})
FALSE_WORDS = frozenset({"false", "0", "no"})


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def is_object(value: Any) -> bool:
    return isinstance(value, Mapping)


def is_array(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def describe(value: Any) -> str:
    """Short human-readable description of a value for error messages."""
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        return "object"
    if is_array(value):
        return f"array of {len(value)}"
    preview = repr(value)
    if len(preview) > 40:
        preview = preview[:40] + "…"
    return f"{type(value).__name__} {preview}"


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_WORDS:
            return True
        if lowered in FALSE_WORDS:
            return False
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _numeric(cast: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        # bool is an int subclass; True must not become 1.
        if isinstance(value, bool):
            return None
        try:
            number = cast(value)
        except (TypeError, ValueError, OverflowError):
            return None
        return number if math.isfinite(number) else None

    return convert


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, float) and not value.is_integer():
        return None
    return _numeric(int)(value)


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "boolean": _to_bool,
    "integer": _to_int,
    "number": _numeric(float),
    "datetime": _to_datetime,
}


def coerce_scalar(scalar_type: str, value: Any) -> Any:
    """Convert ``value`` to the Python type of ``scalar_type``.

    Returns ``None`` for ``None`` and for values that cannot be converted.
    """
    if value is None:
        return None
    converter = CONVERTERS.get(scalar_type)
    if converter is not None:
        return converter(value)
    return value if isinstance(value, str) else str(value)
