"""Content-type specific decoding of request bodies into payload trees."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Union

from dateutil import parser as dtparse
from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET
from defusedxml.ElementTree import ParseError as SafeParseError

from .errors import DecodeError, UnsupportedContentType, join_path
from .nodes import GenericNode

LOGGER = logging.getLogger("nested_intake.decoders")

JSON_MEDIA_TYPES = {"application/json", "text/json"}
XML_MEDIA_TYPES = {"application/xml", "text/xml"}
TRUE_VALUES = {"true", "1", "yes"}
FALSE_VALUES = {"false", "0", "no"}

Body = Union[bytes, bytearray, str]


def media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_supported(content_type: Optional[str]) -> bool:
    kind = media_type(content_type)
    return (
        kind in JSON_MEDIA_TYPES
        or kind in XML_MEDIA_TYPES
        or kind.endswith("+json")
        or kind.endswith("+xml")
    )


def decode(
    body: Body,
    content_type: Optional[str],
    collection_fields: Iterable[str] = (),
) -> GenericNode:
    kind = media_type(content_type)
    if kind in JSON_MEDIA_TYPES or kind.endswith("+json"):
        return decode_json(body)
    if kind in XML_MEDIA_TYPES or kind.endswith("+xml"):
        return decode_xml(body, collection_fields)
    raise UnsupportedContentType(f"Unsupported content type {content_type!r}")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON value")


def decode_json(body: Body) -> GenericNode:
    try:
        return json.loads(body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError, RecursionError) as exc:
        raise DecodeError(f"Malformed JSON body: {exc}") from exc


def decode_xml(body: Body, collection_fields: Iterable[str] = ()) -> Dict[str, Any]:
    """Decode an XML document into ``{root_tag: value}``.

    Elements with child elements become objects and leaf elements become
    scalars. Sibling elements sharing a tag are collected into a list, and so
    is every occurrence of a tag named in ``collection_fields``, even a single
    one. An element carrying ``type="array"`` is a wrapper whose children are
    the list items, and so is a hinted element such as ``<addresses>`` holding
    ``<address>`` items. ``nil="true"`` decodes to ``None`` and the ``integer``,
    ``float``, ``decimal``, ``boolean``, ``date`` and ``datetime`` types are
    converted. Dashes in tag names become underscores.

    Without a hint, a collection with a single member decodes to a bare
    object; the schema mapper normalises that case.
    """
    try:
        root = SafeET.fromstring(body)
    except (SafeParseError, DefusedXmlException) as exc:
        raise DecodeError(f"Malformed XML body: {exc}") from exc

    forced = frozenset(collection_fields)
    key = _key(root.tag)
    try:
        return {key: _element_value(root, forced, key)}
    except RecursionError as exc:
        raise DecodeError("XML body is nested too deeply") from exc


def _key(tag: str) -> str:
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    return tag.replace("-", "_")


def _is_empty(element: Any) -> bool:
    return len(element) == 0 and not (element.text or "").strip()


def _element_value(element: Any, forced: FrozenSet[str], path: str) -> Any:
    if element.get("nil") == "true":
        return None

    type_attr = element.get("type")
    if type_attr == "array":
        return [
            _element_value(child, forced, join_path(path, f"[{index}]"))
            for index, child in enumerate(element)
        ]

    if len(element) == 0:
        return _leaf_value(element.text, type_attr, path)

    result: Dict[str, Any] = {}
    collected: Set[str] = set()
    for child in element:
        key = _key(child.tag)
        child_path = join_path(path, key)
        if key in forced:
            items: List[Any] = result.setdefault(key, [])
            collected.add(key)
            _collect_items(child, forced, child_path, items)
            continue
        value = _element_value(child, forced, child_path)
        if key not in result:
            result[key] = value
        elif key in collected:
            result[key].append(value)
        else:
            result[key] = [result[key], value]
            collected.add(key)
    return result


def _wrapped_items(element: Any, forced: FrozenSet[str]) -> Optional[List[Any]]:
    """Children of a collection wrapper such as <addresses><address/>...</addresses>.

    An element whose children repeat a single tag, or whose only child is
    itself an object, wraps its items. Otherwise it is the item. A child tag
    that names a collection belongs to the item.
    """
    children = list(element)
    tags = {child.tag for child in children}
    if len(tags) != 1 or _key(children[0].tag) in forced:
        return None
    if len(children) > 1 or len(children[0]) > 0:
        return children
    return None


def _collect_items(
    element: Any, forced: FrozenSet[str], path: str, items: List[Any]
) -> None:
    if _is_empty(element):
        return
    if element.get("type") == "array":
        items.extend(_element_value(element, forced, path))
        return
    wrapped = _wrapped_items(element, forced)
    if wrapped is None:
        items.append(_element_value(element, forced, join_path(path, f"[{len(items)}]")))
        return
    for child in wrapped:
        items.append(_element_value(child, forced, join_path(path, f"[{len(items)}]")))


def _leaf_value(text: Optional[str], type_attr: Optional[str], path: str) -> Any:
    if text is None or not text.strip():
        return None
    value = text.strip()
    try:
        if type_attr == "integer":
            return int(value)
        if type_attr in ("float", "decimal"):
            return float(value)
        if type_attr == "boolean":
            lowered = value.lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if type_attr == "datetime":
            return dtparse.parse(value).isoformat()
        if type_attr == "date":
            return dtparse.parse(value).date().isoformat()
    except (ValueError, OverflowError) as exc:
        raise DecodeError(
            f"Cannot read {value!r} as {type_attr}: {exc}", field=path
        ) from exc
    return value
