"""JSON code-generator request → schema graph.

WHY: The core consumes an already-resolved schema graph. Outside the core
that graph arrives as a JSON rendering of a CodeGeneratorRequest, written
by whatever front end parsed the schema text. A malformed request must be
rejected with a pointer to the offending element, not with a KeyError deep
inside the generator.

HOW: The decoded document is validated against REQUEST_SCHEMA with
jsonschema, then converted node by node into the frozen dataclasses of
core.schema. Keys follow schema.capnp (camelCase); every union is an
object with a single member key.

RULES:
- 64-bit ids are JSON integers or "0x..." hex strings
- A type may be a bare kind name ("uint32", "text") when it has no payload
- "object" and "anyPointer" name the same kind
- Data values are arrays of byte values; struct, list and object values
  are arrays of bytes holding a canonical single-segment message
- Float values may also be the strings "inf", "-inf" and "nan"
- Integer values must fit the width of their kind; enums are uint16
- Any violation raises RequestFormatError (a ValueError)
"""

from __future__ import annotations

import json
import logging
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema

from capnp_bindgen.core.schema import (
    ANNOTATION_TARGETS,
    NO_DISCRIMINANT,
    Annotation,
    AnnotationInfo,
    CodeGeneratorRequest,
    ConstInfo,
    Enumerant,
    Field,
    Import,
    Method,
    NestedNode,
    Node,
    NodeKind,
    RequestedFile,
    SchemaGraph,
    StructInfo,
    Type,
    TypeKind,
    Value,
)

logger = logging.getLogger(__name__)


class RequestFormatError(ValueError):
    """Raised when a request document does not have the expected shape."""


_KIND_NAMES: Dict[str, TypeKind] = {
    "void": TypeKind.VOID,
    "bool": TypeKind.BOOL,
    "int8": TypeKind.INT8,
    "int16": TypeKind.INT16,
    "int32": TypeKind.INT32,
    "int64": TypeKind.INT64,
    "uint8": TypeKind.UINT8,
    "uint16": TypeKind.UINT16,
    "uint32": TypeKind.UINT32,
    "uint64": TypeKind.UINT64,
    "float32": TypeKind.FLOAT32,
    "float64": TypeKind.FLOAT64,
    "text": TypeKind.TEXT,
    "data": TypeKind.DATA,
    "list": TypeKind.LIST,
    "enum": TypeKind.ENUM,
    "struct": TypeKind.STRUCT,
    "interface": TypeKind.INTERFACE,
    "object": TypeKind.OBJECT,
    "anyPointer": TypeKind.OBJECT,
}

_NODE_KINDS: Dict[str, NodeKind] = {
    "file": NodeKind.FILE,
    "struct": NodeKind.STRUCT,
    "enum": NodeKind.ENUM,
    "interface": NodeKind.INTERFACE,
    "const": NodeKind.CONST,
    "annotation": NodeKind.ANNOTATION,
}

_ID = {
    "oneOf": [
        {"type": "integer", "minimum": 0, "maximum": 0xFFFFFFFFFFFFFFFF},
        {"type": "string", "pattern": "^0[xX][0-9a-fA-F]{1,16}$"},
    ]
}

_UNION = {"type": "object", "minProperties": 1, "maxProperties": 1}

_UINT64_MAX = 0xFFFFFFFFFFFFFFFF

_FLOAT32_MAX = 3.4028234663852886e38

_INT_RANGES = {
    TypeKind.INT8: (-0x80, 0x7F),
    TypeKind.INT16: (-0x8000, 0x7FFF),
    TypeKind.INT32: (-0x80000000, 0x7FFFFFFF),
    TypeKind.INT64: (-0x8000000000000000, 0x7FFFFFFFFFFFFFFF),
    TypeKind.UINT8: (0, 0xFF),
    TypeKind.UINT16: (0, 0xFFFF),
    TypeKind.UINT32: (0, 0xFFFFFFFF),
    TypeKind.UINT64: (0, _UINT64_MAX),
    TypeKind.ENUM: (0, 0xFFFF),
}

REQUEST_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["nodes", "requestedFiles"],
    "properties": {
        "nodes": {"type": "array", "items": {"$ref": "#/$defs/node"}},
        "requestedFiles": {"type": "array", "items": {"$ref": "#/$defs/requestedFile"}},
    },
    "$defs": {
        "id": _ID,
        "type": {
            "oneOf": [
                {"type": "string", "enum": sorted(_KIND_NAMES)},
                dict(_UNION, propertyNames={"enum": sorted(_KIND_NAMES)}),
            ]
        },
        "value": dict(_UNION, propertyNames={"enum": sorted(_KIND_NAMES)}),
        "annotation": {
            "type": "object",
            "required": ["id", "value"],
            "properties": {"id": {"$ref": "#/$defs/id"}, "value": {"$ref": "#/$defs/value"}},
        },
        "annotations": {"type": "array", "items": {"$ref": "#/$defs/annotation"}},
        "field": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string"},
                "codeOrder": {"type": "integer", "minimum": 0},
                "discriminantValue": {"type": "integer", "minimum": 0, "maximum": NO_DISCRIMINANT},
                "annotations": {"$ref": "#/$defs/annotations"},
                "slot": {
                    "type": "object",
                    "required": ["type"],
                    "properties": {
                        "offset": {"type": "integer", "minimum": 0},
                        "type": {"$ref": "#/$defs/type"},
                        "defaultValue": {"$ref": "#/$defs/value"},
                        "hadExplicitDefault": {"type": "boolean"},
                    },
                },
                "group": {
                    "type": "object",
                    "required": ["typeId"],
                    "properties": {"typeId": {"$ref": "#/$defs/id"}},
                },
                "ordinal": _UNION,
            },
            "oneOf": [{"required": ["slot"]}, {"required": ["group"]}],
        },
        "node": {
            "type": "object",
            "required": ["id", "displayName"],
            "properties": {
                "id": {"$ref": "#/$defs/id"},
                "displayName": {"type": "string"},
                "displayNamePrefixLength": {"type": "integer", "minimum": 0},
                "scopeId": {"$ref": "#/$defs/id"},
                "nestedNodes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name", "id"],
                        "properties": {"name": {"type": "string"}, "id": {"$ref": "#/$defs/id"}},
                    },
                },
                "annotations": {"$ref": "#/$defs/annotations"},
                "struct": {
                    "type": "object",
                    "properties": {"fields": {"type": "array", "items": {"$ref": "#/$defs/field"}}},
                },
                "enum": {
                    "type": "object",
                    "properties": {
                        "enumerants": {
                            "type": "array",
                            "items": {"type": "object", "required": ["name"]},
                        }
                    },
                },
                "interface": {"type": "object"},
                "const": {
                    "type": "object",
                    "required": ["type", "value"],
                    "properties": {"type": {"$ref": "#/$defs/type"}, "value": {"$ref": "#/$defs/value"}},
                },
                "annotation": {
                    "type": "object",
                    "required": ["type"],
                    "properties": {"type": {"$ref": "#/$defs/type"}},
                },
            },
            "oneOf": [{"required": [key]} for key in _NODE_KINDS],
        },
        "requestedFile": {
            "type": "object",
            "required": ["id", "filename"],
            "properties": {
                "id": {"$ref": "#/$defs/id"},
                "filename": {"type": "string"},
                "imports": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id", "name"],
                        "properties": {"id": {"$ref": "#/$defs/id"}, "name": {"type": "string"}},
                    },
                },
            },
        },
    },
}


# ---------------------------------------------------------------------------
# Element parsers
# ---------------------------------------------------------------------------


def _parse_id(raw: Union[int, str, None]) -> int:
    if raw is None:
        return 0
    if isinstance(raw, str):
        try:
            return int(raw, 16)
        except ValueError:
            raise RequestFormatError("Invalid id '{}'".format(raw)) from None
    if not isinstance(raw, int) or isinstance(raw, bool) or not 0 <= raw <= _UINT64_MAX:
        raise RequestFormatError("Invalid id {!r}".format(raw))
    return raw


def _single(obj: Dict[str, Any]) -> tuple:
    (key, payload), = obj.items()
    return key, payload


def parse_type(raw: Union[str, Dict[str, Any]]) -> Type:
    if isinstance(raw, str):
        kind = _KIND_NAMES[raw]
        if kind in (TypeKind.LIST, TypeKind.ENUM, TypeKind.STRUCT, TypeKind.INTERFACE):
            raise RequestFormatError("Type '{}' needs a payload".format(raw))
        return Type(kind)

    key, payload = _single(raw)
    kind = _KIND_NAMES[key]
    if kind is TypeKind.LIST:
        if not isinstance(payload, dict) or "elementType" not in payload:
            raise RequestFormatError("List type needs an elementType")
        return Type(kind, element_type=parse_type(payload["elementType"]))
    if kind in (TypeKind.ENUM, TypeKind.STRUCT, TypeKind.INTERFACE):
        if not isinstance(payload, dict) or "typeId" not in payload:
            raise RequestFormatError("Type '{}' needs a typeId".format(key))
        return Type(kind, type_id=_parse_id(payload["typeId"]))
    return Type(kind)


def _parse_float(raw: Union[int, float, str], kind: TypeKind) -> float:
    if isinstance(raw, str):
        if raw not in ("inf", "-inf", "nan"):
            raise RequestFormatError("Invalid float value '{}'".format(raw))
        return float(raw)
    if not isinstance(raw, (int, float)) or isinstance(raw, bool):
        raise RequestFormatError("Float value must be a number, not {!r}".format(raw))
    value = float(raw)
    if kind is TypeKind.FLOAT32 and math.isfinite(value) and abs(value) > _FLOAT32_MAX:
        raise RequestFormatError("Value {} is out of range for float32".format(raw))
    return value


def _parse_int(raw: Union[int, str], key: str) -> int:
    if isinstance(raw, str):
        try:
            raw = int(raw, 0)
        except ValueError:
            raise RequestFormatError("Invalid integer '{}' for '{}'".format(raw, key)) from None
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise RequestFormatError("Value '{}' must be an integer".format(key))
    low, high = _INT_RANGES[_KIND_NAMES[key]]
    if not low <= raw <= high:
        raise RequestFormatError("Value {} is out of range for {}".format(raw, key))
    return raw


def _parse_bytes(raw: Any, what: str) -> bytes:
    if not isinstance(raw, list) or not all(isinstance(b, int) and 0 <= b <= 255 for b in raw):
        raise RequestFormatError("{} value must be an array of byte values".format(what))
    return bytes(raw)


def parse_value(raw: Dict[str, Any]) -> Value:
    key, payload = _single(raw)
    kind = _KIND_NAMES[key]

    if kind in (TypeKind.VOID, TypeKind.INTERFACE):
        return Value(kind)
    if payload is None:
        return Value(kind)
    if kind is TypeKind.BOOL:
        if not isinstance(payload, bool):
            raise RequestFormatError("Bool value must be true or false")
        return Value(kind, payload)
    if kind in (TypeKind.FLOAT32, TypeKind.FLOAT64):
        return Value(kind, _parse_float(payload, kind))
    if kind is TypeKind.TEXT:
        if not isinstance(payload, str):
            raise RequestFormatError("Text value must be a string")
        return Value(kind, payload)
    if kind in (TypeKind.DATA, TypeKind.LIST, TypeKind.STRUCT, TypeKind.OBJECT):
        return Value(kind, _parse_bytes(payload, key))
    return Value(kind, _parse_int(payload, key))


def _parse_annotations(raw: Optional[List[Dict[str, Any]]]) -> tuple:
    return tuple(
        Annotation(id=_parse_id(a["id"]), value=parse_value(a["value"]))
        for a in raw or ()
    )


def _parse_field(raw: Dict[str, Any]) -> Field:
    ordinal = None
    if "ordinal" in raw:
        key, payload = _single(raw["ordinal"])
        if key == "explicit":
            ordinal = _parse_int(payload, "uint16")

    common = dict(
        name=raw["name"],
        code_order=raw.get("codeOrder", 0),
        discriminant_value=raw.get("discriminantValue", NO_DISCRIMINANT),
        annotations=_parse_annotations(raw.get("annotations")),
        ordinal=ordinal,
    )
    if "group" in raw:
        return Field(group_id=_parse_id(raw["group"]["typeId"]), **common)

    slot = raw["slot"]
    default = slot.get("defaultValue")
    return Field(
        offset=slot.get("offset", 0),
        type=parse_type(slot["type"]),
        default_value=parse_value(default) if default is not None else None,
        had_explicit_default=slot.get("hadExplicitDefault", False),
        **common,
    )


def _parse_node(raw: Dict[str, Any]) -> Node:
    kind_key = next(key for key in _NODE_KINDS if key in raw)
    kind = _NODE_KINDS[kind_key]
    payload = raw[kind_key] or {}

    extra: Dict[str, Any] = {}
    if kind is NodeKind.STRUCT:
        extra["struct"] = StructInfo(
            data_word_count=payload.get("dataWordCount", 0),
            pointer_count=payload.get("pointerCount", 0),
            preferred_list_encoding=payload.get("preferredListEncoding", 0),
            is_group=payload.get("isGroup", False),
            discriminant_count=payload.get("discriminantCount", 0),
            discriminant_offset=payload.get("discriminantOffset", 0),
            fields=tuple(_parse_field(f) for f in payload.get("fields", ())),
        )
    elif kind is NodeKind.ENUM:
        extra["enumerants"] = tuple(
            Enumerant(
                name=e["name"],
                code_order=e.get("codeOrder", i),
                annotations=_parse_annotations(e.get("annotations")),
            )
            for i, e in enumerate(payload.get("enumerants", ()))
        )
    elif kind is NodeKind.INTERFACE:
        extra["methods"] = tuple(
            Method(
                name=m["name"],
                code_order=m.get("codeOrder", i),
                param_struct_type=_parse_id(m.get("paramStructType")),
                result_struct_type=_parse_id(m.get("resultStructType")),
                annotations=_parse_annotations(m.get("annotations")),
            )
            for i, m in enumerate(payload.get("methods", ()))
        )
    elif kind is NodeKind.CONST:
        extra["const"] = ConstInfo(type=parse_type(payload["type"]), value=parse_value(payload["value"]))
    elif kind is NodeKind.ANNOTATION:
        targets = frozenset(
            t for t in ANNOTATION_TARGETS
            if payload.get("targets" + t[0].upper() + t[1:], False)
        )
        extra["annotation"] = AnnotationInfo(type=parse_type(payload["type"]), targets=targets)

    return Node(
        id=_parse_id(raw["id"]),
        display_name=raw["displayName"],
        kind=kind,
        display_name_prefix_length=raw.get("displayNamePrefixLength", 0),
        scope_id=_parse_id(raw.get("scopeId")),
        nested_nodes=tuple(
            NestedNode(name=n["name"], id=_parse_id(n["id"])) for n in raw.get("nestedNodes", ())
        ),
        annotations=_parse_annotations(raw.get("annotations")),
        **extra,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_request(document: Dict[str, Any]) -> CodeGeneratorRequest:
    """Validate a decoded request document and build the schema graph.

    Args:
        document: The decoded JSON object.

    Returns:
        A CodeGeneratorRequest over an immutable SchemaGraph.

    Raises:
        RequestFormatError: If the document does not match REQUEST_SCHEMA
            or contains values of the wrong shape.
    """
    try:
        jsonschema.validate(instance=document, schema=REQUEST_SCHEMA)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise RequestFormatError("Invalid request at {}: {}".format(location, e.message)) from e

    graph = SchemaGraph([_parse_node(n) for n in document["nodes"]])
    requested = tuple(
        RequestedFile(
            id=_parse_id(f["id"]),
            filename=f["filename"],
            imports=tuple(Import(id=_parse_id(i["id"]), name=i["name"]) for i in f.get("imports", ())),
        )
        for f in document["requestedFiles"]
    )
    logger.debug("Loaded %d nodes, %d requested files", len(graph), len(requested))
    return CodeGeneratorRequest(graph=graph, requested_files=requested)


def load_request_file(path: Union[str, Path]) -> CodeGeneratorRequest:
    """Read a request from a JSON file, or from stdin when path is ``-``."""
    try:
        if str(path) == "-":
            document = json.load(sys.stdin)
        else:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
    except json.JSONDecodeError as e:
        raise RequestFormatError("Request is not valid JSON: {}".format(e)) from e
    return load_request(document)
