"""Single-segment encoding of schema nodes.

WHY: Every generated class carries its own schema node in encoded form, and
pointer-typed defaults and constants are read straight out of that blob at
runtime. The generator therefore needs the bytes of each node plus the word
offset at which each default value lives inside them.

HOW: schema.capnp is loaded once with pycapnp. encode_node() fills a
``Node`` message builder from the dataclass and takes the message's only
segment. Values that arrive pre-encoded (struct, list and object
defaults) are read as AnyPointer roots and copied in by pycapnp. The
offsets are then found by following the pointers of the finished bytes.

RULES:
- Word 0 is the root pointer to the Node struct
- The message must fit one segment; a larger node is rebuilt with a first
  segment big enough to hold it
- Default offsets point at the blob content for Text/Data and at the
  pointer word for every other pointer kind; 0 means "no default"
- CAPNP_BINDGEN_SCHEMA_CAPNP overrides the schema.capnp bundled with pycapnp
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import capnp
from capnp.lib.capnp import _DynamicStructBuilder, _MallocMessageBuilder, _SegmentArrayMessageReader

from capnp_bindgen import config
from capnp_bindgen.core.errors import GeneratorInvariantError
from capnp_bindgen.core.schema import (
    ANNOTATION_TARGETS,
    Annotation,
    Field,
    Node,
    NodeKind,
    Type,
    TypeKind,
    Value,
)

capnp.remove_import_hook()

logger = logging.getLogger(__name__)

# Pointer slots of the schema.capnp structs that offsets are read through.
_NODE_FIELDS_POINTER = 3
_NODE_CONST_VALUE_POINTER = 4
_FIELD_DEFAULT_VALUE_POINTER = 3
_VALUE_POINTER = 0

_NODE_MEMBERS = {
    NodeKind.FILE: "file",
    NodeKind.STRUCT: "struct",
    NodeKind.ENUM: "enum",
    NodeKind.INTERFACE: "interface",
    NodeKind.CONST: "const",
    NodeKind.ANNOTATION: "annotation",
}

_schema_lock = threading.Lock()
_schema_module = None


def schema_path() -> str:
    """Path of the schema.capnp file nodes are encoded against."""
    return config.SCHEMA_CAPNP or os.path.join(os.path.dirname(capnp.__file__), "schema.capnp")


def load_schema_capnp():
    """Parse schema.capnp with pycapnp (once per process).

    schema.capnp imports ``/capnp/c++.capnp``, so the directory above the
    one holding schema.capnp is the import root.

    Raises:
        GeneratorInvariantError: If schema.capnp does not exist.
    """
    global _schema_module
    with _schema_lock:
        if _schema_module is None:
            path = os.path.abspath(schema_path())
            if not os.path.isfile(path):
                raise GeneratorInvariantError(
                    "schema.capnp not found at {} (set CAPNP_BINDGEN_SCHEMA_CAPNP)".format(path))
            root = os.path.dirname(os.path.dirname(path))
            _schema_module = capnp.load(path, imports=[root])
            logger.debug("Loaded %s", path)
        return _schema_module


def _member(kind: TypeKind) -> str:
    """Type/Value union member name for a kind."""
    return "anyPointer" if kind is TypeKind.OBJECT else kind.name.lower()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _fill_type(builder: _DynamicStructBuilder, type_: Type) -> None:
    kind = type_.kind
    if kind is TypeKind.LIST:
        if type_.element_type is None:
            raise GeneratorInvariantError("List type without element type")
        _fill_type(builder.init("list").init("elementType"), type_.element_type)
    elif kind in (TypeKind.ENUM, TypeKind.STRUCT, TypeKind.INTERFACE):
        builder.init(_member(kind)).typeId = type_.type_id
    elif kind is TypeKind.OBJECT:
        builder.init("anyPointer")
    else:
        # Primitive and blob members of Type are Void.
        setattr(builder, _member(kind), None)


def _pointer_value(message: bytes):
    if len(message) < 8 or len(message) % 8:
        raise GeneratorInvariantError("Pre-encoded value is not a whole number of words")
    return _SegmentArrayMessageReader([message]).get_root_as_any()


def _fill_value(builder: _DynamicStructBuilder, value: Value) -> None:
    kind = value.kind
    name = _member(kind)
    payload = value.payload
    if kind in (TypeKind.VOID, TypeKind.INTERFACE):
        setattr(builder, name, None)
    elif kind in (TypeKind.LIST, TypeKind.STRUCT, TypeKind.OBJECT):
        if payload is None:
            builder.init(name)
        else:
            setattr(builder, name, _pointer_value(bytes(payload)))
    elif kind in (TypeKind.TEXT, TypeKind.DATA):
        if payload is None:
            # Select the member and leave its pointer null.
            builder.init(name, 0)
            builder.disown(name)
        elif kind is TypeKind.TEXT:
            builder.text = payload
        else:
            builder.data = bytes(payload)
    elif kind is TypeKind.BOOL:
        builder.bool = bool(payload)
    elif kind in (TypeKind.FLOAT32, TypeKind.FLOAT64):
        setattr(builder, name, 0.0 if payload is None else float(payload))
    else:
        setattr(builder, name, 0 if payload is None else int(payload))


def _fill_annotations(builder: _DynamicStructBuilder, annotations: Sequence[Annotation]) -> None:
    if not annotations:
        return
    items = builder.init("annotations", len(annotations))
    for i, ann in enumerate(annotations):
        items[i].id = ann.id
        _fill_value(items[i].init("value"), ann.value)


def _fill_field(builder: _DynamicStructBuilder, f: Field) -> None:
    builder.name = f.name
    builder.codeOrder = f.code_order
    _fill_annotations(builder, f.annotations)
    builder.discriminantValue = f.discriminant_value
    if f.is_group:
        builder.init("group").typeId = f.group_id
    else:
        slot = builder.init("slot")
        slot.offset = f.offset
        _fill_type(slot.init("type"), f.type)
        _fill_value(slot.init("defaultValue"), f.default_value or Value(f.type.kind))
        slot.hadExplicitDefault = f.had_explicit_default
    if f.ordinal is not None:
        builder.init("ordinal").explicit = f.ordinal


def _fill_node(builder: _DynamicStructBuilder, node: Node) -> None:
    builder.id = node.id
    builder.displayName = node.display_name
    builder.displayNamePrefixLength = node.display_name_prefix_length
    builder.scopeId = node.scope_id

    if node.nested_nodes:
        nested = builder.init("nestedNodes", len(node.nested_nodes))
        for i, n in enumerate(node.nested_nodes):
            nested[i].name = n.name
            nested[i].id = n.id
    _fill_annotations(builder, node.annotations)

    if node.kind is NodeKind.FILE:
        builder.file = None
        return
    body = builder.init(_NODE_MEMBERS[node.kind])
    if node.kind is NodeKind.STRUCT:
        info = node.struct
        body.dataWordCount = info.data_word_count
        body.pointerCount = info.pointer_count
        body.preferredListEncoding = info.preferred_list_encoding
        body.isGroup = info.is_group
        body.discriminantCount = info.discriminant_count
        body.discriminantOffset = info.discriminant_offset
        fields = body.init("fields", len(info.fields))
        for i, f in enumerate(info.fields):
            _fill_field(fields[i], f)
    elif node.kind is NodeKind.ENUM:
        enumerants = body.init("enumerants", len(node.enumerants))
        for i, e in enumerate(node.enumerants):
            enumerants[i].name = e.name
            enumerants[i].codeOrder = e.code_order
            _fill_annotations(enumerants[i], e.annotations)
    elif node.kind is NodeKind.INTERFACE:
        methods = body.init("methods", len(node.methods))
        for i, m in enumerate(node.methods):
            methods[i].name = m.name
            methods[i].codeOrder = m.code_order
            methods[i].paramStructType = m.param_struct_type
            methods[i].resultStructType = m.result_struct_type
            _fill_annotations(methods[i], m.annotations)
    elif node.kind is NodeKind.CONST:
        _fill_type(body.init("type"), node.const.type)
        _fill_value(body.init("value"), node.const.value)
    elif node.kind is NodeKind.ANNOTATION:
        _fill_type(body.init("type"), node.annotation.type)
        for target in ANNOTATION_TARGETS:
            setattr(body, "targets" + target[0].upper() + target[1:], target in node.annotation.targets)


def _build(node: Node, first_segment_words=None) -> List[bytes]:
    message = _MallocMessageBuilder(first_segment_words) if first_segment_words else _MallocMessageBuilder()
    _fill_node(message.init_root(load_schema_capnp().Node), node)
    return [bytes(segment) for segment in message.get_segments_for_output()]


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------


def _word(data: bytes, index: int) -> int:
    return int.from_bytes(data[index * 8:index * 8 + 8], "little")


def _target(data: bytes, at: int) -> int:
    """Word index a near struct or list pointer at ``at`` points to."""
    offset = (_word(data, at) & 0xFFFFFFFF) >> 2
    if offset & (1 << 29):
        offset -= 1 << 30
    return at + 1 + offset


def _pointer_slot(data: bytes, struct_pointer: int, slot: int) -> int:
    """Word index of pointer ``slot`` of the struct ``struct_pointer`` refers to."""
    data_words = (_word(data, struct_pointer) >> 32) & 0xFFFF
    return _target(data, struct_pointer) + data_words + slot


def _value_offset(data: bytes, value_pointer: int, kind: TypeKind) -> int:
    if _word(data, value_pointer) == 0:
        return 0
    at = _pointer_slot(data, value_pointer, _VALUE_POINTER)
    if _word(data, at) == 0:
        return 0
    if kind in (TypeKind.TEXT, TypeKind.DATA):
        return _target(data, at)
    return at


def _field_offsets(data: bytes, node: Node) -> Dict[int, int]:
    fields_pointer = _pointer_slot(data, 0, _NODE_FIELDS_POINTER)
    tag = _target(data, fields_pointer)
    tag_word = _word(data, tag)
    step = ((tag_word >> 32) & 0xFFFF) + ((tag_word >> 48) & 0xFFFF)
    offsets = {}
    for i, f in enumerate(node.struct.fields):
        if f.is_group or f.default_value is None or not f.type.is_pointer:
            continue
        element = tag + 1 + i * step
        value_pointer = element + ((tag_word >> 32) & 0xFFFF) + _FIELD_DEFAULT_VALUE_POINTER
        offset = _value_offset(data, value_pointer, f.type.kind)
        if offset:
            offsets[i] = offset
    return offsets


@dataclass(frozen=True)
class EncodedNode:
    """A node's encoded bytes plus the word offsets of its pointer values."""

    data: bytes
    default_offsets: Dict[int, int] = field(default_factory=dict)
    value_offset: int = 0

    def default_offset(self, field_index: int) -> int:
        return self.default_offsets.get(field_index, 0)

    @property
    def words(self) -> int:
        return len(self.data) // 8


def encode_node(node: Node) -> EncodedNode:
    """Encode a node as a single-segment schema.capnp ``Node`` message."""
    segments = _build(node)
    if len(segments) > 1:
        segments = _build(node, sum(len(s) for s in segments) // 8)
    if len(segments) != 1:
        raise GeneratorInvariantError("Node 0x{:x} did not fit a single segment".format(node.id))
    data = segments[0]

    default_offsets: Dict[int, int] = {}
    value_offset = 0
    if node.kind is NodeKind.STRUCT and node.struct.fields:
        default_offsets = _field_offsets(data, node)
    elif node.kind is NodeKind.CONST:
        value_pointer = _pointer_slot(data, 0, _NODE_CONST_VALUE_POINTER)
        value_offset = _value_offset(data, value_pointer, node.const.value.kind)

    encoded = EncodedNode(data=data, default_offsets=default_offsets, value_offset=value_offset)
    logger.debug("Encoded node 0x%x into %d words", node.id, encoded.words)
    return encoded
