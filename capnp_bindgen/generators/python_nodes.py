"""Per-node assembly of generated classes and embedded schemas.

WHY: A schema file is a tree of declarations. Each declaration becomes a
Python class (structs, enums, and namespaces that own nested
declarations) or a module/class attribute (constants), and each carries
its encoded schema node so the runtime can read defaults and reflect on
the type.

HOW: make_node_text() recurses pre-order: nested declarations first, then
the group types of a struct (named by the TitleCase field name), then the
node's own members. It returns the class text and, separately, the
``schemas[...]`` definitions of the node and all of its descendants so the
module can emit every schema before any class refers to it.

RULES:
- Never called on file nodes
- Struct classes list discriminant constants, nested classes, layout
  constants, then the Reader and Builder views
- FIELD_LIST is declaration order; MEMBERS_BY_DISCRIMINANT holds field
  indices of union members by discriminant, then the other fields;
  MEMBERS_BY_NAME holds field indices sorted by name
- Primitive constants are inline literals and need no schema entry
- Declarations and members never rebind a name the generated scope
  defines itself (see names.attribute_name)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from capnp_bindgen.core.canonical import EncodedNode, encode_node
from capnp_bindgen.core.context import GenerationContext
from capnp_bindgen.core.errors import GeneratorInvariantError
from capnp_bindgen.core.names import (
    attribute_name,
    enumerant_name,
    hex_id,
    literal_value,
    to_snake_case,
    to_title_case,
    to_upper_case,
    type_name,
)
from capnp_bindgen.core.schema import Node, NodeKind, TypeKind
from capnp_bindgen.generators.python_fields import make_field_text

logger = logging.getLogger(__name__)

INDENT = "    "


@dataclass
class NodeText:
    """Generated text of one node and its descendants."""

    class_text: str
    schema_defs: str


def schema_literal(node_id: int, data: bytes) -> str:
    """``schemas['<hex>'] = bytes([...])`` with eight bytes per line."""
    lines = ["schemas['{}'] = bytes([".format(hex_id(node_id))]
    for start in range(0, len(data), 8):
        word = data[start:start + 8]
        lines.append(INDENT + " ".join("{:3d},".format(b) for b in word))
    lines.append("])")
    return "\n".join(lines) + "\n\n"


def _schema_ref(node: Node, word_offset: int) -> str:
    return "schemas['{}'][{}:]".format(hex_id(node.id), word_offset * 8)


def _const_text(ctx: GenerationContext, name: str, node: Node, encoded: EncodedNode, indent: str):
    """Return (declaration, needs_schema) for a const node bound as ``name``."""
    const = node.const
    kind = const.type.kind

    if kind is TypeKind.ENUM:
        ordinal = int(const.value.scalar)
        literal = literal_value(ctx, const.type, const.value)
        symbol = enumerant_name(ctx, const.type, ordinal)
        comment = "  # {}".format(symbol) if symbol else ""
        return "{}{} = {}{}\n".format(indent, name, literal, comment), False
    if const.type.is_data or kind is TypeKind.VOID:
        return "{}{} = {}\n".format(indent, name, literal_value(ctx, const.type, const.value)), False
    if kind in (TypeKind.INTERFACE, TypeKind.OBJECT):
        return "", False

    payload = const.value.payload
    if payload is None:
        return "{}{} = None\n".format(indent, name), False
    ref = _schema_ref(node, encoded.value_offset)
    if kind is TypeKind.TEXT:
        expr = "capnp.genhelper.ConstText({}, {})".format(ref, len(payload.encode("utf-8")))
    elif kind is TypeKind.DATA:
        expr = "capnp.genhelper.ConstData({}, {})".format(ref, len(payload))
    elif kind is TypeKind.STRUCT:
        expr = "capnp.genhelper.ConstStruct(lambda: {}, {})".format(type_name(ctx, const.type), ref)
    else:
        expr = "capnp.genhelper.ConstList(lambda: {}, {})".format(type_name(ctx, const.type), ref)
    return "{}{} = {}\n".format(indent, name, expr), True


def _tuple_literal(items: List[str]) -> str:
    if len(items) == 1:
        return "({},)".format(items[0])
    return "({})".format(", ".join(items))


def _view_text(full_name, name, node, field_blocks, view, indent) -> List[str]:
    """Render the Reader or Builder class of a struct."""
    info = node.struct
    inner = indent + INDENT
    attr = "_reader" if view == "Reader" else "_builder"
    out = ["{}class {}:".format(indent, view)]

    if view == "Reader":
        out += [
            "{}def __init__(self, _reader=None):".format(inner),
            "{}    if _reader is None:".format(inner),
            "{}        _reader = capnp.genhelper.NULL_STRUCT_READER".format(inner),
            "{}    self._reader = _reader".format(inner),
            "",
        ]
    else:
        out += [
            "{}def __init__(self, _builder):".format(inner),
            "{}    self._builder = _builder".format(inner),
            "",
        ]

    if info.discriminant_count:
        out += [
            "{}def which(self):".format(inner),
            "{}    return self.{}.get_data_field_uint16({})".format(inner, attr, info.discriminant_offset),
            "",
        ]

    for block in field_blocks:
        if block:
            out.append(block.rstrip("\n"))
            out.append("")

    if view == "Reader":
        out += [
            "{}def _get_parent_type(self):".format(inner),
            "{}    return {}".format(inner, full_name),
            "",
            "{}def _get_reader(self):".format(inner),
            "{}    return self._reader".format(inner),
            "",
            "{}def total_size_in_words(self):".format(inner),
            "{}    return self._reader.total_size()".format(inner),
            "",
        ]
    else:
        out += [
            "{}def as_reader(self):".format(inner),
            "{}    return {}.Reader(self._builder.as_reader())".format(inner, full_name),
            "",
            "{}def _get_builder(self):".format(inner),
            "{}    return self._builder".format(inner),
            "",
            "{}def total_size_in_words(self):".format(inner),
            "{}    return self.as_reader().total_size_in_words()".format(inner),
            "",
        ]

    has_members, get_members = [], []
    for f in info.fields:
        if not f.is_group and f.type.kind is TypeKind.INTERFACE:
            has_members.append("None")
            get_members.append("None")
        else:
            has_members.append("self.has_{}".format(to_snake_case(f.name)))
            get_members.append("self.get_{}".format(to_snake_case(f.name)))
    which_arg = ", self.which()" if info.discriminant_count else ""
    out += [
        "{}def __str__(self):".format(inner),
        "{}    return capnp.genhelper.to_string_helper(".format(inner),
        '{}        self, "{}.{}", {}.FIELD_LIST,'.format(inner, name, view, full_name),
        "{}        {},".format(inner, _tuple_literal(has_members) if has_members else "()"),
        "{}        {}{})".format(inner, _tuple_literal(get_members) if get_members else "()", which_arg),
        "",
    ]
    return out


def _struct_text(ctx, scope, name, node, indent, encoded, nested) -> str:
    info = node.struct
    full_name = "{}.{}".format(scope, name)
    body = indent + INDENT
    method_indent = body + INDENT

    out = ["{}class {}:".format(indent, name)]

    discriminants = [f for f in info.fields if f.has_discriminant_value]
    if info.discriminant_count and discriminants:
        for f in discriminants:
            constant = attribute_name(NodeKind.STRUCT, to_upper_case(f.name))
            out.append("{}{} = {}".format(body, constant, f.discriminant_value))
        out.append("")

    for text in nested:
        if text.class_text:
            out.append(text.class_text.rstrip("\n"))
            out.append("")

    by_discriminant = [info.fields.index(f) for f in info.union_fields]
    by_discriminant += [info.fields.index(f) for f in info.non_union_fields]
    by_name = sorted(range(len(info.fields)), key=lambda i: info.fields[i].name)

    out += [
        "{}STRUCT_SIZE = capnp.genhelper.StructSize({}, {}, {})".format(
            body, info.data_word_count, info.pointer_count, info.preferred_list_encoding),
        "{}ELEMENT_SIZE = 7  # inline composite".format(body),
        "{}FIELD_LIST = {}".format(body, _tuple_literal(['"{}"'.format(f.name) for f in info.fields])
                                   if info.fields else "()"),
        "{}MEMBERS_BY_DISCRIMINANT = {}".format(body, _tuple_literal([str(i) for i in by_discriminant])
                                                if by_discriminant else "()"),
        "{}MEMBERS_BY_NAME = {}".format(body, _tuple_literal([str(i) for i in by_name]) if by_name else "()"),
        '{}TYPE_NAME = "{}"'.format(body, full_name.split(".", 1)[1]),
        "",
        "{}@classmethod".format(body),
        "{}def get_orphan_reader(cls, builder):".format(body),
        "{}    return cls.Reader(builder.as_struct_reader(cls.STRUCT_SIZE))".format(body),
        "",
        "{}@classmethod".format(body),
        "{}def get_orphan(cls, builder):".format(body),
        "{}    return cls.Builder(builder.as_struct(cls.STRUCT_SIZE))".format(body),
        "",
        "{}copy_orphan = staticmethod(capnp.layout.OrphanBuilder.copy_struct)".format(body),
        "",
    ]

    field_texts = [
        make_field_text(ctx, full_name, node, f, method_indent, encoded) for f in info.fields
    ]
    out += _view_text(full_name, name, node, [t.reader for t in field_texts], "Reader", body)
    out += _view_text(full_name, name, node, [t.builder for t in field_texts], "Builder", body)
    return "\n".join(out).rstrip("\n") + "\n"


def _enum_text(name: str, node: Node, indent: str) -> str:
    body = indent + INDENT
    out = ["{}class {}:".format(indent, name)]
    for ordinal, e in enumerate(node.enumerants):
        out.append("{}{} = {}".format(body, attribute_name(NodeKind.ENUM, to_upper_case(e.name)), ordinal))
    table = ", ".join('{}: "{}"'.format(i, e.name) for i, e in enumerate(node.enumerants))
    out.append("{}ENUMERANTS = {{{}}}".format(body, table))
    return "\n".join(out) + "\n"


def _namespace_text(name: str, nested: List[NodeText], indent: str) -> str:
    blocks = [n.class_text.rstrip("\n") for n in nested if n.class_text]
    if not blocks:
        return ""
    return "{}class {}:\n{}\n".format(indent, name, "\n\n".join(blocks))


def make_node_text(ctx: GenerationContext, scope: str, name: str, node: Node, indent: str) -> NodeText:
    """Render one declaration and everything nested in it.

    Args:
        ctx: Per-file generation context.
        scope: Qualified name of the enclosing class or module alias.
        name: Unqualified name of the declaration. Constants are bound
            UPPER_CASE, and names the scope already defines get a trailing
            underscore.
        node: The declaration's schema node.
        indent: Indentation of the declaration itself.

    Returns:
        NodeText with the class (or attribute) text and the schema
        definitions of the node and its descendants.

    Raises:
        GeneratorInvariantError: If called on a file node.
    """
    if node.kind is NodeKind.FILE:
        raise GeneratorInvariantError("make_node_text() must not be called on file nodes")

    scope_kind = ctx.graph.get(node.scope_id).kind if node.scope_id in ctx.graph else None
    if node.kind is NodeKind.CONST:
        name = to_upper_case(name)
    name = attribute_name(scope_kind, name)
    full_name = "{}.{}".format(scope, name)
    inner = indent + INDENT

    nested = [
        make_node_text(ctx, full_name, n.name, ctx.graph.get(n.id), inner)
        for n in node.nested_nodes
    ]
    if node.kind is NodeKind.STRUCT:
        for f in node.struct.fields:
            if f.is_group:
                nested.append(make_node_text(
                    ctx, full_name, to_title_case(f.name), ctx.graph.struct(f.group_id), inner))

    encoded = encode_node(node)
    needs_schema = True

    if node.kind is NodeKind.STRUCT:
        class_text = _struct_text(ctx, scope, name, node, indent, encoded, nested)
    elif node.kind is NodeKind.ENUM:
        class_text = _enum_text(name, node, indent)
    elif node.kind is NodeKind.CONST:
        class_text, needs_schema = _const_text(ctx, name, node, encoded, indent)
    else:
        class_text = _namespace_text(name, nested, indent)

    schema_defs = schema_literal(node.id, encoded.data) if needs_schema else ""
    schema_defs += "".join(n.schema_defs for n in nested)
    logger.debug("Assembled %s (%s)", full_name, node.kind.name.lower())
    return NodeText(class_text=class_text, schema_defs=schema_defs)
