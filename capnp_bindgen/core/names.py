"""Type names, qualified declaration names, literals and default masks.

WHY: Generated accessors refer to other declarations by their fully
qualified Python name, pick low-level runtime operations by a short
primitive tag, and bake default values into masked reads and writes. All
of that is derived from type references and the ancestor chain of a node.

HOW: full_name() walks scope ids up to the file node and joins the nested
names found in each parent's nested-node list. Top-level file nodes
resolve to ``module`` (the file being generated), ``import_<hex>`` (another
file, recorded in the context's used imports) or ``capnp_generated_<hex>``
(a file carrying the module annotation). type_name() maps a Type to the
runtime class that wraps it; literal_value() and default_mask() render
values as Python source.

RULES:
- A scope that does not list the node as nested is a SchemaIntegrityError
- Only resolutions into a different file touch ctx.used_imports
- Masks are the raw storage bit pattern of the default (two's complement
  for signed integers, IEEE-754 bits for floats), rendered in hex
- A default whose bit pattern is zero has no mask (None)
- literal_value() on a pointer kind is a GeneratorInvariantError
"""

from __future__ import annotations

import logging
import math
import re
import struct
from typing import Optional

from capnp_bindgen.core.context import GenerationContext, GeneratorOptions
from capnp_bindgen.core.errors import GeneratorInvariantError, SchemaIntegrityError
from capnp_bindgen.core.schema import Node, NodeKind, Type, TypeKind, Value

logger = logging.getLogger(__name__)

_SHORT_NAMES = {
    TypeKind.BOOL: "bool",
    TypeKind.INT8: "int8",
    TypeKind.INT16: "int16",
    TypeKind.INT32: "int32",
    TypeKind.INT64: "int64",
    TypeKind.UINT8: "uint8",
    TypeKind.UINT16: "uint16",
    TypeKind.UINT32: "uint32",
    TypeKind.UINT64: "uint64",
    TypeKind.FLOAT32: "float32",
    TypeKind.FLOAT64: "float64",
    TypeKind.ENUM: "uint16",
}

_PRIM_NAMES = {
    TypeKind.VOID: "capnp.prim.Void",
    TypeKind.BOOL: "capnp.prim.bool",
    TypeKind.INT8: "capnp.prim.int8_t",
    TypeKind.INT16: "capnp.prim.int16_t",
    TypeKind.INT32: "capnp.prim.int32_t",
    TypeKind.INT64: "capnp.prim.int64_t",
    TypeKind.UINT8: "capnp.prim.uint8_t",
    TypeKind.UINT16: "capnp.prim.uint16_t",
    TypeKind.UINT32: "capnp.prim.uint32_t",
    TypeKind.UINT64: "capnp.prim.uint64_t",
    TypeKind.FLOAT32: "capnp.prim.float32_t",
    TypeKind.FLOAT64: "capnp.prim.float64_t",
    TypeKind.TEXT: "capnp.blob.Text",
    TypeKind.DATA: "capnp.blob.Data",
    TypeKind.OBJECT: "capnp.AnyPointer",
}

_INT_BITS = {
    TypeKind.INT8: 8, TypeKind.INT16: 16, TypeKind.INT32: 32, TypeKind.INT64: 64,
    TypeKind.UINT8: 8, TypeKind.UINT16: 16, TypeKind.UINT32: 32, TypeKind.UINT64: 64,
    TypeKind.ENUM: 16,
}

_NON_IDENTIFIER_RE = re.compile(r"[^0-9A-Za-z_]")


# ---------------------------------------------------------------------------
# Identifier case conversion
# ---------------------------------------------------------------------------


def to_upper_case(name: str) -> str:
    """``fooBar`` → ``FOO_BAR``; an underscore precedes each inner capital."""
    out = []
    for c in name:
        if "a" <= c <= "z":
            out.append(c.upper())
        elif out and "A" <= c <= "Z":
            out.append("_")
            out.append(c)
        else:
            out.append(c)
    return "".join(out)


def to_title_case(name: str) -> str:
    if name and "a" <= name[0] <= "z":
        return name[0].upper() + name[1:]
    return name


def to_snake_case(name: str) -> str:
    """``fooBar`` → ``foo_bar``, used for accessor method suffixes."""
    return to_upper_case(name).lower()


def hex_id(node_id: int) -> str:
    return format(node_id, "x")


# ---------------------------------------------------------------------------
# Module naming
# ---------------------------------------------------------------------------


def _identifier(text: str) -> str:
    text = _NON_IDENTIFIER_RE.sub("_", text)
    if not text or text[0].isdigit():
        text = "_" + text
    return text


def module_name_for(display_name: str) -> str:
    """Derive a Python module name from a schema file name.

    ``foo/bar.capnp`` → ``bar_capnp``.
    """
    base = display_name.rsplit("/", 1)[-1]
    if base.endswith(".capnp"):
        base = base[: -len(".capnp")] + "_capnp"
    return _identifier(base)


def annotated_module_name(node: Node, options: GeneratorOptions) -> Optional[str]:
    annotation = node.find_annotation(options.module_annotation_id)
    if annotation is None or not isinstance(annotation.value.payload, str) or not annotation.value.payload:
        return None
    return annotation.value.payload


def python_module_name(node: Node, options: GeneratorOptions) -> str:
    """Dotted import path of the module generated for a file node.

    WHY: Generated modules import each other by this path, and
    output_filename() writes each module to the matching location below
    the output directory, so the two must never disagree.

    RULES:
    - An annotated file uses the annotated module path verbatim
    - Otherwise every directory of the display name becomes a package
      component: ``proto/v1/addressbook.capnp`` → ``proto.v1.addressbook_capnp``
    - Empty and ``.`` components are dropped; other components are made
      into identifiers like module names
    """
    annotated = annotated_module_name(node, options)
    if annotated:
        return annotated
    directories = node.display_name.split("/")[:-1]
    parts = [_identifier(d) for d in directories if d not in ("", ".")]
    parts.append(module_name_for(node.display_name))
    return ".".join(parts)


def output_filename(file_node: Node, options: GeneratorOptions) -> str:
    """Relative path of the generated module for a file node."""
    return python_module_name(file_node, options).replace(".", "/") + ".py"


def top_level_alias(ctx: GenerationContext, node: Node) -> str:
    """Name under which a top-level (file) node is visible in generated code."""
    if node.id != ctx.file_id:
        ctx.used_imports.add(node.id)
    if annotated_module_name(node, ctx.options) is not None:
        return "capnp_generated_{}".format(hex_id(node.id))
    if node.id == ctx.file_id:
        return "module"
    return "import_{}".format(hex_id(node.id))


# Names the generated code binds in every class or module of that kind.
_GENERATED_ATTRIBUTES = {
    NodeKind.FILE: frozenset({"sys", "capnp", "module", "schemas"}),
    NodeKind.STRUCT: frozenset({
        "STRUCT_SIZE", "ELEMENT_SIZE", "FIELD_LIST", "MEMBERS_BY_DISCRIMINANT",
        "MEMBERS_BY_NAME", "TYPE_NAME", "Reader", "Builder",
        "get_orphan_reader", "get_orphan", "copy_orphan",
    }),
    NodeKind.ENUM: frozenset({"ENUMERANTS"}),
}


def attribute_name(scope_kind: Optional[NodeKind], name: str) -> str:
    """Name a declaration or member is bound to inside a generated scope.

    WHY: Struct classes, enum classes and modules carry attributes of their
    own (``STRUCT_SIZE``, ``Reader``, ``schemas``...). A union member called
    ``structSize`` or a group called ``reader`` must not overwrite them.

    RULES:
    - A name the scope's generated code already binds gets a trailing ``_``
    - Every other name is returned unchanged
    """
    if name in _GENERATED_ATTRIBUTES.get(scope_kind, ()):
        return name + "_"
    return name


# ---------------------------------------------------------------------------
# Qualified names and type names
# ---------------------------------------------------------------------------


def full_name(ctx: GenerationContext, node: Node) -> str:
    """Fully qualified name of a declaration, e.g. ``module.Outer.Inner``."""
    if node.scope_id == 0:
        return top_level_alias(ctx, node)

    parent = ctx.graph.get(node.scope_id)
    for nested in parent.nested_nodes:
        if nested.id == node.id:
            return "{}.{}".format(full_name(ctx, parent), attribute_name(parent.kind, nested.name))
    raise SchemaIntegrityError(
        "A schema node's supposed scope did not contain the node as a nested node",
        node.id,
    )


def type_name_short(kind: TypeKind) -> str:
    """Primitive tag selecting low-level accessors, ``""`` for non-data kinds."""
    return _SHORT_NAMES.get(kind, "")


def type_name(ctx: GenerationContext, type_: Type) -> str:
    kind = type_.kind
    if kind in (TypeKind.ENUM, TypeKind.STRUCT, TypeKind.INTERFACE):
        return full_name(ctx, ctx.graph.get(type_.type_id))
    if kind is TypeKind.LIST:
        return list_type_name(ctx, type_.element_type)
    return _PRIM_NAMES[kind]


def list_type_name(ctx: GenerationContext, element: Type) -> str:
    kind = element.kind
    if kind in (TypeKind.STRUCT, TypeKind.INTERFACE, TypeKind.OBJECT):
        return "capnp.list.ListOfStructs({})".format(type_name(ctx, element))
    if kind is TypeKind.LIST:
        return "capnp.list.ListOfLists({})".format(type_name(ctx, element))
    if kind is TypeKind.TEXT:
        return "capnp.list.ListOfBlobs(capnp.blob.Text)"
    if kind is TypeKind.DATA:
        return "capnp.list.ListOfBlobs(capnp.blob.Data)"
    if kind is TypeKind.ENUM:
        return "capnp.list.ListOfEnums({})".format(type_name(ctx, element))
    return "capnp.list.ListOfPrimitives({})".format(type_name(ctx, element))


# ---------------------------------------------------------------------------
# Literals and default masks
# ---------------------------------------------------------------------------


def _float32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def _float_literal(value: float) -> str:
    if math.isnan(value):
        return 'float("nan")'
    if math.isinf(value):
        return 'float("inf")' if value > 0 else 'float("-inf")'
    return repr(value)


def literal_value(ctx: GenerationContext, type_: Type, value: Value) -> str:
    """Render a primitive value as a Python expression.

    Enum values render as their ordinal; see enumerant_name() for the
    symbolic form.
    """
    kind = value.kind
    if kind is TypeKind.VOID:
        return "None"
    if kind is TypeKind.BOOL:
        return "True" if value.scalar else "False"
    if kind in _INT_BITS and kind is not TypeKind.ENUM:
        return str(int(value.scalar))
    if kind is TypeKind.FLOAT32:
        return _float_literal(_float32(float(value.scalar)))
    if kind is TypeKind.FLOAT64:
        return _float_literal(float(value.scalar))
    if kind is TypeKind.ENUM:
        # Resolving the name records a cross-file dependency if there is one.
        full_name(ctx, ctx.graph.get(type_.type_id))
        return str(int(value.scalar))
    raise GeneratorInvariantError("literal_value() can only be used on primitive types.")


def enumerant_name(ctx: GenerationContext, type_: Type, ordinal: int) -> Optional[str]:
    enum_node = ctx.graph.get(type_.type_id)
    if enum_node.kind is not NodeKind.ENUM or not 0 <= ordinal < len(enum_node.enumerants):
        return None
    symbol = attribute_name(NodeKind.ENUM, to_upper_case(enum_node.enumerants[ordinal].name))
    return "{}.{}".format(full_name(ctx, enum_node), symbol)


def default_bits(kind: TypeKind, value: Optional[Value]) -> int:
    """Storage bit pattern of a scalar default; 0 when absent."""
    if value is None or value.payload is None:
        return 0
    if kind is TypeKind.BOOL:
        return 1 if value.payload else 0
    if kind in _INT_BITS:
        return int(value.payload) & ((1 << _INT_BITS[kind]) - 1)
    if kind is TypeKind.FLOAT32:
        return struct.unpack("<I", struct.pack("<f", float(value.payload)))[0]
    if kind is TypeKind.FLOAT64:
        return struct.unpack("<Q", struct.pack("<d", float(value.payload)))[0]
    raise GeneratorInvariantError("default_bits() called for non-scalar kind {}".format(kind.name))


def default_mask(kind: TypeKind, value: Optional[Value]) -> Optional[str]:
    """Mask argument for masked data accessors, or None for a zero default."""
    bits = default_bits(kind, value)
    if bits == 0:
        return None
    if kind is TypeKind.BOOL:
        return "True"
    return hex(bits)
