"""Accessor generation for individual struct fields.

WHY: Every field of a struct gets a family of methods on the generated
Reader and Builder classes. Which methods exist, which runtime primitive
they call, and which default they pass all depend on the field's category,
and union members additionally need a guard on the struct's discriminant.

HOW: make_field_text() dispatches on the field category (void, data,
interface, object, blob/struct/list, group) and renders two blocks of
Python method definitions, one for the Reader and one for the Builder.
make_discriminant_checks() renders the guard snippets once per field and
both blocks splice them in.

RULES:
- has_*: a union member that is not current reports False
- get_*/disown_*: a union member that is not current raises UsageError
- set_*/init_*/adopt_*: a union member first becomes current
- A nonzero default bit pattern selects the *_masked data accessor and is
  passed as the trailing argument; a zero default passes nothing
- Pointer defaults are slices of the containing node's embedded schema
- Group init zeroes exactly the group's resolved slots
- Interface-typed fields produce no accessors
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from capnp_bindgen.core.canonical import EncodedNode, encode_node
from capnp_bindgen.core.context import GenerationContext
from capnp_bindgen.core.names import (
    attribute_name,
    default_mask,
    hex_id,
    to_snake_case,
    to_title_case,
    to_upper_case,
    type_name,
    type_name_short,
)
from capnp_bindgen.core.schema import Field, Node, NodeKind, TypeKind
from capnp_bindgen.core.slots import Section, Slot, resolve_slots

logger = logging.getLogger(__name__)

USAGE_ERROR_MESSAGE = "Must check which() before reading a union member."

_BLOB_HELPERS = {TypeKind.TEXT: "text_blob", TypeKind.DATA: "data_blob"}


@dataclass
class FieldText:
    """Rendered accessor methods of one field for each view."""

    reader: str = ""
    builder: str = ""


@dataclass
class DiscriminantChecks:
    """Guard snippets of one field; all empty for non-union fields.

    ``has``, ``check`` and ``set`` are method-body lines (relative indent);
    the ``*_is_decl`` strings are complete ``is_*`` methods.
    """

    has: List[str] = field(default_factory=list)
    check: List[str] = field(default_factory=list)
    set: List[str] = field(default_factory=list)
    reader_is_decl: str = ""
    builder_is_decl: str = ""


def _method(indent: str, signature: str, body: List[str]) -> str:
    lines = ["{}def {}:".format(indent, signature)]
    lines.extend("{}    {}".format(indent, line) if line else "" for line in body)
    return "\n".join(lines) + "\n\n"


def make_discriminant_checks(scope: str, struct_node: Node, f: Field, indent: str) -> DiscriminantChecks:
    """Build the union guards for a field of ``struct_node``.

    Args:
        scope: Qualified name of the struct class owning the field.
        struct_node: The struct (or group) the field belongs to.
        f: The field.
        indent: Indentation of method definitions.
    """
    if not f.has_discriminant_value:
        return DiscriminantChecks()

    constant = "{}.{}".format(scope, attribute_name(NodeKind.STRUCT, to_upper_case(f.name)))
    offset = struct_node.struct.discriminant_offset
    is_decl = _method(
        indent,
        "is_{}(self)".format(to_snake_case(f.name)),
        ["return self.which() == {}".format(constant)],
    )
    return DiscriminantChecks(
        has=[
            "if self.which() != {}:".format(constant),
            "    return False",
        ],
        check=[
            "if self.which() != {}:".format(constant),
            '    raise capnp.UsageError("{}")'.format(USAGE_ERROR_MESSAGE),
        ],
        set=["self._builder.set_data_field_uint16({}, {})".format(offset, constant)],
        reader_is_decl=is_decl,
        builder_is_decl=is_decl,
    )


# ---------------------------------------------------------------------------
# Per-category renderers
# ---------------------------------------------------------------------------


def _slot_test(view: str, slot: Slot) -> Optional[str]:
    if slot.section is Section.DATA:
        return "self.{}.has_data_field_{}({})".format(view, type_name_short(slot.kind), slot.offset)
    if slot.section is Section.POINTERS:
        return "not self.{}.is_pointer_field_null({})".format(view, slot.offset)
    return None


def _presence_body(view: str, slots: List[Slot]) -> List[str]:
    tests = [t for t in (_slot_test(view, s) for s in slots) if t]
    if not tests:
        return ["return False"]
    if len(tests) == 1:
        return ["return {}".format(tests[0])]
    body = ["return ({}".format(tests[0])]
    body.extend("        or {}".format(t) for t in tests[1:])
    body[-1] += ")"
    return body


def _clear_lines(slots: List[Slot]) -> List[str]:
    lines = []
    for slot in slots:
        if slot.section is Section.DATA:
            zero = "False" if slot.kind is TypeKind.BOOL else "0"
            lines.append("self._builder.set_data_field_{}({}, {})".format(
                type_name_short(slot.kind), slot.offset, zero))
        elif slot.section is Section.POINTERS:
            lines.append("self._builder.clear_pointer_field({})".format(slot.offset))
    return lines


def _group_text(ctx, scope, f, name, checks, indent) -> FieldText:
    group_node = ctx.graph.struct(f.group_id)
    slots = resolve_slots(ctx.graph, group_node)
    group_type = "{}.{}".format(scope, attribute_name(NodeKind.STRUCT, to_title_case(f.name)))

    reader = [checks.reader_is_decl]
    reader.append(_method(indent, "has_{}(self)".format(name), checks.has + _presence_body("_reader", slots)))
    reader.append(_method(indent, "get_{}(self)".format(name),
                          checks.check + ["return {}.Reader(self._reader)".format(group_type)]))

    builder = [checks.builder_is_decl]
    builder.append(_method(indent, "has_{}(self)".format(name), checks.has + _presence_body("_builder", slots)))
    builder.append(_method(indent, "get_{}(self)".format(name),
                           checks.check + ["return {}.Builder(self._builder)".format(group_type)]))
    builder.append(_method(indent, "init_{}(self)".format(name),
                           checks.set + _clear_lines(slots)
                           + ["return {}.Builder(self._builder)".format(group_type)]))
    return FieldText("".join(reader), "".join(builder))


def _void_text(name, checks, indent) -> FieldText:
    has = _method(indent, "has_{}(self)".format(name), checks.has + ["return False"])
    get = _method(indent, "get_{}(self)".format(name), checks.check + ["return None"])
    setter = _method(indent, "set_{}(self, value=None)".format(name), checks.set or ["pass"])
    return FieldText(
        checks.reader_is_decl + has + get,
        checks.builder_is_decl + has + get + setter,
    )


def _data_text(f, name, checks, indent) -> FieldText:
    kind = f.type.kind
    tag = type_name_short(kind)
    mask = default_mask(kind, f.default_value)
    suffix = "_masked" if mask else ""
    mask_param = ", {}".format(mask) if mask else ""
    offset = f.offset

    def views(view: str) -> str:
        return (
            _method(indent, "has_{}(self)".format(name),
                    checks.has + ["return self.{}.has_data_field_{}({})".format(view, tag, offset)])
            + _method(indent, "get_{}(self)".format(name),
                      checks.check + ["return self.{}.get_data_field_{}{}({}{})".format(
                          view, tag, suffix, offset, mask_param)])
        )

    setter = _method(
        indent,
        "set_{}(self, value)".format(name),
        checks.set + ["self._builder.set_data_field_{}{}({}, value{})".format(tag, suffix, offset, mask_param)],
    )
    return FieldText(
        checks.reader_is_decl + views("_reader"),
        checks.builder_is_decl + views("_builder") + setter,
    )


def _default_param(struct_node: Node, encoded: EncodedNode, index: int, f: Field) -> str:
    word = encoded.default_offset(index)
    if word == 0:
        return ""
    param = ", schemas['{}'][{}:]".format(hex_id(struct_node.id), word * 8)
    if f.type.kind is TypeKind.TEXT:
        param += ", {}".format(len(f.default_value.payload.encode("utf-8")))
    elif f.type.kind is TypeKind.DATA:
        param += ", {}".format(len(f.default_value.payload))
    return param


def _object_text(f, name, checks, indent, default_param) -> FieldText:
    idx = f.offset
    has_body = "return not self.{{}}.is_pointer_field_null({})".format(idx)

    reader = (
        checks.reader_is_decl
        + _method(indent, "has_{}(self)".format(name), checks.has + [has_body.format("_reader")])
        + _method(indent, "get_{}(self, type_=capnp.AnyPointer)".format(name), checks.check + [
            "return capnp.genhelper.object_get_from_reader(type_, self._reader, {}{})".format(idx, default_param)])
    )
    builder = (
        checks.builder_is_decl
        + _method(indent, "has_{}(self)".format(name), checks.has + [has_body.format("_builder")])
        + _method(indent, "get_{}(self, type_=capnp.AnyPointer)".format(name), checks.check + [
            "return capnp.genhelper.object_get_from_builder(type_, self._builder, {}{})".format(idx, default_param)])
        + _method(indent, "set_{}(self, type_, value)".format(name), checks.set + [
            "capnp.genhelper.object_set(type_, self._builder, {}, value)".format(idx)])
        + _method(indent, "init_{}(self, type_, *args)".format(name), checks.set + [
            "return capnp.genhelper.object_init(self._builder, {}, type_, *args)".format(idx)])
        + _method(indent, "adopt_{}(self, type_, value)".format(name), checks.set + [
            "capnp.genhelper.object_adopt(type_, self._builder, {}, value)".format(idx)])
        + _method(indent, "disown_{}(self, type_)".format(name), checks.check + [
            "return capnp.genhelper.object_disown(type_, self._builder, {})".format(idx)])
    )
    return FieldText(reader, builder)


def _pointer_text(ctx, f, name, checks, indent, default_param) -> FieldText:
    kind = f.type.kind
    type_ = type_name(ctx, f.type)
    idx = f.offset
    has_body = "return not self.{{}}.is_pointer_field_null({})".format(idx)

    if kind is TypeKind.STRUCT:
        reader_get = "return {}.Reader(self._reader.get_struct_field({}{}))".format(type_, idx, default_param)
        builder_get = "return {0}.Builder(self._builder.get_struct_field({1}, {0}.STRUCT_SIZE{2}))".format(
            type_, idx, default_param)
        init = _method(indent, "init_{}(self)".format(name), checks.set + [
            "return {0}.Builder(self._builder.init_struct_field({1}, {0}.STRUCT_SIZE))".format(type_, idx)])
    else:
        reader_get = "return {}.get_reader(self._reader, {}{})".format(type_, idx, default_param)
        builder_get = "return {}.get_builder(self._builder, {}{})".format(type_, idx, default_param)
        init = _method(indent, "init_{}(self, size)".format(name), checks.set + [
            "return {}.init_builder(self._builder, {}, size)".format(type_, idx)])

    if kind in _BLOB_HELPERS:
        helper = "capnp.genhelper.{}".format(_BLOB_HELPERS[kind])
        set_call = "{}_set(self._builder, {}, value)".format(helper, idx)
        adopt_call = "{}_adopt(self._builder, {}, value)".format(helper, idx)
        disown_call = "{}_disown(self._builder, {})".format(helper, idx)
    else:
        helper = "capnp.genhelper.{}".format("struct" if kind is TypeKind.STRUCT else "list")
        set_call = "{}_set({}, self._builder, {}, value)".format(helper, type_, idx)
        adopt_call = "{}_adopt({}, self._builder, {}, value)".format(helper, type_, idx)
        disown_call = "{}_disown({}, self._builder, {})".format(helper, type_, idx)

    reader = (
        checks.reader_is_decl
        + _method(indent, "has_{}(self)".format(name), checks.has + [has_body.format("_reader")])
        + _method(indent, "get_{}(self)".format(name), checks.check + [reader_get])
    )
    builder = (
        checks.builder_is_decl
        + _method(indent, "has_{}(self)".format(name), checks.has + [has_body.format("_builder")])
        + _method(indent, "get_{}(self)".format(name), checks.check + [builder_get])
        + _method(indent, "set_{}(self, value)".format(name), checks.set + [set_call])
        + init
        + _method(indent, "adopt_{}(self, value)".format(name), checks.set + [adopt_call])
        + _method(indent, "disown_{}(self)".format(name), checks.check + ["return " + disown_call])
    )
    return FieldText(reader, builder)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def make_field_text(
    ctx: GenerationContext,
    scope: str,
    struct_node: Node,
    f: Field,
    indent: str,
    encoded: Optional[EncodedNode] = None,
) -> FieldText:
    """Render the Reader and Builder accessors of one field.

    Args:
        ctx: Per-file generation context.
        scope: Qualified name of the struct class, e.g. ``module.Foo``.
        struct_node: The struct (or group) node that declares ``f``.
        f: The field to render.
        indent: Indentation of the method definitions.
        encoded: The canonical encoding of ``struct_node``; computed on
                 demand when a pointer default needs it.

    Returns:
        FieldText with the reader and builder method blocks.
    """
    name = to_snake_case(f.name)
    checks = make_discriminant_checks(scope, struct_node, f, indent)

    if f.is_group:
        return _group_text(ctx, scope, f, name, checks, indent)

    kind = f.type.kind
    if kind is TypeKind.VOID:
        return _void_text(name, checks, indent)
    if f.type.is_data:
        return _data_text(f, name, checks, indent)
    if kind is TypeKind.INTERFACE:
        logger.debug("Interface field %s.%s has no accessors", struct_node.display_name, f.name)
        return FieldText()

    default_param = ""
    if f.default_value is not None and f.default_value.has_pointer:
        if encoded is None:
            encoded = encode_node(struct_node)
        default_param = _default_param(struct_node, encoded, struct_node.struct.fields.index(f), f)

    if kind is TypeKind.OBJECT:
        return _object_text(f, name, checks, indent, default_param)
    return _pointer_text(ctx, f, name, checks, indent, default_param)
