"""Execute generated modules against the in-memory runtime double.

WHY: Text assertions prove the generator emits what it intends; only
running the output proves the intent is right. Union guards, masked
defaults, embedded default offsets and group initialization are all
behaviours of the generated code, not of the generator.

HOW: A schema file with a union, masked defaults, a group, a struct field
and a text constant is generated with ``fake_capnp_runtime`` as the
runtime module, executed in memory, and driven through its Builder and
Reader classes.

RULES:
- Setting a union member makes it current
- Reading a non-current member raises UsageError; has_* reports False
- Unset scalar fields read as their defaults
- Setting a scalar to its default stores zero bits
- Members named like generated class attributes leave those attributes intact
"""

import pytest

from capnp_bindgen.core.context import GeneratorOptions
from capnp_bindgen.core.schema import RequestedFile, SchemaGraph, Type, TypeKind, Value
from capnp_bindgen.generators.python_module import PythonGenerator

from conftest import (
    FAKE_RUNTIME,
    FILE_ID,
    FILE_NAME,
    const_node,
    file_node,
    group_field,
    slot_field,
    struct_node,
)

SHAPE_ID = 0x600
POS_ID = 0x601
POINT_ID = 0x602
GREETING_ID = 0x603


def _schema_nodes():
    shape = struct_node(
        SHAPE_ID, "Shape",
        [
            slot_field("circle", TypeKind.FLOAT64, 1, discriminant=0),
            slot_field("square", TypeKind.UINT32, 1, discriminant=1),
            slot_field("label", TypeKind.TEXT, 0, discriminant=2),
            slot_field("count", TypeKind.INT32, 4, Value(TypeKind.INT32, -5)),
            slot_field("flag", TypeKind.BOOL, 160, Value(TypeKind.BOOL, True)),
            slot_field("name", TypeKind.TEXT, 1, Value(TypeKind.TEXT, "anon")),
            slot_field("origin", TypeKind.STRUCT, 2, type_id=POINT_ID),
            group_field("pos", POS_ID),
        ],
        data_words=4,
        pointers=3,
        discriminant_count=3,
        discriminant_offset=0,
    )
    pos = struct_node(
        POS_ID, "pos",
        [slot_field("x", TypeKind.INT32, 6), slot_field("y", TypeKind.INT32, 7)],
        scope_id=SHAPE_ID,
        is_group=True,
    )
    point = struct_node(POINT_ID, "Point", [slot_field("x", TypeKind.INT32, 0)])
    greeting = const_node(GREETING_ID, "greeting", Type(TypeKind.TEXT), Value(TypeKind.TEXT, "hello"))
    return [file_node(nested=[shape, point, greeting]), shape, pos, point, greeting]


@pytest.fixture
def generated(load_generated):
    generator = PythonGenerator(GeneratorOptions(runtime_module=FAKE_RUNTIME))
    output = generator.generate_file(SchemaGraph(_schema_nodes()), RequestedFile(FILE_ID, FILE_NAME))
    return load_generated(output.content)


@pytest.fixture
def shape(generated):
    root = generated.capnp.new_root(generated.Shape.STRUCT_SIZE)
    return generated.Shape.Builder(root)


class TestModuleSurface:
    def test_runtime_bound_as_capnp(self, generated):
        assert generated.capnp.__name__ == FAKE_RUNTIME

    def test_module_alias(self, generated):
        assert generated.module is generated

    def test_discriminant_constants(self, generated):
        assert generated.Shape.CIRCLE == 0
        assert generated.Shape.SQUARE == 1
        assert generated.Shape.LABEL == 2
        assert generated.Shape.STRUCT_SIZE.data_words == 4

    def test_text_constant_reads_embedded_schema(self, generated):
        assert generated.GREETING.get() == "hello"


class TestUnion:
    def test_set_member_makes_it_current(self, shape, generated):
        shape.set_square(7)
        assert shape.which() == generated.Shape.SQUARE
        assert shape.is_square()
        assert shape.get_square() == 7

    def test_reading_other_member_raises(self, shape, generated):
        shape.set_square(7)
        with pytest.raises(generated.capnp.UsageError, match="which()"):
            shape.get_circle()

    def test_has_other_member_is_false(self, shape):
        shape.set_square(7)
        assert shape.has_square()
        assert not shape.has_circle()
        assert not shape.has_label()

    def test_reader_applies_same_guards(self, shape, generated):
        shape.set_label("tri")
        reader = shape.as_reader()
        assert reader.which() == generated.Shape.LABEL
        assert reader.which() == 2
        assert reader.get_label() == "tri"
        assert not reader.has_square()
        with pytest.raises(generated.capnp.UsageError):
            reader.get_square()

    def test_switching_members(self, shape, generated):
        shape.set_square(7)
        shape.set_circle(2.5)
        assert shape.which() == generated.Shape.CIRCLE
        assert shape.get_circle() == 2.5

    def test_str_includes_current_member(self, shape):
        shape.set_square(7)
        assert "square = 7" in str(shape.as_reader())
        assert "circle" not in str(shape.as_reader())


class TestDefaults:
    def test_unset_scalars_read_defaults(self, shape):
        assert shape.get_count() == -5
        assert shape.get_flag() is True

    def test_values_round_trip_through_mask(self, shape):
        shape.set_count(12)
        shape.set_flag(False)
        reader = shape.as_reader()
        assert reader.get_count() == 12
        assert reader.get_flag() is False

    def test_setting_default_stores_zero(self, shape):
        shape.set_count(-5)
        assert not shape.has_count()
        shape.set_count(0)
        assert shape.has_count()

    def test_null_text_reads_default(self, shape):
        assert shape.as_reader().get_name() == "anon"
        shape.set_name("bob")
        assert shape.as_reader().get_name() == "bob"

    def test_null_reader_reads_defaults(self, generated):
        reader = generated.Shape.Reader()
        assert reader.get_count() == -5
        assert reader.get_name() == "anon"


class TestStructAndGroupFields:
    def test_struct_field_builder(self, shape):
        shape.get_origin().set_x(5)
        assert shape.has_origin()
        assert shape.as_reader().get_origin().get_x() == 5

    def test_group_shares_parent_storage(self, shape):
        pos = shape.init_pos()
        pos.set_x(3)
        pos.set_y(-4)
        assert shape.has_pos()
        assert shape.as_reader().get_pos().get_y() == -4

    def test_group_init_clears_fields(self, shape):
        shape.get_pos().set_x(9)
        shape.init_pos()
        assert shape.get_pos().get_x() == 0
        assert not shape.has_pos()

    def test_group_init_leaves_other_fields(self, shape):
        shape.set_square(11)
        shape.set_count(1)
        shape.init_pos()
        assert shape.get_square() == 11
        assert shape.get_count() == 1


CLASH_ID = 0x610
CLASH_GROUP_ID = 0x611


@pytest.fixture
def clash_module(load_generated):
    clash = struct_node(
        CLASH_ID, "Clash",
        [
            slot_field("structSize", TypeKind.UINT32, 1, discriminant=0),
            slot_field("typeName", TypeKind.TEXT, 0, discriminant=1),
            group_field("reader", CLASH_GROUP_ID),
        ],
        data_words=2,
        pointers=1,
        discriminant_count=2,
        discriminant_offset=0,
    )
    group = struct_node(
        CLASH_GROUP_ID, "reader",
        [slot_field("depth", TypeKind.UINT16, 4)],
        scope_id=CLASH_ID,
        is_group=True,
    )
    nodes = [file_node(nested=[clash]), clash, group]
    generator = PythonGenerator(GeneratorOptions(runtime_module=FAKE_RUNTIME))
    output = generator.generate_file(SchemaGraph(nodes), RequestedFile(FILE_ID, FILE_NAME))
    return load_generated(output.content, "clash_capnp")


class TestNameClashes:
    def test_layout_constants_survive(self, clash_module):
        assert clash_module.Clash.STRUCT_SIZE.data_words == 2
        assert clash_module.Clash.TYPE_NAME == "Clash"
        assert clash_module.Clash.STRUCT_SIZE_ == 0
        assert clash_module.Clash.TYPE_NAME_ == 1

    def test_union_member_named_struct_size(self, clash_module):
        clash = clash_module.Clash.Builder(clash_module.capnp.new_root(clash_module.Clash.STRUCT_SIZE))
        clash.set_struct_size(7)
        assert clash.which() == clash_module.Clash.STRUCT_SIZE_
        assert clash.get_struct_size() == 7
        clash.set_type_name("t")
        assert clash.is_type_name()

    def test_group_named_reader(self, clash_module):
        clash = clash_module.Clash.Builder(clash_module.capnp.new_root(clash_module.Clash.STRUCT_SIZE))
        clash.init_reader().set_depth(3)
        reader = clash.as_reader()
        assert isinstance(reader, clash_module.Clash.Reader)
        assert isinstance(clash.get_reader(), clash_module.Clash.Reader_.Builder)
        assert reader.get_reader().get_depth() == 3
