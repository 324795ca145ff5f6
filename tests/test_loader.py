"""Unit tests for the JSON request loader.

WHY: The loader is the only place untrusted input enters. A malformed
request must fail with a RequestFormatError naming where it went wrong,
and a well-formed one must produce exactly the graph the core expects.

HOW: Small request documents are loaded and the resulting dataclasses
inspected; broken variants are checked for the error type and message.

RULES:
- Ids may be integers or 0x-prefixed hex strings
- Bare kind names are accepted for payload-free types
- Every failure is a RequestFormatError (a ValueError)
"""

import copy
import json

import pytest

from capnp_bindgen.core.loader import RequestFormatError, load_request, load_request_file, parse_type, parse_value
from capnp_bindgen.core.schema import NO_DISCRIMINANT, NodeKind, TypeKind

FILE_HEX = "0xa0000000000000a1"

REQUEST = {
    "nodes": [
        {
            "id": FILE_HEX,
            "displayName": "test.capnp",
            "nestedNodes": [{"name": "Foo", "id": "0x10"}],
            "file": {},
        },
        {
            "id": 16,
            "displayName": "test.capnp:Foo",
            "displayNamePrefixLength": 11,
            "scopeId": FILE_HEX,
            "struct": {
                "dataWordCount": 1,
                "pointerCount": 2,
                "discriminantCount": 2,
                "discriminantOffset": 2,
                "fields": [
                    {"name": "a", "slot": {"offset": 0, "type": "uint32", "defaultValue": {"uint32": 7}}},
                    {
                        "name": "t",
                        "discriminantValue": 0,
                        "slot": {"offset": 0, "type": "text", "defaultValue": {"text": "hi"}},
                    },
                    {"name": "items", "slot": {"offset": 1, "type": {"list": {"elementType": "float32"}}}},
                    {"name": "g", "discriminantValue": 1, "group": {"typeId": "0x11"}},
                ],
            },
        },
        {
            "id": "0x11",
            "displayName": "test.capnp:Foo.g",
            "displayNamePrefixLength": 15,
            "scopeId": 16,
            "struct": {"isGroup": True, "fields": []},
        },
    ],
    "requestedFiles": [
        {"id": FILE_HEX, "filename": "test.capnp", "imports": [{"id": "0xb2", "name": "other.capnp"}]},
    ],
}


@pytest.fixture
def request_doc():
    return copy.deepcopy(REQUEST)


class TestLoadRequest:
    def test_builds_graph(self, request_doc):
        request = load_request(request_doc)
        assert len(request.graph) == 3
        file_node = request.graph.get(0xA0000000000000A1)
        assert file_node.kind is NodeKind.FILE
        assert file_node.nested_nodes[0].id == 0x10

    def test_struct_fields(self, request_doc):
        foo = load_request(request_doc).graph.struct(0x10)
        assert foo.name == "Foo"
        assert foo.struct.discriminant_offset == 2
        a, t, items, g = foo.struct.fields
        assert a.type.kind is TypeKind.UINT32
        assert a.default_value.payload == 7
        assert a.discriminant_value == NO_DISCRIMINANT
        assert t.default_value.payload == "hi"
        assert t.discriminant_value == 0
        assert items.type.element_type.kind is TypeKind.FLOAT32
        assert g.is_group and g.group_id == 0x11

    def test_requested_files(self, request_doc):
        requested = load_request(request_doc).requested_files
        assert len(requested) == 1
        assert requested[0].filename == "test.capnp"
        assert requested[0].imports[0].id == 0xB2

    def test_missing_top_level_key(self, request_doc):
        del request_doc["requestedFiles"]
        with pytest.raises(RequestFormatError, match="Invalid request at <root>"):
            load_request(request_doc)

    def test_node_with_two_kinds(self, request_doc):
        request_doc["nodes"][0]["enum"] = {}
        with pytest.raises(RequestFormatError, match="nodes/0"):
            load_request(request_doc)

    def test_field_with_slot_and_group(self, request_doc):
        request_doc["nodes"][1]["struct"]["fields"][0]["group"] = {"typeId": 1}
        with pytest.raises(RequestFormatError):
            load_request(request_doc)

    def test_bad_id_string(self, request_doc):
        request_doc["nodes"][1]["id"] = "16"
        with pytest.raises(RequestFormatError):
            load_request(request_doc)

    def test_error_is_value_error(self, request_doc):
        request_doc["nodes"] = "nope"
        with pytest.raises(ValueError):
            load_request(request_doc)


class TestParsers:
    def test_type_shorthand(self):
        assert parse_type("bool").kind is TypeKind.BOOL
        assert parse_type("anyPointer").kind is TypeKind.OBJECT

    def test_shorthand_without_payload_rejected(self):
        with pytest.raises(RequestFormatError, match="needs a payload"):
            parse_type("struct")

    def test_struct_type_id(self):
        assert parse_type({"struct": {"typeId": "0xff"}}).type_id == 0xFF

    def test_float_specials(self):
        assert parse_value({"float64": "-inf"}).payload == float("-inf")
        with pytest.raises(RequestFormatError):
            parse_value({"float32": "huge"})

    def test_data_value(self):
        assert parse_value({"data": [1, 2, 255]}).payload == b"\x01\x02\xff"
        with pytest.raises(RequestFormatError):
            parse_value({"data": [256]})

    def test_null_pointer_value(self):
        value = parse_value({"struct": None})
        assert value.payload is None
        assert not value.has_pointer

    def test_integer_from_string(self):
        assert parse_value({"uint64": "0xffffffffffffffff"}).payload == 0xFFFFFFFFFFFFFFFF


class TestLoadRequestFile:
    def test_reads_file(self, tmp_path):
        path = tmp_path / "request.json"
        path.write_text(json.dumps(REQUEST), encoding="utf-8")
        assert len(load_request_file(path).requested_files) == 1

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "request.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RequestFormatError, match="not valid JSON"):
            load_request_file(path)


class TestMalformedValues:
    @pytest.mark.parametrize("raw", [{"oops": 1}, [1.5], True])
    def test_float_payload_must_be_number(self, raw):
        with pytest.raises(RequestFormatError, match="must be a number"):
            parse_value({"float32": raw})

    def test_float32_out_of_range(self):
        with pytest.raises(RequestFormatError, match="out of range for float32"):
            parse_value({"float32": 1e40})
        assert parse_value({"float64": 1e40}).payload == 1e40

    def test_integer_string_not_a_number(self):
        with pytest.raises(RequestFormatError, match="Invalid integer 'zz'"):
            parse_value({"uint32": "zz"})

    @pytest.mark.parametrize("raw", [
        {"uint8": 300},
        {"uint8": -1},
        {"int8": 128},
        {"int16": -32769},
        {"uint64": "0x10000000000000000"},
        {"enum": 65536},
    ])
    def test_integer_out_of_range(self, raw):
        with pytest.raises(RequestFormatError, match="out of range"):
            parse_value(raw)

    def test_integer_bounds_accepted(self):
        assert parse_value({"int8": -128}).payload == -128
        assert parse_value({"uint8": 255}).payload == 255
        assert parse_value({"int64": "-0x8000000000000000"}).payload == -(1 << 63)

    def test_bool_payload_must_be_boolean(self):
        with pytest.raises(RequestFormatError, match="true or false"):
            parse_value({"bool": "yes"})

    def test_type_id_not_hex(self):
        with pytest.raises(RequestFormatError, match="Invalid id 'zz'"):
            parse_type({"struct": {"typeId": "zz"}})

    def test_type_id_wrong_shape(self):
        with pytest.raises(RequestFormatError, match="Invalid id"):
            parse_type({"enum": {"typeId": [1]}})

    def test_malformed_const_in_request(self, request_doc):
        request_doc["nodes"].append({
            "id": "0x20",
            "displayName": "test.capnp:limit",
            "scopeId": FILE_HEX,
            "const": {"type": "uint8", "value": {"uint8": 300}},
        })
        with pytest.raises(RequestFormatError, match="300 is out of range for uint8"):
            load_request(request_doc)
