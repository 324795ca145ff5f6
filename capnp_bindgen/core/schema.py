"""Schema graph dataclasses: the immutable input of every generation run.

WHY: The generator never parses schema text. It receives a fully resolved
graph of declarations (files, structs, enums, interfaces, constants,
annotations), each keyed by a stable 64-bit id, and must look nodes up by
id while walking the tree. These dataclasses are the single well-typed
form of that graph that every other module consumes.

HOW: Frozen dataclasses mirror the shape of ``schema.capnp``:
  Type / Value   — tagged variants over TypeKind
  Field          — a slot field or a group field, optionally a union member
  StructInfo     — layout metadata plus the field list of a struct node
  Node           — one declaration with its kind-specific payload
  SchemaGraph    — the id → Node arena with integrity-checked lookup
  RequestedFile / CodeGeneratorRequest — what to generate

RULES:
- Nodes are created once by the loader and never mutated
- Cross references are by id only (no object pointers between nodes)
- TypeKind and NodeKind values equal the schema.capnp union discriminants
- Absent pointer values (no default) are None, never an empty payload
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from capnp_bindgen.core.errors import SchemaIntegrityError

# Field.discriminant_value for fields that are not union members.
NO_DISCRIMINANT = 0xFFFF


class TypeKind(enum.Enum):
    """Closed set of type (and value) kinds, valued by union discriminant."""

    VOID = 0
    BOOL = 1
    INT8 = 2
    INT16 = 3
    INT32 = 4
    INT64 = 5
    UINT8 = 6
    UINT16 = 7
    UINT32 = 8
    UINT64 = 9
    FLOAT32 = 10
    FLOAT64 = 11
    TEXT = 12
    DATA = 13
    LIST = 14
    ENUM = 15
    STRUCT = 16
    INTERFACE = 17
    OBJECT = 18


class NodeKind(enum.Enum):
    """Kind of a schema node, valued by the Node union discriminant."""

    FILE = 0
    STRUCT = 1
    ENUM = 2
    INTERFACE = 3
    CONST = 4
    ANNOTATION = 5


# Kinds stored in the data section of a struct.
DATA_KINDS = frozenset({
    TypeKind.BOOL, TypeKind.INT8, TypeKind.INT16, TypeKind.INT32, TypeKind.INT64,
    TypeKind.UINT8, TypeKind.UINT16, TypeKind.UINT32, TypeKind.UINT64,
    TypeKind.FLOAT32, TypeKind.FLOAT64, TypeKind.ENUM,
})

# Kinds stored in the pointer section of a struct.
POINTER_KINDS = frozenset({
    TypeKind.TEXT, TypeKind.DATA, TypeKind.LIST, TypeKind.STRUCT,
    TypeKind.INTERFACE, TypeKind.OBJECT,
})

# Annotation target flags in schema.capnp declaration order.
ANNOTATION_TARGETS = (
    "file", "const", "enum", "enumerant", "struct", "field",
    "union", "group", "interface", "method", "param", "annotation",
)


@dataclass(frozen=True)
class Type:
    """A reference to a type.

    ``type_id`` is set for ENUM, STRUCT and INTERFACE; ``element_type`` for LIST.
    """

    kind: TypeKind
    type_id: int = 0
    element_type: Optional[Type] = None

    @property
    def is_data(self) -> bool:
        return self.kind in DATA_KINDS

    @property
    def is_pointer(self) -> bool:
        return self.kind in POINTER_KINDS


@dataclass(frozen=True)
class Value:
    """A default or constant value, tagged by the kind of the type it belongs to.

    WHY: Default values must be reproduced bit-exactly, and "no default" must
    be distinguishable from "default is empty" for pointer kinds.

    HOW: ``payload`` holds a bool/int/float for scalar kinds, an enumerant
    ordinal for ENUM, ``str`` for TEXT, ``bytes`` for DATA, and for STRUCT,
    LIST and OBJECT the bytes of a canonical single-segment message whose
    root pointer is the value.

    RULES:
    - payload None on a pointer kind means the pointer is null (absent)
    - payload None on a scalar kind reads as zero
    """

    kind: TypeKind
    payload: Union[bool, int, float, str, bytes, None] = None

    @property
    def has_pointer(self) -> bool:
        return self.kind in POINTER_KINDS and self.payload is not None

    @property
    def scalar(self) -> Union[bool, int, float]:
        if self.payload is None:
            return False if self.kind is TypeKind.BOOL else 0
        return self.payload  # type: ignore[return-value]


@dataclass(frozen=True)
class Annotation:
    id: int
    value: Value


@dataclass(frozen=True)
class NestedNode:
    name: str
    id: int


@dataclass(frozen=True)
class Field:
    """One member of a struct: either a slot field or a group field.

    WHY: Slot fields occupy a physical location in the struct; group fields
    point at an anonymous nested struct node whose fields share the
    container's storage. Either kind may be a union member.

    RULES:
    - group_id != 0 marks a group field; type/offset/default_value are unused
    - offset is in units of the field type's own width (bits for BOOL)
    - discriminant_value == NO_DISCRIMINANT means "not a union member"
    """

    name: str
    code_order: int = 0
    discriminant_value: int = NO_DISCRIMINANT
    annotations: Tuple[Annotation, ...] = ()
    offset: int = 0
    type: Optional[Type] = None
    default_value: Optional[Value] = None
    had_explicit_default: bool = False
    group_id: int = 0
    ordinal: Optional[int] = None

    @property
    def is_group(self) -> bool:
        return self.group_id != 0

    @property
    def has_discriminant_value(self) -> bool:
        return self.discriminant_value != NO_DISCRIMINANT


@dataclass(frozen=True)
class StructInfo:
    data_word_count: int = 0
    pointer_count: int = 0
    preferred_list_encoding: int = 0
    is_group: bool = False
    discriminant_count: int = 0
    discriminant_offset: int = 0
    fields: Tuple[Field, ...] = ()

    @property
    def union_fields(self) -> Tuple[Field, ...]:
        members = [f for f in self.fields if f.has_discriminant_value]
        return tuple(sorted(members, key=lambda f: f.discriminant_value))

    @property
    def non_union_fields(self) -> Tuple[Field, ...]:
        return tuple(f for f in self.fields if not f.has_discriminant_value)


@dataclass(frozen=True)
class Enumerant:
    name: str
    code_order: int = 0
    annotations: Tuple[Annotation, ...] = ()


@dataclass(frozen=True)
class Method:
    name: str
    code_order: int = 0
    param_struct_type: int = 0
    result_struct_type: int = 0
    annotations: Tuple[Annotation, ...] = ()


@dataclass(frozen=True)
class ConstInfo:
    type: Type
    value: Value


@dataclass(frozen=True)
class AnnotationInfo:
    type: Type
    targets: frozenset = frozenset()


@dataclass(frozen=True)
class Node:
    """One schema declaration.

    WHY: Every declaration the generator can emit (and the file that holds
    them) is a node. Nodes reference each other by id so the graph can be
    shared read-only between concurrent generations.

    HOW: ``kind`` selects which payload attribute is meaningful:
    ``struct`` for STRUCT, ``enumerants`` for ENUM, ``methods`` for
    INTERFACE, ``const`` for CONST, ``annotation`` for ANNOTATION.

    RULES:
    - scope_id == 0 only for file nodes (top level)
    - a nonzero scope_id must list this node among its nested_nodes,
      except for group nodes, which are reached through Field.group_id
    - display_name[display_name_prefix_length:] is the short name
    """

    id: int
    display_name: str
    kind: NodeKind
    display_name_prefix_length: int = 0
    scope_id: int = 0
    nested_nodes: Tuple[NestedNode, ...] = ()
    annotations: Tuple[Annotation, ...] = ()
    struct: Optional[StructInfo] = None
    enumerants: Tuple[Enumerant, ...] = ()
    methods: Tuple[Method, ...] = ()
    const: Optional[ConstInfo] = None
    annotation: Optional[AnnotationInfo] = None

    @property
    def name(self) -> str:
        return self.display_name[self.display_name_prefix_length:]

    def find_annotation(self, annotation_id: int) -> Optional[Annotation]:
        for ann in self.annotations:
            if ann.id == annotation_id:
                return ann
        return None


class SchemaGraph:
    """Immutable id → Node arena.

    Lookups of unknown ids raise SchemaIntegrityError: a type reference to a
    node that was never loaded means the graph is incomplete.
    """

    def __init__(self, nodes: Union[Mapping[int, Node], "list[Node]", Tuple[Node, ...]]) -> None:
        if isinstance(nodes, Mapping):
            self._nodes: Dict[int, Node] = dict(nodes)
        else:
            self._nodes = {node.id: node for node in nodes}

    def get(self, node_id: int) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise SchemaIntegrityError("Referenced node is not present in the schema graph", node_id) from None

    def struct(self, node_id: int) -> Node:
        node = self.get(node_id)
        if node.kind is not NodeKind.STRUCT or node.struct is None:
            raise SchemaIntegrityError("Expected a struct node", node_id)
        return node

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)


@dataclass(frozen=True)
class Import:
    id: int
    name: str


@dataclass(frozen=True)
class RequestedFile:
    """A file the caller wants bindings for, with the imports it declared."""

    id: int
    filename: str
    imports: Tuple[Import, ...] = ()


@dataclass(frozen=True)
class CodeGeneratorRequest:
    graph: SchemaGraph
    requested_files: Tuple[RequestedFile, ...] = field(default_factory=tuple)
