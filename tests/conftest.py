"""Shared schema builders and fixtures for the capnp_bindgen test suite.

WHY: Almost every test needs a small schema graph: a file node, a struct
or two, maybe a group or a union. Building frozen Node dataclasses by hand
in every test would bury the interesting part under boilerplate.

HOW: Plain builder functions create nodes and fields with sensible
defaults (display names, prefix lengths, scope back-links). Fixtures make
the fake runtime importable and execute generated modules in memory.

RULES:
- FILE_ID is the requested file in every builder-made graph
- Builders never validate; tests may build broken graphs on purpose
- Generated modules are registered in sys.modules only for one test
"""

import sys
import types
from pathlib import Path
from typing import Optional, Sequence

import pytest

from capnp_bindgen.core.context import GenerationContext, GeneratorOptions
from capnp_bindgen.core.schema import (
    NO_DISCRIMINANT,
    Annotation,
    ConstInfo,
    Enumerant,
    Field,
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

TESTS_DIR = Path(__file__).resolve().parent

FILE_ID = 0xA0000000000000A1
FILE_NAME = "test.capnp"
FAKE_RUNTIME = "fake_capnp_runtime"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def file_node(
    node_id: int = FILE_ID,
    name: str = FILE_NAME,
    nested: Sequence[Node] = (),
    annotations: Sequence[Annotation] = (),
) -> Node:
    return Node(
        id=node_id,
        display_name=name,
        kind=NodeKind.FILE,
        nested_nodes=tuple(NestedNode(n.name, n.id) for n in nested),
        annotations=tuple(annotations),
    )


def _display(scope_name: str, name: str):
    sep = ":" if scope_name.endswith(".capnp") else "."
    prefix = scope_name + sep
    return prefix + name, len(prefix)


def struct_node(
    node_id: int,
    name: str,
    fields: Sequence[Field] = (),
    scope_id: int = FILE_ID,
    scope_name: str = FILE_NAME,
    data_words: int = 1,
    pointers: int = 0,
    nested: Sequence[Node] = (),
    discriminant_count: int = 0,
    discriminant_offset: int = 0,
    is_group: bool = False,
) -> Node:
    display, prefix = _display(scope_name, name)
    return Node(
        id=node_id,
        display_name=display,
        display_name_prefix_length=prefix,
        kind=NodeKind.STRUCT,
        scope_id=scope_id,
        nested_nodes=tuple(NestedNode(n.name, n.id) for n in nested),
        struct=StructInfo(
            data_word_count=data_words,
            pointer_count=pointers,
            is_group=is_group,
            discriminant_count=discriminant_count,
            discriminant_offset=discriminant_offset,
            fields=tuple(fields),
        ),
    )


def enum_node(node_id: int, name: str, enumerants: Sequence[str], scope_id: int = FILE_ID,
              scope_name: str = FILE_NAME) -> Node:
    display, prefix = _display(scope_name, name)
    return Node(
        id=node_id,
        display_name=display,
        display_name_prefix_length=prefix,
        kind=NodeKind.ENUM,
        scope_id=scope_id,
        enumerants=tuple(Enumerant(e, i) for i, e in enumerate(enumerants)),
    )


def const_node(node_id: int, name: str, type_: Type, value: Value, scope_id: int = FILE_ID,
               scope_name: str = FILE_NAME) -> Node:
    display, prefix = _display(scope_name, name)
    return Node(
        id=node_id,
        display_name=display,
        display_name_prefix_length=prefix,
        kind=NodeKind.CONST,
        scope_id=scope_id,
        const=ConstInfo(type=type_, value=value),
    )


def slot_field(
    name: str,
    kind: TypeKind,
    offset: int = 0,
    default: Optional[Value] = None,
    discriminant: int = NO_DISCRIMINANT,
    type_id: int = 0,
    element: Optional[Type] = None,
    code_order: int = 0,
) -> Field:
    return Field(
        name=name,
        code_order=code_order,
        discriminant_value=discriminant,
        offset=offset,
        type=Type(kind, type_id=type_id, element_type=element),
        default_value=default,
    )


def group_field(name: str, group_id: int, discriminant: int = NO_DISCRIMINANT) -> Field:
    return Field(name=name, discriminant_value=discriminant, group_id=group_id)


def make_context(nodes: Sequence[Node], file_id: int = FILE_ID, **options) -> GenerationContext:
    graph = SchemaGraph(list(nodes))
    return GenerationContext(graph, RequestedFile(file_id, FILE_NAME), GeneratorOptions(**options))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_runtime(monkeypatch):
    """Make tests/fake_capnp_runtime.py importable; returns its module name."""
    monkeypatch.syspath_prepend(str(TESTS_DIR))
    return FAKE_RUNTIME


@pytest.fixture
def load_generated(monkeypatch, fake_runtime):
    """Execute generated source as a module against the fake runtime.

    Returns a callable ``load(content, name="generated_capnp")``.
    """

    def load(content: str, name: str = "generated_capnp") -> types.ModuleType:
        module = types.ModuleType(name)
        monkeypatch.setitem(sys.modules, name, module)
        exec(compile(content, name + ".py", "exec"), module.__dict__)
        return module

    return load
