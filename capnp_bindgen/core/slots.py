"""Physical slot resolution for structs and groups.

WHY: Initializing a group must zero exactly the storage its fields occupy,
and "does this group have any field set" must test exactly that storage.
Groups nest, union members overlap, and a union discriminant lives beside
the fields, so the set of locations is not simply the field list.

HOW: collect_slots() walks the struct's fields, inlining group nodes
recursively, and adds the 16-bit discriminant slot when the struct has a
union. resolve_slots() sorts candidates by physical position and drops any
candidate contained in the previously kept slot.

RULES:
- Sort: section, then data bit start ascending (ties: wider first), then
  pointer index ascending; remaining ties break on type kind
- Every data width is a power of two, so overlaps are always containments
  and only the previously kept slot needs to be checked
- Void slots occupy no storage and are always dropped
- Result is independent of field declaration order
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Tuple

from capnp_bindgen.core.errors import GeneratorInvariantError
from capnp_bindgen.core.schema import DATA_KINDS, POINTER_KINDS, Node, SchemaGraph, TypeKind

logger = logging.getLogger(__name__)

_TYPE_SIZE_BITS = {
    TypeKind.BOOL: 1,
    TypeKind.INT8: 8,
    TypeKind.INT16: 16,
    TypeKind.INT32: 32,
    TypeKind.INT64: 64,
    TypeKind.UINT8: 8,
    TypeKind.UINT16: 16,
    TypeKind.UINT32: 32,
    TypeKind.UINT64: 64,
    TypeKind.FLOAT32: 32,
    TypeKind.FLOAT64: 64,
    TypeKind.ENUM: 16,
}


class Section(enum.IntEnum):
    NONE = 0
    DATA = 1
    POINTERS = 2


def type_size_bits(kind: TypeKind) -> int:
    """Width in bits of a data-section type."""
    try:
        return _TYPE_SIZE_BITS[kind]
    except KeyError:
        raise GeneratorInvariantError(
            "type_size_bits() called for non-data type {}".format(kind.name)
        ) from None


def section_for(kind: TypeKind) -> Section:
    if kind is TypeKind.VOID:
        return Section.NONE
    if kind in DATA_KINDS:
        return Section.DATA
    if kind in POINTER_KINDS:
        return Section.POINTERS
    raise GeneratorInvariantError("No section for type {}".format(kind.name))


@dataclass(frozen=True)
class Slot:
    """A resolved physical location.

    ``offset`` is in units of the kind's own width for data slots and is the
    pointer index for pointer slots.
    """

    kind: TypeKind
    offset: int

    @property
    def section(self) -> Section:
        return section_for(self.kind)

    @property
    def bits(self) -> int:
        return type_size_bits(self.kind)

    @property
    def bit_start(self) -> int:
        return self.offset * self.bits

    def is_superset_of(self, other: Slot) -> bool:
        section = self.section
        if section is not other.section:
            return False
        if section is Section.NONE:
            return True
        if section is Section.DATA:
            start, other_start = self.bit_start, other.bit_start
            return start <= other_start and other_start + other.bits <= start + self.bits
        return self.offset == other.offset

    def sort_key(self) -> Tuple[int, int, int, int]:
        section = self.section
        if section is Section.DATA:
            return (section, self.bit_start, -self.bits, self.kind.value)
        if section is Section.POINTERS:
            return (section, self.offset, 0, self.kind.value)
        return (section, 0, 0, self.kind.value)


def collect_slots(graph: SchemaGraph, struct_node: Node) -> List[Slot]:
    """Gather candidate slots of a struct, groups inlined, unsorted."""
    info = struct_node.struct
    if info is None:
        raise GeneratorInvariantError("collect_slots() requires a struct node")

    slots: List[Slot] = []
    if info.discriminant_count > 0:
        slots.append(Slot(TypeKind.UINT16, info.discriminant_offset))

    for f in info.fields:
        if f.is_group:
            slots.extend(collect_slots(graph, graph.struct(f.group_id)))
        else:
            slots.append(Slot(f.type.kind, f.offset))
    return slots


def resolve_slots(graph: SchemaGraph, struct_node: Node) -> List[Slot]:
    """Return the sorted, redundancy-free slots owned by a struct.

    Args:
        graph: The schema graph used to look up group nodes.
        struct_node: A struct (or group) node.

    Returns:
        Slots ordered by physical position; no slot contains another.
    """
    candidates = sorted(collect_slots(graph, struct_node), key=Slot.sort_key)

    result: List[Slot] = []
    prev = Slot(TypeKind.VOID, 0)
    for slot in candidates:
        if prev.is_superset_of(slot):
            continue
        # Equal starts sort wider first, so a later slot never contains prev.
        assert not slot.is_superset_of(prev)
        result.append(slot)
        prev = slot

    logger.debug(
        "Resolved %d slots (%d candidates) for %s",
        len(result), len(candidates), struct_node.display_name,
    )
    return result
