"""Per-file generation context and generator options.

WHY: Name resolution has one side effect: every time it crosses into a
top-level node of another file it must remember that file, so the emitted
module imports only what it uses. Keeping that set in a global would make
concurrent generation of several files unsafe. An explicit context object
threaded through every resolver call keeps each file's bookkeeping private.

HOW: GeneratorOptions carries the knobs that reach the core (runtime module
name, module annotation id). GenerationContext bundles the shared read-only
graph, the file being generated, the options, and a fresh used-imports set.

RULES:
- One GenerationContext per requested file per run; never shared
- The graph is shared read-only between contexts
- Options come from the caller; the core reads no environment variables
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Set

from capnp_bindgen.core.schema import RequestedFile, SchemaGraph

DEFAULT_RUNTIME_MODULE = "capnp_runtime"

# Annotation whose Text value names the Python module a file generates into.
DEFAULT_MODULE_ANNOTATION_ID = 0x8DB73C0D097E6E8B


@dataclass(frozen=True)
class GeneratorOptions:
    """Options that shape generated code.

    Attributes:
        runtime_module: Importable name of the wire-format runtime. Generated
                        modules import it as ``capnp``.
        module_annotation_id: Id of the annotation that overrides the Python
                              module name of a schema file.
    """

    runtime_module: str = DEFAULT_RUNTIME_MODULE
    module_annotation_id: int = DEFAULT_MODULE_ANNOTATION_ID


@dataclass
class GenerationContext:
    """Mutable state of one file's generation."""

    graph: SchemaGraph
    requested_file: RequestedFile
    options: GeneratorOptions = field(default_factory=GeneratorOptions)
    used_imports: Set[int] = field(default_factory=set)

    @property
    def file_id(self) -> int:
        return self.requested_file.id
