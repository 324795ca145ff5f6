"""Fatal error types raised by the generator core.

WHY: Generation is a pure, deterministic transformation. When it fails, it
fails identically on every retry, so the only useful thing the caller can do
is report the error and stop. Typed exceptions let the CLI distinguish a
corrupt schema graph from a bug in the generator itself.

HOW: Two exception classes, one per failure category. Both derive from
GenerationError so callers can catch the whole family at once.

RULES:
- SchemaIntegrityError: the input graph is corrupt or mismatched
- GeneratorInvariantError: the generator asked for something it never should
- Interface-typed fields are NOT errors; they degrade to empty bindings
"""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for all fatal generation failures."""


class SchemaIntegrityError(GenerationError):
    """Raised when the schema graph violates a structural invariant.

    WHY: A node whose declared scope does not list it among its nested
    nodes (or a reference to an id that was never loaded) means the graph
    does not describe a single consistent schema.

    HOW: Raised by the name resolver and by SchemaGraph lookups.

    RULES:
    - Message names the offending node id in hex
    """

    def __init__(self, message: str, node_id: int | None = None) -> None:
        self.node_id = node_id
        if node_id is not None:
            message = "{} (node 0x{:x})".format(message, node_id)
        super().__init__(message)


class GeneratorInvariantError(GenerationError):
    """Raised when generator code is invoked on a value it cannot handle.

    Example: asking for an inline literal of a struct-typed value, or a bit
    width for a pointer-section type.
    """
