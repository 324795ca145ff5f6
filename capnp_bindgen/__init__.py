"""capnp-bindgen: Cap'n Proto schema → Python binding generator.

WHY: A compiled Cap'n Proto schema is a graph of declarations with fixed
binary layouts. Application code wants typed accessors over that layout,
with defaults, unions and groups handled exactly as the wire format
specifies. This package turns a code-generator request into one Python
module per schema file.

HOW: Three-stage pipeline: load (JSON request → schema graph), resolve
(slots, names, canonical encodings), generate (pluggable generators).
Each stage is independently testable.

RULES:
- All generators consume the same SchemaGraph
- Generated code talks to the wire format only through the runtime module
- The core is pure: no environment, no I/O, no global state
"""

__version__ = "0.1.0"
