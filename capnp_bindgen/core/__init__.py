"""Core schema model, layout and naming modules.

WHY: The core package contains the language-independent heart of the
generator: the schema graph dataclasses, the request loader, slot
resolution, name resolution and canonical node encoding. Every output
language builds on these.

HOW: schema.py defines the data structures, loader.py builds them from a
JSON request, slots.py and names.py answer layout and naming questions,
canonical.py encodes nodes for embedding, context.py holds the per-file
generation state.

RULES:
- The schema dataclasses are the contract; change with care
- Nothing here emits target-language text except literal rendering in
  names.py
- No module here reads environment variables
"""
