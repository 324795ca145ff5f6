"""Code generator registry.

WHY: The CLI selects a target language by name. A central dict keeps the
lookup in one place: adding a language is one new module plus one line.

HOW: GENERATORS maps string keys to generator *classes* (not instances).
Callers instantiate with options: ``GENERATORS["python"](options)``.

RULES:
- Keys are snake_case identifiers (used in CLI flags)
- Values are BaseGenerator subclasses (not instances)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from capnp_bindgen.generators.python_module import PythonGenerator

if TYPE_CHECKING:
    from capnp_bindgen.generators.base import BaseGenerator

GENERATORS: dict[str, type[BaseGenerator]] = {
    "python": PythonGenerator,
}
