"""Python module generator: one ``*_capnp.py`` module per schema file.

WHY: The per-node text only makes sense inside a module that imports the
runtime, aliases itself as ``module``, imports exactly the schema files it
refers to, and defines the ``schemas`` table before any class reads it.

HOW: PythonGenerator.generate_file() assembles every top-level declaration
of the file first, so the per-file context has collected its used imports
by the time the header is written. The header, the import block, all
schema definitions and then all classes are concatenated in that order.

RULES:
- Only imports whose ids were resolved during assembly are emitted,
  in the order the request lists them
- A file carrying the module annotation is also bound as
  ``capnp_generated_<hex>`` so self-references under that alias resolve
- Imports use the dotted path of the imported file's own output
  location, so modules in sibling directories resolve from the output root
- Output ends with exactly one newline and never has trailing spaces
"""

from __future__ import annotations

import logging
import re
from typing import List

from capnp_bindgen.core.context import GenerationContext
from capnp_bindgen.core.names import (
    annotated_module_name,
    hex_id,
    output_filename,
    python_module_name,
    top_level_alias,
)
from capnp_bindgen.core.schema import Import, RequestedFile, SchemaGraph
from capnp_bindgen.generators.base import BaseGenerator, GeneratedFile
from capnp_bindgen.generators.python_nodes import make_node_text

logger = logging.getLogger(__name__)

_BLANK_RUN_RE = re.compile(r"\n{4,}")


def _tidy(text: str) -> str:
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    return _BLANK_RUN_RE.sub("\n\n\n", text).strip("\n") + "\n"


class PythonGenerator(BaseGenerator):
    """Generates Python modules that wrap the wire-format runtime."""

    @property
    def name(self) -> str:
        return "Python"

    def _import_line(self, graph: SchemaGraph, imp: Import) -> str:
        node = graph.get(imp.id)
        prefix = "capnp_generated" if annotated_module_name(node, self.options) is not None else "import"
        return "import {} as {}_{}".format(python_module_name(node, self.options), prefix, hex_id(imp.id))

    def _dependencies(self, graph: SchemaGraph, requested_file: RequestedFile, used) -> List[Import]:
        deps = [imp for imp in requested_file.imports if imp.id in used]
        listed = {imp.id for imp in deps}
        for node_id in sorted(used - listed):
            deps.append(Import(id=node_id, name=graph.get(node_id).display_name))
        return deps

    def generate_file(self, graph: SchemaGraph, requested_file: RequestedFile) -> GeneratedFile:
        ctx = GenerationContext(graph, requested_file, self.options)
        file_node = graph.get(requested_file.id)
        scope = top_level_alias(ctx, file_node)

        texts = [
            make_node_text(ctx, scope, nested.name, graph.get(nested.id), "")
            for nested in file_node.nested_nodes
        ]

        deps = self._dependencies(graph, requested_file, ctx.used_imports)
        out = [
            "# Generated by capnp-bindgen from {}. DO NOT EDIT.".format(file_node.display_name),
            "",
            "import sys",
            "",
            "import {} as capnp".format(self.options.runtime_module),
        ]
        out.extend(self._import_line(graph, imp) for imp in deps)
        out += ["", "module = sys.modules[__name__]"]
        if scope != "module":
            out.append("{} = module".format(scope))
        out += ["", "schemas = {}", "", ""]
        out.extend(t.schema_defs for t in texts)
        out.append("")
        for t in texts:
            if t.class_text:
                out.append(t.class_text)
                out.append("")

        filename = output_filename(file_node, self.options)
        logger.debug(
            "Generated %s: %d declarations, imports %s",
            filename, len(texts), ", ".join(hex_id(d.id) for d in deps) or "none",
        )
        return GeneratedFile(
            filename=filename,
            content=_tidy("\n".join(out)),
            used_imports=frozenset(ctx.used_imports),
            dependencies=tuple(deps),
        )
