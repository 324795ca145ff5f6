"""Abstract base generator, output container and request driver.

WHY: The CLI and tests should drive any output language the same way:
hand over the shared schema graph and one requested file, get back a file
name and its content. Multi-file requests are independent per file, so
they can be generated concurrently without any shared mutable state.

HOW: BaseGenerator is an ABC with a ``name`` property and
``generate_file()``. GeneratedFile bundles the output path, the content
and the imports the content actually uses. generate_request() runs a
generator over every requested file, on a thread pool when asked to.

RULES:
- Subclasses MUST implement ``name`` and ``generate_file()``
- ``generate_file()`` builds its own GenerationContext; nothing is shared
  between files except the read-only graph and the options
- generate_request() returns files in request order, regardless of
  completion order; the first failure propagates
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from capnp_bindgen.core.context import GeneratorOptions
from capnp_bindgen.core.schema import CodeGeneratorRequest, Import, RequestedFile, SchemaGraph

logger = logging.getLogger(__name__)


@dataclass
class GeneratedFile:
    """One output file produced by a generator.

    Attributes:
        filename: Path relative to the output directory,
                  e.g. ``"foo/bar_capnp.py"``.
        content: The generated source text.
        used_imports: Ids of other schema files the content refers to.
        dependencies: The requested file's imports whose ids are used.
    """

    filename: str
    content: str
    used_imports: FrozenSet[int] = frozenset()
    dependencies: Tuple[Import, ...] = ()


class BaseGenerator(ABC):
    """Abstract base for all code generators.

    To add a new target language:
    1. Create a new module in generators/
    2. Subclass BaseGenerator
    3. Implement generate_file() and name
    4. Register in GENERATORS dict in generators/__init__.py
    """

    def __init__(self, options: Optional[GeneratorOptions] = None) -> None:
        self.options = options or GeneratorOptions()

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable generator name, e.g. 'Python'."""

    @abstractmethod
    def generate_file(self, graph: SchemaGraph, requested_file: RequestedFile) -> GeneratedFile:
        """Generate bindings for one requested file.

        Args:
            graph: The complete schema graph of the request.
            requested_file: The file to generate, with its declared imports.

        Returns:
            The generated file.
        """


def generate_request(
    request: CodeGeneratorRequest,
    generator: BaseGenerator,
    max_workers: int = 1,
) -> List[GeneratedFile]:
    """Generate every requested file of a request.

    Args:
        request: The loaded request.
        generator: Generator instance to use for each file.
        max_workers: Thread count; 1 (or a single file) runs inline.

    Returns:
        Generated files in the order they were requested.
    """
    files = request.requested_files
    logger.debug("Generating %d file(s) with %s, %d worker(s)", len(files), generator.name, max_workers)

    if max_workers <= 1 or len(files) <= 1:
        return [generator.generate_file(request.graph, f) for f in files]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(lambda f: generator.generate_file(request.graph, f), files))
