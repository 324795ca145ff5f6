"""Configuration defaults and .env loading.

WHY: The runtime module name, the module annotation id, the output
directory, worker count, log level and the location of schema.capnp
differ between projects. Keeping them in one place, overridable from the
environment, lets a build set them once in a .env file instead of on
every command line.

HOW: python-dotenv loads the .env file on import. Module-level constants
read the environment with fallbacks. build_options() turns them into the
GeneratorOptions dataclass that the generators receive; the node encoder
reads SCHEMA_CAPNP directly.

RULES:
- Every value can be overridden via a CAPNP_BINDGEN_* environment variable
- Integers accept decimal or 0x-prefixed hex
- A malformed integer raises ValueError naming the variable
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

from capnp_bindgen.core.context import (
    DEFAULT_MODULE_ANNOTATION_ID,
    DEFAULT_RUNTIME_MODULE,
    GeneratorOptions,
)

# Load .env from the working directory
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(
            "Invalid integer for {}: '{}'".format(name, raw)
        ) from None


RUNTIME_MODULE = os.getenv("CAPNP_BINDGEN_RUNTIME_MODULE", DEFAULT_RUNTIME_MODULE)
OUTPUT_DIR = os.getenv("CAPNP_BINDGEN_OUTPUT_DIR", ".")
LOG_LEVEL = os.getenv("CAPNP_BINDGEN_LOG_LEVEL", "WARNING").upper()

# Empty: use the schema.capnp shipped with pycapnp
SCHEMA_CAPNP = os.getenv("CAPNP_BINDGEN_SCHEMA_CAPNP", "")


def module_annotation_id() -> int:
    return _env_int("CAPNP_BINDGEN_MODULE_ANNOTATION_ID", DEFAULT_MODULE_ANNOTATION_ID)


def jobs() -> int:
    """Worker thread count for multi-file requests (at least 1)."""
    return max(1, _env_int("CAPNP_BINDGEN_JOBS", 1))


def build_options(runtime_module: Optional[str] = None) -> GeneratorOptions:
    """Build GeneratorOptions from the environment.

    Args:
        runtime_module: Overrides CAPNP_BINDGEN_RUNTIME_MODULE when given.

    Raises:
        ValueError: If CAPNP_BINDGEN_MODULE_ANNOTATION_ID is not an integer.
    """
    return GeneratorOptions(
        runtime_module=runtime_module or os.getenv("CAPNP_BINDGEN_RUNTIME_MODULE", DEFAULT_RUNTIME_MODULE),
        module_annotation_id=module_annotation_id(),
    )
