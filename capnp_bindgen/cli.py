"""Command-line interface for capnp-bindgen.

WHY: Build systems invoke the generator as a command: hand it a
code-generator request, get binding modules on disk. The CLI wires
together request loading, option resolution, generation and file
writing behind that single command and turns failures into a clear
message and a non-zero exit status.

HOW: argparse accepts the request path (``-`` for stdin), an output
directory, the runtime module name, the worker count and the generator.
Defaults come from config (and therefore from .env). Status messages go
to stderr; with --list-only the generated file names go to stdout and
nothing is written.

RULES:
- Positional argument: request JSON path, or ``-`` for stdin
- Output files are written below --output-dir, creating directories and
  overwriting existing files
- Malformed requests, schema integrity failures and generator invariant
  failures exit with status 1
- Status output goes to stderr (not stdout)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from capnp_bindgen import config
from capnp_bindgen.core.errors import GenerationError
from capnp_bindgen.core.loader import RequestFormatError, load_request_file
from capnp_bindgen.generators import GENERATORS
from capnp_bindgen.generators.base import GeneratedFile, generate_request

logger = logging.getLogger(__name__)


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so --list-only can be piped.

    RULES:
    - All status messages go to stderr
    - Always flush after writing
    """
    print(msg, file=sys.stderr, flush=True)


def _save_output(output: GeneratedFile, output_dir: Path) -> Path:
    """Write one generated file below output_dir and return its path."""
    path = output_dir / output.filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(output.content, encoding="utf-8")
    return path


def _run(args: argparse.Namespace) -> None:
    """Execute load → generate → save for one request.

    RULES:
    - The request must exist unless it is read from stdin
    - Options are built before the request is read so a bad environment
      fails fast
    - Files are saved only after every file generated successfully
    """
    if args.request != "-" and not Path(args.request).is_file():
        print("Error: File not found: {}".format(args.request), file=sys.stderr)
        sys.exit(1)

    try:
        options = config.build_options(args.runtime_module)
        request = load_request_file(args.request)
        _status("Loaded {} node(s), {} requested file(s)".format(
            len(request.graph), len(request.requested_files)))

        generator = GENERATORS[args.generator](options)
        outputs = generate_request(request, generator, args.jobs)
    except RequestFormatError as e:
        print("Error: Invalid request: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except GenerationError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        # Config errors (malformed CAPNP_BINDGEN_* values)
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)

    if args.list_only:
        for output in outputs:
            print(output.filename)
        return

    output_dir = Path(args.output_dir)
    saved: List[Path] = []
    for output in outputs:
        saved.append(_save_output(output, output_dir))
        _status("  Saved: {}".format(output.filename))

    _status("Done! Wrote {} file(s) to {}".format(len(saved), output_dir))


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable: tests can inspect the parser without running generation.
    """
    parser = argparse.ArgumentParser(
        prog="capnp_bindgen",
        description="Generate Python bindings from a Cap'n Proto code-generator request (JSON).",
    )

    parser.add_argument(
        "request",
        help="Path to the request JSON file, or '-' to read it from stdin.",
    )

    parser.add_argument(
        "--output-dir",
        default=config.OUTPUT_DIR,
        help="Directory to write generated modules to (default: %(default)s).",
    )

    parser.add_argument(
        "--runtime-module",
        default=None,
        help="Module generated code imports as 'capnp' (default: {}).".format(config.RUNTIME_MODULE),
    )

    parser.add_argument(
        "--jobs",
        type=int,
        default=None,
        help="Worker threads for multi-file requests (default: CAPNP_BINDGEN_JOBS or 1).",
    )

    parser.add_argument(
        "--generator",
        choices=sorted(GENERATORS.keys()),
        default="python",
        help="Target language generator (default: %(default)s).",
    )

    parser.add_argument(
        "--list-only",
        action="store_true",
        help="Print the names of the files that would be generated and exit.",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.jobs is None:
        try:
            args.jobs = config.jobs()
        except ValueError as e:
            print("Error: {}".format(e), file=sys.stderr)
            sys.exit(1)

    _run(args)


if __name__ == "__main__":
    main()
