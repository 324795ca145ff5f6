"""Package entry point for ``python -m capnp_bindgen``.

WHY: Build rules run the generator as ``python -m capnp_bindgen
request.json``. Python's ``-m`` flag looks for ``__main__.py`` inside the
package and executes it.

HOW: Delegates to the CLI's main() function.
"""

from capnp_bindgen.cli import main

if __name__ == "__main__":
    main()
