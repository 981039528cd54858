"""
Executable module for apt-downgrade.

Running:
    python -m apt_downgrade

is equivalent to:
    apt-downgrade

This module simply forwards execution to the CLI entrypoint defined in
`apt_downgrade.cli`.
"""

from __future__ import annotations

import sys


def _print_startup_error(exc: ImportError) -> None:
    """Explain on stderr why the CLI could not be loaded."""
    sys.stderr.write("apt-downgrade could not start.\n")
    sys.stderr.write(f"Python version : {sys.version}\n")
    try:
        from apt_downgrade.__version__ import __version__

        sys.stderr.write(f"apt-downgrade version: {__version__}\n")
    except ImportError:
        sys.stderr.write("apt-downgrade version: <unknown>\n")
    sys.stderr.write("\n")
    sys.stderr.write(f"ImportError: {exc}\n")


def main() -> int:
    """
    Main entrypoint when executing `python -m apt_downgrade`.

    Returns:
        Exit code returned by the CLI.
    """
    try:
        # Import lazily so dependencies are only loaded during CLI use
        from apt_downgrade.cli import main as cli_main
    except ImportError as exc:
        _print_startup_error(exc)
        return 1

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
