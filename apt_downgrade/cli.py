"""
Command-line interface for apt-downgrade.

This module provides the main CLI entry point and handles global options,
configuration loading, and command registration.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from apt_downgrade.config import load_config
from apt_downgrade.__version__ import __version__
from apt_downgrade.context import AptDowngradeContext
from apt_downgrade.exceptions import AptDowngradeError, ConfigError, PlanInconsistent
from apt_downgrade.utils.logger import get_logger, level_for_verbosity, setup_logging
from apt_downgrade.utils.console import print_error, print_warning, reconfigure_console
from apt_downgrade.commands.plan import EXIT_INTERNAL_ERROR, plan, report_inconsistent
from apt_downgrade.commands.downgrade import downgrade

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar="APT_DOWNGRADE_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Enable or disable colored output.",
    envvar="APT_DOWNGRADE_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="apt-downgrade",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """apt-downgrade: safe package downgrades for APT-based systems.

    \b
    Available commands:
      apt-downgrade plan PACKAGE VERSION        Show what a downgrade involves
      apt-downgrade downgrade PACKAGE VERSION   Compute and apply a downgrade

    \b
    Examples:
      apt-downgrade plan libfoo1 1.0-1
      apt-downgrade -v downgrade libfoo1 1.0-1 --dry-run

    Use ``apt-downgrade COMMAND --help`` for command-specific options.
    """
    _configure_logging(verbose)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    app_ctx = AptDowngradeContext()
    app_ctx.config_path = config or loaded_config.source_path
    app_ctx.color = color
    app_ctx.verbose = verbose
    app_ctx.config = loaded_config
    ctx.obj = app_ctx

    # Respect NO_COLOR for downstream libraries
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    logger.debug("apt-downgrade v%s", __version__)
    logger.debug("Config path: %s", app_ctx.config_path)
    logger.debug("Configuration: %s", loaded_config.to_log_dict())
    logger.debug("Verbosity: %s | Color: %s", verbose, color)


def _configure_logging(verbose: int) -> None:
    """Configure logging level based on verbosity flags."""
    level = level_for_verbosity(verbose)
    setup_logging(level=level, verbose=verbose >= 2)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))


cli.add_command(plan)
cli.add_command(downgrade)


def main() -> int:
    """Main entry point for the apt-downgrade CLI.

    Returns:
        Exit code:
            0   Success
            1   Application error or no plan exists
            2   Usage error (Click)
            70  Resolver produced an inconsistent plan
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return 0

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except click.exceptions.Abort:
        print_warning("\nOperation cancelled by user")
        return 130

    except PlanInconsistent as exc:
        report_inconsistent(exc)
        return EXIT_INTERNAL_ERROR

    except AptDowngradeError as exc:
        print_error(str(exc))
        logger.debug(
            "AptDowngradeError details: %s",
            exc.details or "<none>",
            exc_info=True,
        )
        return 1

    except KeyboardInterrupt:
        print_warning("\nOperation cancelled by user")
        return 130

    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in CLI")
        return 1


if __name__ == "__main__":
    sys.exit(main())
