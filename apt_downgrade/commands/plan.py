"""Plan command implementation for apt-downgrade.

Computes the set of package versions needed to bring one package down to an
earlier version, without changing anything on the system.

The command wires three pieces together:

1. A **metadata provider**: the live :class:`AptMetadataProvider`, or a
   :class:`StaticMetadataProvider` loaded from ``--snapshot`` for offline
   planning.
2. The :class:`Resolver`, configured from ``apt-downgrade.toml``.
3. Rich or JSON rendering of the validated :class:`ResolutionPlan`.

Typical usage::

    # Show what downgrading libfoo1 would involve
    $ apt-downgrade plan libfoo1 1.0-1

    # Machine-readable output, planned against a saved package universe
    $ apt-downgrade plan libfoo1 1.0-1 --format json --snapshot universe.json
"""

from __future__ import annotations

import sys
import click
import asyncio
from pathlib import Path
from typing import Optional

from apt_downgrade.models import ResolutionPlan
from apt_downgrade.context import pass_context, AptDowngradeContext
from apt_downgrade.exceptions import AptDowngradeError, PlanInconsistent
from apt_downgrade.core import (
    AptMetadataProvider,
    MetadataProvider,
    Resolver,
    StaticMetadataProvider,
)
from apt_downgrade.utils import (
    get_logger,
    get_raw_console,
    print_error,
    print_plan,
)

logger = get_logger("commands.plan")

#: Exit status for a plan rejected by the validator (EX_SOFTWARE).
EXIT_INTERNAL_ERROR = 70


@click.command()
@click.argument("package")
@click.argument("version")
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.option(
    "--snapshot",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plan against a JSON package snapshot instead of the live system.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Give up resolving after this many seconds.",
)
@pass_context
def plan(
    ctx: AptDowngradeContext,
    package: str,
    version: str,
    format: str,
    snapshot: Optional[Path],
    timeout: Optional[float],
) -> None:
    """Show the changes needed to downgrade PACKAGE to VERSION.

    Nothing is installed or removed. Every package listed must move to the
    planned version for PACKAGE=VERSION to be installable without breaking
    installed software. Entries are listed in a safe installation order.

    Exits:
        0 if a plan was found, 1 if none exists or an error occurred,
        70 if the resolver produced an inconsistent plan.
    """
    try:
        result = asyncio.run(
            resolve_plan(ctx, package, version, snapshot=snapshot, timeout=timeout)
        )
    except PlanInconsistent as e:
        report_inconsistent(e)
        sys.exit(EXIT_INTERNAL_ERROR)
    except AptDowngradeError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in plan command")
        sys.exit(1)

    if format == "json":
        click.echo(result.dumps())
        return

    print_plan(result, show_unchanged=ctx.verbose > 0)
    if ctx.verbose > 0:
        get_raw_console().print(
            f"[dim]{result.steps} step(s), {result.backtracks} backtrack(s)[/dim]"
        )


# ---------------------------------------------------------------------------
# Shared helpers (also used by the downgrade command)
# ---------------------------------------------------------------------------


def build_provider(
    ctx: AptDowngradeContext,
    snapshot: Optional[Path] = None,
) -> MetadataProvider:
    """Return the metadata provider for this invocation."""
    if snapshot is not None:
        logger.info("Using package snapshot %s", snapshot)
        return StaticMetadataProvider.from_json_file(snapshot)
    return AptMetadataProvider(
        cache_dir=ctx.config.cache_dir,
        architecture=ctx.config.architecture,
    )


async def resolve_plan(
    ctx: AptDowngradeContext,
    package: str,
    version: str,
    *,
    snapshot: Optional[Path] = None,
    timeout: Optional[float] = None,
    provider: Optional[MetadataProvider] = None,
) -> ResolutionPlan:
    """Resolve ``package=version`` with the configured resolver settings.

    Raises:
        AptDowngradeError: If the request is invalid or cannot be resolved.
    """
    provider = provider or build_provider(ctx, snapshot)
    resolver = Resolver.from_config(provider, ctx.config)
    if timeout is not None:
        resolver.timeout = timeout
    return await resolver.resolve_downgrade(package, version)


def report_inconsistent(exc: PlanInconsistent) -> None:
    """Report a plan the validator rejected."""
    logger.critical(
        "Validator rejected the computed plan (%s needs %s)",
        exc.package,
        exc.requirement,
        exc_info=exc,
    )
    print_error(
        f"{exc}. This is a bug in apt-downgrade; please report it "
        "with the output of -vv."
    )
