"""Downgrade command implementation for apt-downgrade.

Resolves a downgrade exactly like ``apt-downgrade plan`` and then hands the
validated plan to ``apt-get install``. Archives already present in the APT
cache are installed from disk; everything else is pinned as
``name=version`` for APT to fetch.

Typical usage::

    # Review and apply
    $ sudo apt-downgrade downgrade libfoo1 1.0-1

    # Show the apt-get command without running it
    $ apt-downgrade downgrade libfoo1 1.0-1 --dry-run
"""

from __future__ import annotations

import sys
import click
import asyncio
from pathlib import Path
from typing import List, Optional, Tuple

from apt_downgrade.models import ResolutionPlan
from apt_downgrade.context import pass_context, AptDowngradeContext
from apt_downgrade.exceptions import AptDowngradeError, PlanInconsistent
from apt_downgrade.core import AptMetadataProvider, apply_plan, build_install_command
from apt_downgrade.commands.plan import (
    EXIT_INTERNAL_ERROR,
    build_provider,
    report_inconsistent,
    resolve_plan,
)
from apt_downgrade.utils import (
    confirm,
    get_logger,
    get_raw_console,
    print_error,
    print_plan,
    print_success,
    print_warning,
)

logger = get_logger("commands.downgrade")


@click.command()
@click.argument("package")
@click.argument("version")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the plan and the apt-get command without running it.",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt.",
)
@click.option(
    "--snapshot",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plan against a JSON package snapshot (requires --dry-run).",
)
@pass_context
def downgrade(
    ctx: AptDowngradeContext,
    package: str,
    version: str,
    dry_run: bool,
    yes: bool,
    snapshot: Optional[Path],
) -> None:
    """Downgrade PACKAGE to VERSION together with whatever must follow it.

    The plan is displayed and confirmed before ``apt-get`` runs.

    Exits:
        0 on success or when cancelled, 1 on error, 70 if the resolver
        produced an inconsistent plan.
    """
    if snapshot is not None and not dry_run:
        raise click.UsageError("--snapshot plans can only be shown; add --dry-run")

    try:
        result, command = asyncio.run(_prepare(ctx, package, version, snapshot))
        _apply(result, command, dry_run=dry_run, skip_confirm=yes)

    except PlanInconsistent as e:
        report_inconsistent(e)
        sys.exit(EXIT_INTERNAL_ERROR)
    except AptDowngradeError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in downgrade command")
        sys.exit(1)


async def _prepare(
    ctx: AptDowngradeContext,
    package: str,
    version: str,
    snapshot: Optional[Path],
) -> Tuple[ResolutionPlan, List[str]]:
    """Resolve the request and build the install command for it."""
    provider = build_provider(ctx, snapshot)
    result = await resolve_plan(ctx, package, version, provider=provider)

    env = None
    if isinstance(provider, AptMetadataProvider):
        env = await provider.environment()
    return result, build_install_command(result, env)


def _apply(
    result: ResolutionPlan,
    command: List[str],
    *,
    dry_run: bool,
    skip_confirm: bool,
) -> None:
    if not command:
        print_success(f"{result.request} is already installed; nothing to do")
        return

    print_plan(result)
    get_raw_console().print(f"\n[dim]$ {' '.join(command)}[/dim]")

    if dry_run:
        print_warning("\nDry run mode - no changes applied")
        return

    if not skip_confirm and not confirm(
        f"Apply {len(result.changes())} change(s)?", default=False
    ):
        logger.info("Downgrade cancelled by user")
        return

    apply_plan(command)
    print_success(f"Downgraded {result.request.package} to {result.request.version}")
