"""Turn a validated plan into an ``apt-get install`` invocation.

The resolver never modifies the system. Applying a plan is a separate,
explicit step: :func:`build_install_command` lists every changed package in
plan order, preferring an already-downloaded archive from the APT cache and
otherwise pinning ``name=version`` for APT to fetch. :func:`apply_plan` then
runs the command in the foreground so that APT can prompt the user.
"""

from __future__ import annotations

import subprocess
from typing import List, Optional, Sequence

from apt_downgrade.utils.logger import get_logger
from apt_downgrade.models.plan import ResolutionPlan
from apt_downgrade.core.apt import AptEnv, archive_path
from apt_downgrade.constants import APT_INSTALL_COMMAND
from apt_downgrade.exceptions import CommandError

logger = get_logger("installer")

__all__ = ["build_install_command", "apply_plan"]


def build_install_command(
    plan: ResolutionPlan,
    env: Optional[AptEnv] = None,
) -> List[str]:
    """Build the command that applies ``plan``.

    Args:
        plan: A validated plan.
        env: APT environment used to find cached archives. Without it every
            package is given as ``name=version``.

    Returns:
        The argument vector, or an empty list when nothing changes.

    Example::

        >>> build_install_command(plan)
        ['apt-get', 'install', '-V', '--no-install-recommends',
         '--allow-downgrades', 'libbar=1.5-1', 'libfoo=1.0-1']
    """
    targets: List[str] = []
    for entry in plan.changes():
        path = archive_path(env, entry.name, entry.new_version) if env else None
        if path is not None:
            logger.debug("Using cached archive %s", path)
            targets.append(str(path))
        else:
            targets.append(f"{entry.name}={entry.new_version}")

    if not targets:
        return []
    return [*APT_INSTALL_COMMAND, *targets]


def apply_plan(command: Sequence[str]) -> None:
    """Run an install command built by :func:`build_install_command`.

    Raises:
        CommandError: If the command cannot be started or fails.
    """
    if not command:
        logger.info("Nothing to apply")
        return

    logger.info("Running: %s", " ".join(command))
    try:
        completed = subprocess.run(list(command), check=False)
    except OSError as exc:
        raise CommandError(f"Cannot run {command[0]}: {exc}", command=command) from exc

    if completed.returncode != 0:
        raise CommandError(
            f"{command[0]} exited with status {completed.returncode}",
            command=command,
            returncode=completed.returncode,
        )
