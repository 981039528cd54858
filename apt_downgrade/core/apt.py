"""APT-backed metadata provider.

:class:`AptMetadataProvider` answers the resolver's queries by running the
APT command-line tools as asyncio subprocesses:

- ``apt-cache policy`` for the installed version,
- ``apt-cache show`` for every version known to the package lists,
- ``apt-cache rdepends --installed`` for installed reverse dependencies.

Versions only present as ``.deb`` files in the local archive cache
(``/var/cache/apt/archives`` by default) are offered too. Their control data
is read with python-debian's :class:`~debian.debfile.DebFile`.

The provider never mutates the system and never retries. Any failing command
surfaces as :class:`~apt_downgrade.exceptions.MetadataUnavailable`. A single
unparsable ``apt-cache show`` stanza is only logged and skipped.
"""

from __future__ import annotations

import os
import shlex
import asyncio
from pathlib import Path
from dataclasses import dataclass
from urllib.parse import unquote
from typing import Dict, List, Optional, Sequence

from debian import deb822
from debian.debfile import DebFile

from apt_downgrade.utils.logger import get_logger
from apt_downgrade.models.version import Version
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.dependency import normalize_name
from apt_downgrade.core.provider import MetadataProvider
from apt_downgrade.constants import (
    APT_CONFIG_COMMAND,
    DEFAULT_APT_CACHE_DIR,
    POLICY_INSTALLED_PREFIX,
    POLICY_NOT_INSTALLED,
)
from apt_downgrade.exceptions import (
    AptDowngradeError,
    CommandError,
    MetadataUnavailable,
)

logger = get_logger("apt")

__all__ = [
    "AptEnv",
    "AptMetadataProvider",
    "read_apt_env",
    "run_command",
    "archive_path",
]


# ---------------------------------------------------------------------------
# APT environment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AptEnv:
    """Where APT keeps downloaded archives, and for which architecture.

    Attributes:
        cache_dir: Directory holding downloaded ``.deb`` files.
        architecture: Native architecture (e.g. ``amd64``).
    """

    cache_dir: Path
    architecture: str


def archive_path(env: AptEnv, name: str, version: Version) -> Optional[Path]:
    """Return the cached ``.deb`` for ``name`` at ``version``, if present.

    APT stores epochs in file names with the colon escaped as ``%3a``.
    """
    encoded = str(version).replace(":", "%3a")
    for arch in (env.architecture, "all"):
        path = env.cache_dir / f"{name}_{encoded}_{arch}.deb"
        if path.is_file():
            return path
    return None


async def run_command(
    args: Sequence[str],
    *,
    env: Optional[Dict[str, str]] = None,
) -> str:
    """Run a command and return its standard output.

    Raises:
        CommandError: If the command cannot be started or exits non-zero.
    """
    logger.debug("Running: %s", " ".join(args))
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        raise CommandError(
            f"Cannot run {args[0]}: {exc}",
            command=args,
        ) from exc

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise CommandError(
            f"{args[0]} exited with status {process.returncode}",
            command=args,
            returncode=process.returncode,
            stderr=stderr.decode("utf-8", "replace"),
        )
    return stdout.decode("utf-8", "replace")


def _c_locale() -> Dict[str, str]:
    env = dict(os.environ)
    env["LANG"] = "C"
    env["LC_ALL"] = "C"
    return env


async def read_apt_env() -> AptEnv:
    """Query ``apt-config`` for the archive cache directory and architecture.

    Raises:
        CommandError: If ``apt-config`` fails or prints something unexpected.
    """
    output = await run_command(APT_CONFIG_COMMAND)

    values: Dict[str, str] = {}
    for line in output.splitlines():
        key, sep, raw = line.partition("=")
        if sep:
            parts = shlex.split(raw)
            values[key] = parts[0] if parts else ""

    missing = [
        key
        for key in ("CACHE_ROOT_DIR", "CACHE_ARCHIVE_SUBDIR", "ARCH")
        if not values.get(key)
    ]
    if missing:
        raise CommandError(
            f"Unexpected apt-config output (missing {', '.join(missing)})",
            command=APT_CONFIG_COMMAND,
        )

    cache_dir = Path("/") / values["CACHE_ROOT_DIR"] / values["CACHE_ARCHIVE_SUBDIR"]
    return AptEnv(cache_dir=cache_dir, architecture=values["ARCH"])


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class AptMetadataProvider(MetadataProvider):
    """Metadata provider backed by ``apt-cache`` and the local archive cache.

    Args:
        cache_dir: Override for the archive cache directory.
        architecture: Override for the native architecture.

    When either override is missing it is read from ``apt-config`` on first
    use. If that fails, local archives are ignored and only the package
    lists are consulted.

    Example::

        >>> provider = AptMetadataProvider()
        >>> await provider.installed_version("bash")
        Version('5.2.15-2+b2')
    """

    def __init__(
        self,
        *,
        cache_dir: Optional[str] = None,
        architecture: Optional[str] = None,
    ) -> None:
        self._cache_dir = cache_dir
        self._architecture = architecture
        self._env: Optional[AptEnv] = None
        self._env_loaded = False
        self._env_lock = asyncio.Lock()

    async def environment(self) -> Optional[AptEnv]:
        """Return the APT environment, reading it on first call."""
        async with self._env_lock:
            if self._env_loaded:
                return self._env

            cache_dir, architecture = self._cache_dir, self._architecture
            if cache_dir is None or architecture is None:
                try:
                    detected = await read_apt_env()
                    cache_dir = cache_dir or str(detected.cache_dir)
                    architecture = architecture or detected.architecture
                except CommandError as exc:
                    logger.warning("Cannot read APT configuration: %s", exc.message)

            if architecture:
                self._env = AptEnv(Path(cache_dir or DEFAULT_APT_CACHE_DIR), architecture)
                logger.debug(
                    "APT archives in %s for %s",
                    self._env.cache_dir,
                    self._env.architecture,
                )
            else:
                logger.warning("Architecture unknown; ignoring local archive cache")
            self._env_loaded = True
            return self._env

    # ------------------------------------------------------------------
    # MetadataProvider
    # ------------------------------------------------------------------

    async def installed_version(self, name: str) -> Optional[Version]:
        name = normalize_name(name)
        output = await self._query(name, ("apt-cache", "policy", name))
        return parse_policy_installed(name, output)

    async def candidates(self, name: str) -> List[PackageCandidate]:
        name = normalize_name(name)
        try:
            output = await run_command(("apt-cache", "show", name), env=_c_locale())
            listed = parse_show_output(name, output)
        except CommandError as exc:
            logger.debug("apt-cache show %s failed: %s", name, exc.message)
            listed = []

        known = {candidate.version for candidate in listed}
        local = [
            candidate
            for candidate in await self._local_candidates(name)
            if candidate.version not in known
        ]

        if not listed and not local:
            raise MetadataUnavailable(name, "no version known to APT")
        return listed + local

    async def reverse_dependencies(self, name: str) -> List[str]:
        name = normalize_name(name)
        output = await self._query(
            name,
            (
                "apt-cache",
                "rdepends",
                "--installed",
                "--no-recommends",
                "--no-suggests",
                "--no-enhances",
                "--no-replaces",
                name,
            ),
        )
        return parse_rdepends_output(output)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _query(self, name: str, args: Sequence[str]) -> str:
        try:
            return await run_command(args, env=_c_locale())
        except CommandError as exc:
            raise MetadataUnavailable(name, exc.message) from exc

    async def _local_candidates(self, name: str) -> List[PackageCandidate]:
        env = await self.environment()
        if env is None or not env.cache_dir.is_dir():
            return []

        paths = sorted(
            list(env.cache_dir.glob(f"{name}_*_{env.architecture}.deb"))
            + list(env.cache_dir.glob(f"{name}_*_all.deb"))
        )
        found: List[PackageCandidate] = []
        for path in paths:
            parts = path.name.split("_")
            if len(parts) != 3 or parts[0] != name:
                continue
            try:
                found.append(await asyncio.to_thread(_read_deb, name, path))
            except AptDowngradeError as exc:
                logger.warning("Ignoring %s: %s", path.name, exc.message)
        logger.debug("Found %d cached archive(s) of %s", len(found), name)
        return found


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------


def parse_policy_installed(name: str, output: str) -> Optional[Version]:
    """Extract the installed version from ``apt-cache policy`` output.

    Returns ``None`` for ``(none)`` or when the package is unknown.

    Raises:
        MetadataUnavailable: If the version cannot be parsed.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith(POLICY_INSTALLED_PREFIX):
            continue
        value = line[len(POLICY_INSTALLED_PREFIX):].strip()
        if not value or value == POLICY_NOT_INSTALLED:
            return None
        try:
            return Version.parse(value)
        except AptDowngradeError as exc:
            raise MetadataUnavailable(name, exc.message) from exc
    return None


def parse_show_output(name: str, output: str) -> List[PackageCandidate]:
    """Build candidates from the stanzas printed by ``apt-cache show``.

    Stanzas for other packages are skipped, and so are stanzas with an
    invalid version or relation (with a warning).
    """
    candidates: List[PackageCandidate] = []
    for stanza in deb822.Packages.iter_paragraphs(
        output.splitlines(keepends=True), use_apt_pkg=False
    ):
        if normalize_name(stanza.get("Package", "")) != name or "Version" not in stanza:
            continue
        try:
            candidates.append(_candidate_from_control(name, stanza))
        except AptDowngradeError as exc:
            logger.warning(
                "Ignoring %s %s from apt-cache: %s", name, stanza["Version"], exc.message
            )
    return candidates


def parse_rdepends_output(output: str) -> List[str]:
    """Return the package names listed under ``Reverse Depends:``."""
    names: List[str] = []
    listing = False
    for line in output.splitlines():
        if line.strip() == "Reverse Depends:":
            listing = True
            continue
        if listing:
            entry = line.strip().lstrip("|").strip()
            if entry:
                names.append(normalize_name(entry))
    return sorted(set(names))


def _candidate_from_control(name: str, control) -> PackageCandidate:
    return PackageCandidate.from_fields(
        name,
        control["Version"],
        depends=control.get("Depends"),
        pre_depends=control.get("Pre-Depends"),
        conflicts=control.get("Conflicts"),
        breaks=control.get("Breaks"),
    )


def _read_deb(name: str, path: Path) -> PackageCandidate:
    try:
        control = DebFile(str(path)).debcontrol()
    except Exception as exc:  # python-debian raises a mix of error types
        raise AptDowngradeError(f"unreadable archive: {exc}", {"path": str(path)}) from exc

    version = unquote(path.name.split("_")[1])
    if control.get("Version") and control["Version"] != version:
        logger.debug("%s declares version %s", path.name, control["Version"])
        version = control["Version"]
    return _candidate_from_control(name, {**control, "Version": version})
