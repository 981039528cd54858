"""Package metadata providers for apt-downgrade.

The resolver never talks to the package manager directly. It consumes the
:class:`MetadataProvider` query interface, whose three coroutines must be
free of side effects:

- :meth:`~MetadataProvider.installed_version`: the installed version of a
  package, or ``None``.
- :meth:`~MetadataProvider.candidates`: every obtainable version of a
  package (including the installed one) with its relations.
- :meth:`~MetadataProvider.reverse_dependencies`: installed packages whose
  installed version declares a relation on a package.

Failures are reported as :class:`~apt_downgrade.exceptions.MetadataUnavailable`.
Retrying is the provider's business; the resolver never retries.

:class:`StaticMetadataProvider` serves a fixed in-memory package universe. It
backs the test-suite and the CLI ``--snapshot`` option. The live APT
implementation lives in :mod:`apt_downgrade.core.apt`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from apt_downgrade.utils.logger import get_logger
from apt_downgrade.models.version import Version
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.dependency import normalize_name
from apt_downgrade.exceptions import (
    AptDowngradeError,
    MetadataUnavailable,
)

logger = get_logger("provider")

__all__ = ["MetadataProvider", "StaticMetadataProvider"]


class MetadataProvider(ABC):
    """Query interface the resolver uses to learn about packages."""

    @abstractmethod
    async def installed_version(self, name: str) -> Optional[Version]:
        """Return the installed version of ``name``, or ``None``.

        Raises:
            MetadataUnavailable: If the package database cannot be queried.
        """

    @abstractmethod
    async def candidates(self, name: str) -> Sequence[PackageCandidate]:
        """Return every obtainable version of ``name``.

        Raises:
            MetadataUnavailable: If ``name`` is unknown or cannot be queried.
        """

    @abstractmethod
    async def reverse_dependencies(self, name: str) -> Sequence[str]:
        """Return installed packages that declare a relation on ``name``.

        Raises:
            MetadataUnavailable: If the package database cannot be queried.
        """


class StaticMetadataProvider(MetadataProvider):
    """Provider over a fixed set of candidates.

    Args:
        candidates: Every known candidate, in any order.
        installed: Maps package names to their installed version string.
        unavailable: Package names whose queries fail, to exercise error
            handling.

    Example::

        >>> provider = StaticMetadataProvider(
        ...     [PackageCandidate.from_fields("a", "1.0"),
        ...      PackageCandidate.from_fields("a", "2.0", depends="b (>= 1)")],
        ...     installed={"a": "2.0"},
        ... )
    """

    def __init__(
        self,
        candidates: Iterable[PackageCandidate],
        installed: Optional[Mapping[str, str]] = None,
        *,
        unavailable: Iterable[str] = (),
    ) -> None:
        self._candidates: Dict[str, List[PackageCandidate]] = {}
        for candidate in candidates:
            self._candidates.setdefault(candidate.name, []).append(candidate)

        self._installed: Dict[str, Version] = {
            normalize_name(name): Version.parse(version)
            for name, version in (installed or {}).items()
        }
        self._unavailable = {normalize_name(name) for name in unavailable}
        self.calls: List[str] = []

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StaticMetadataProvider":
        """Build a provider from the snapshot structure.

        The structure is::

            {"packages": {
                "libfoo": {
                    "installed": "1.2-1",
                    "versions": [
                        {"version": "1.2-1", "depends": "libc6 (>= 2.3)"},
                        {"version": "1.0-1", "breaks": "foo-tools (<< 1.0)"}
                    ]
                }
            }}

        Raises:
            AptDowngradeError: If the structure is not as described.
            MalformedVersion: If a version string is invalid.
            MalformedRelation: If a relation field is invalid.
        """
        packages = data.get("packages")
        if not isinstance(packages, Mapping):
            raise AptDowngradeError("Snapshot must contain a 'packages' table")

        candidates: List[PackageCandidate] = []
        installed: Dict[str, str] = {}

        for name, entry in packages.items():
            if not isinstance(entry, Mapping):
                raise AptDowngradeError(
                    "Snapshot entry must be a table", {"package": name}
                )
            if entry.get("installed"):
                installed[name] = entry["installed"]
            for version_entry in entry.get("versions", []):
                if not isinstance(version_entry, Mapping) or "version" not in version_entry:
                    raise AptDowngradeError(
                        "Snapshot version entry must be a table with a 'version' key",
                        {"package": name},
                    )
                candidates.append(
                    PackageCandidate.from_fields(
                        name,
                        version_entry["version"],
                        depends=version_entry.get("depends"),
                        pre_depends=version_entry.get("pre_depends"),
                        conflicts=version_entry.get("conflicts"),
                        breaks=version_entry.get("breaks"),
                    )
                )

        return cls(candidates, installed)

    @classmethod
    def from_json_file(cls, path: Path) -> "StaticMetadataProvider":
        """Load a snapshot from a JSON file (see :meth:`from_mapping`)."""
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise AptDowngradeError(
                f"Cannot load snapshot {path}: {exc}", {"path": str(path)}
            ) from exc
        logger.debug("Loaded metadata snapshot from %s", path)
        return cls.from_mapping(data)

    def _check_available(self, name: str) -> str:
        name = normalize_name(name)
        self.calls.append(name)
        if name in self._unavailable:
            raise MetadataUnavailable(name, "marked unavailable")
        return name

    async def installed_version(self, name: str) -> Optional[Version]:
        return self._installed.get(self._check_available(name))

    async def candidates(self, name: str) -> Sequence[PackageCandidate]:
        name = self._check_available(name)
        if name not in self._candidates:
            raise MetadataUnavailable(name, "unknown package")
        return list(self._candidates[name])

    async def reverse_dependencies(self, name: str) -> Sequence[str]:
        name = self._check_available(name)
        dependents = []
        for other, version in self._installed.items():
            if other == name:
                continue
            for candidate in self._candidates.get(other, []):
                if candidate.version != version:
                    continue
                mentioned = {alt.name for req in candidate.depends for alt in req.alternatives}
                mentioned.update(entry.name for entry in candidate.conflicts)
                if name in mentioned:
                    dependents.append(other)
                break
        return sorted(dependents)
