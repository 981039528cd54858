"""
Resolution request and plan models for apt-downgrade.

A :class:`ResolutionRequest` names the package and the earlier version the
user asked for. A :class:`ResolutionPlan` is the validated answer: every
package whose version the resolver looked at, in an order that is safe to
apply sequentially (dependencies first).
"""

from __future__ import annotations

import json
from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from apt_downgrade.models.version import Version
from apt_downgrade.models.dependency import normalize_name


class ChangeKind(Enum):
    """How a plan entry relates to what is installed."""

    UNCHANGED = "unchanged"
    DOWNGRADE = "downgrade"
    UPGRADE = "upgrade"
    INSTALL = "install"

    @classmethod
    def between(cls, old: Optional[Version], new: Version) -> "ChangeKind":
        """Classify the move from ``old`` (``None`` = not installed) to ``new``."""
        if old is None:
            return cls.INSTALL
        if new == old:
            return cls.UNCHANGED
        return cls.DOWNGRADE if new < old else cls.UPGRADE


@dataclass(frozen=True)
class ResolutionRequest:
    """The root downgrade request: a package pinned to an exact version."""

    package: str
    version: Version

    def __post_init__(self) -> None:
        object.__setattr__(self, "package", normalize_name(self.package))

    @classmethod
    def parse(cls, package: str, version: str) -> "ResolutionRequest":
        """Build a request from user-supplied strings.

        Raises:
            MalformedVersion: If ``version`` is not a valid Debian version.
        """
        return cls(package, Version.parse(version))

    def __str__(self) -> str:
        return f"{self.package}={self.version}"


@dataclass(frozen=True)
class PlanEntry:
    """One package in a plan."""

    name: str
    old_version: Optional[Version]
    new_version: Version
    relation: ChangeKind

    @property
    def is_change(self) -> bool:
        """Return True if applying this entry modifies the system."""
        return self.relation is not ChangeKind.UNCHANGED

    def to_json(self) -> Dict[str, Optional[str]]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "old_version": str(self.old_version) if self.old_version else None,
            "new_version": str(self.new_version),
            "relation": self.relation.value,
        }


@dataclass(frozen=True)
class ResolutionPlan:
    """Validated, ordered result of a resolution.

    Attributes:
        request: The request this plan answers.
        entries: Entries in dependency order (each after everything it
            depends on), ties broken by package name.
        steps: Worklist iterations the resolver needed.
        backtracks: Number of times the resolver backtracked.
    """

    request: ResolutionRequest
    entries: Tuple[PlanEntry, ...]
    steps: int = 0
    backtracks: int = 0

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, name: str) -> Optional[PlanEntry]:
        """Return the entry for ``name``, or ``None``."""
        name = normalize_name(name)
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def changes(self) -> List[PlanEntry]:
        """Return entries that modify the system, in plan order."""
        return [entry for entry in self.entries if entry.is_change]

    def to_json(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "request": {
                "package": self.request.package,
                "version": str(self.request.version),
            },
            "entries": [entry.to_json() for entry in self.entries],
        }

    def dumps(self) -> str:
        """Serialize deterministically; equal plans give identical text."""
        return json.dumps(self.to_json(), indent=2, sort_keys=True)

    def summary(self) -> str:
        """Generate a human-readable summary of the plan.

        Example::

            >>> print(plan.summary())
            Downgrade plan for libfoo=1.0-1:
            ==================================================
            Packages examined: 3
            Packages changed: 2
              • libbar: 2.0-1 → 1.5-1 (downgrade)
              • libfoo: 1.2-1 → 1.0-1 (downgrade)
        """
        changed = self.changes()
        lines = [
            f"Downgrade plan for {self.request}:",
            "=" * 50,
            f"Packages examined: {len(self.entries)}",
            f"Packages changed: {len(changed)}",
        ]
        for entry in changed:
            old = entry.old_version if entry.old_version else "(none)"
            lines.append(
                f"  • {entry.name}: {old} → {entry.new_version} ({entry.relation.value})"
            )
        return "\n".join(lines)
