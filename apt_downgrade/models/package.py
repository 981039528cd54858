"""
Package candidate model for apt-downgrade.

A :class:`PackageCandidate` is one concrete, obtainable version of a package
together with the relations it declares. Candidates are immutable once the
metadata provider has produced them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from apt_downgrade.models.version import Version
from apt_downgrade.models.dependency import (
    Alternative,
    ConflictSet,
    DependencySet,
    normalize_name,
    parse_conflicts,
    parse_relations,
)


@dataclass(frozen=True)
class PackageCandidate:
    """A specific version of a package and its declared relations.

    Attributes:
        name: Normalized package name.
        version: The candidate's version.
        depends: Requirements (``Pre-Depends`` followed by ``Depends``).
        conflicts: ``Conflicts`` followed by ``Breaks`` entries.
    """

    name: str
    version: Version
    depends: DependencySet = ()
    conflicts: ConflictSet = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", normalize_name(self.name))
        object.__setattr__(self, "depends", tuple(self.depends))
        object.__setattr__(self, "conflicts", tuple(self.conflicts))

    @classmethod
    def from_fields(
        cls,
        name: str,
        version: str,
        *,
        depends: Optional[str] = None,
        pre_depends: Optional[str] = None,
        conflicts: Optional[str] = None,
        breaks: Optional[str] = None,
    ) -> "PackageCandidate":
        """Build a candidate from raw control-file field values.

        Raises:
            MalformedVersion: If ``version`` is invalid.
            MalformedRelation: If a relation field is invalid.
        """
        return cls(
            name=name,
            version=Version.parse(version),
            depends=parse_relations(pre_depends) + parse_relations(depends),
            conflicts=parse_conflicts(conflicts) + parse_conflicts(breaks),
        )

    def conflicts_with(self, other: "PackageCandidate") -> Optional[Alternative]:
        """Return the conflict entry of ``self`` that ``other`` matches, if any.

        A package never conflicts with itself.
        """
        if other.name == self.name:
            return None
        for entry in self.conflicts:
            if entry.name == other.name and entry.matches(other.version):
                return entry
        return None

    def requirements_on(self, name: str) -> DependencySet:
        """Return the requirements that mention ``name``."""
        return tuple(req for req in self.depends if name in req.names)

    def to_json(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "version": str(self.version),
            "depends": ", ".join(str(req) for req in self.depends),
            "conflicts": ", ".join(str(entry) for entry in self.conflicts),
        }

    def __str__(self) -> str:
        return f"{self.name}={self.version}"
