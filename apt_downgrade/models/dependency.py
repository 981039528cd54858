"""
Dependency relation models for apt-downgrade.

A package version declares its needs as a *dependency set*: an ordered
conjunction of :class:`Requirement` objects, each of which is an ordered,
non-empty disjunction of :class:`Alternative` objects. This mirrors Debian's
relation syntax, where ``,`` means AND and ``|`` means OR::

    libc6 (>= 2.34), default-mta | mail-transport-agent

Conflicts (``Conflicts`` and ``Breaks``) are a flat tuple of alternatives;
any one of them matching an installed package is a conflict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from apt_downgrade.models.version import Version, VersionConstraint
from apt_downgrade.exceptions import MalformedRelation, MalformedVersion

__all__ = [
    "Alternative",
    "Requirement",
    "DependencySet",
    "ConflictSet",
    "parse_relations",
    "parse_conflicts",
    "normalize_name",
]

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9+.-]*$")
_ATOM_RE = re.compile(
    r"""^
    (?P<name>[^\s(:\[<]+)
    (?::(?P<arch>[A-Za-z0-9-]+))?
    \s*
    (?:\(\s*(?P<constraint>[^)]*)\))?
    \s*
    (?:\[(?P<archlist>[^\]]*)\])?
    \s*
    (?:<[^>]*>\s*)*
    $""",
    re.VERBOSE,
)


def normalize_name(name: str) -> str:
    """Return the canonical (lower-case, stripped) form of a package name."""
    return name.strip().lower()


@dataclass(frozen=True)
class Alternative:
    """One option of a requirement: a package name and optional constraint."""

    name: str
    constraint: Optional[VersionConstraint] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", normalize_name(self.name))

    def matches(self, version: Version) -> bool:
        """Return True if ``version`` of this package satisfies the option."""
        return self.constraint is None or self.constraint.satisfied_by(version)

    def __str__(self) -> str:
        if self.constraint is None:
            return self.name
        return f"{self.name} ({self.constraint})"


@dataclass(frozen=True)
class Requirement:
    """A disjunction of alternatives; satisfied when any one holds."""

    alternatives: Tuple[Alternative, ...]

    def __post_init__(self) -> None:
        if not self.alternatives:
            raise ValueError("a requirement needs at least one alternative")
        object.__setattr__(self, "alternatives", tuple(self.alternatives))

    @classmethod
    def single(
        cls,
        name: str,
        constraint: Optional[VersionConstraint] = None,
    ) -> "Requirement":
        """Build a requirement with exactly one alternative."""
        return cls((Alternative(name, constraint),))

    @property
    def names(self) -> Tuple[str, ...]:
        """Package names mentioned by this requirement, in declared order."""
        return tuple(alt.name for alt in self.alternatives)

    def is_satisfied(self, lookup: Callable[[str], Optional[Version]]) -> bool:
        """Check the requirement against a name -> version lookup.

        Args:
            lookup: Returns the version a package is (or will be) at, or
                ``None`` when the package is absent.
        """
        for alt in self.alternatives:
            version = lookup(alt.name)
            if version is not None and alt.matches(version):
                return True
        return False

    def __str__(self) -> str:
        return " | ".join(str(alt) for alt in self.alternatives)


DependencySet = Tuple[Requirement, ...]
ConflictSet = Tuple[Alternative, ...]


def _parse_atom(atom: str, field_text: str) -> Alternative:
    match = _ATOM_RE.match(atom.strip())
    if not match:
        raise MalformedRelation(field_text, offending=atom, reason="unparseable atom")

    name = normalize_name(match.group("name"))
    if not _NAME_RE.match(name):
        raise MalformedRelation(
            field_text, offending=match.group("name"), reason="invalid package name"
        )

    raw_constraint = match.group("constraint")
    if raw_constraint is None:
        return Alternative(name)

    try:
        return Alternative(name, VersionConstraint.parse(raw_constraint))
    except MalformedVersion as exc:
        raise MalformedRelation(
            field_text,
            offending=atom.strip(),
            reason=exc.message,
        ) from exc


def parse_relations(text: Optional[str]) -> DependencySet:
    """Parse a ``Depends``-style field into a dependency set.

    Architecture qualifiers (``perl:any``), architecture lists
    (``[amd64]``) and build profiles (``<!nocheck>``) are accepted and
    dropped.

    Args:
        text: Field value, e.g. ``"libc6 (>= 2.34), a | b (<< 3)"``.

    Returns:
        Tuple of requirements in declared order. ``None`` or blank input
        yields an empty tuple.

    Raises:
        MalformedRelation: If any atom cannot be parsed.

    Example::

        >>> [str(r) for r in parse_relations("a (>= 1) | b, c")]
        ['a (>= 1) | b', 'c']
    """
    if not text or not text.strip():
        return ()

    requirements: List[Requirement] = []
    for group in text.split(","):
        if not group.strip():
            continue
        atoms = group.split("|")
        if any(not atom.strip() for atom in atoms):
            raise MalformedRelation(text, offending=group.strip(), reason="empty alternative")
        requirements.append(
            Requirement(tuple(_parse_atom(atom, text) for atom in atoms))
        )
    return tuple(requirements)


def parse_conflicts(text: Optional[str]) -> ConflictSet:
    """Parse a ``Conflicts``/``Breaks`` field.

    Raises:
        MalformedRelation: If an entry uses ``|`` or cannot be parsed.
    """
    if not text or not text.strip():
        return ()

    entries: List[Alternative] = []
    for group in text.split(","):
        if not group.strip():
            continue
        if "|" in group:
            raise MalformedRelation(
                text, offending=group.strip(), reason="alternatives are not allowed here"
            )
        entries.append(_parse_atom(group, text))
    return tuple(entries)
