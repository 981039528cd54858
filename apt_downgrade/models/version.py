"""
Debian version model for apt-downgrade.

Versions have the form ``[epoch:]upstream_version[-debian_revision]``.
Ordering is delegated to python-debian's
:class:`debian.debian_support.Version`, which follows dpkg: ``~`` sorts before
everything (even the end of the string), digit runs compare numerically and
``1.0`` equals ``1.00``.

:meth:`Version.parse` validates the text first so that a rejected version
names the part that is wrong. Equal versions hash alike, so ``Version``
instances can be used as dictionary keys.

Example::

    >>> Version.parse("1:2.0-1") > Version.parse("2.0-1") > Version.parse("1.9-2")
    True
    >>> VersionConstraint.parse(">= 2.0").satisfied_by(Version.parse("2.0~rc1"))
    False
"""

from __future__ import annotations

import re
from enum import Enum
from functools import total_ordering
from dataclasses import dataclass, field

from debian.debian_support import Version as DebianVersion

from apt_downgrade.exceptions import MalformedVersion

__all__ = ["Version", "Relation", "VersionConstraint", "compare"]

_EPOCH_RE = re.compile(r"^[0-9]+$")
_UPSTREAM_RE = re.compile(r"^[0-9][A-Za-z0-9.+~:-]*$")
_REVISION_RE = re.compile(r"^[A-Za-z0-9.+~]+$")
_DIGITS_RE = re.compile(r"[0-9]+")


def _canonical(part: str) -> str:
    """Spell ``part`` so that strings dpkg considers equal are identical.

    Digit runs lose their leading zeros, a missing final digit run counts as
    ``0``, and a part that is only zero is the same as an empty one.
    """
    text = _DIGITS_RE.sub(lambda m: str(int(m.group(0))), part)
    if text and not text[-1].isdigit():
        text += "0"
    return "" if text == "0" else text


@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A parsed Debian package version.

    Attributes:
        epoch: Leading integer epoch (``0`` when absent).
        upstream: Upstream version part.
        revision: Debian revision part (empty when absent).
        raw: The original string, used for display.
    """

    epoch: int
    upstream: str
    revision: str = ""
    raw: str = field(default="", compare=False)

    _debian: DebianVersion = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.raw:
            object.__setattr__(self, "raw", self._render())
        # Always spell the epoch out, the upstream part may contain a colon.
        full = f"{self.epoch}:{self.upstream}"
        if self.revision:
            full = f"{full}-{self.revision}"
        try:
            object.__setattr__(self, "_debian", DebianVersion(full))
        except ValueError as exc:
            raise MalformedVersion(full, reason=str(exc)) from exc

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse a version string.

        Args:
            text: Version such as ``"1:2.30-1ubuntu2"``.

        Returns:
            The parsed :class:`Version`.

        Raises:
            MalformedVersion: If ``text`` is not a valid Debian version. The
                error's ``offending`` attribute names the rejected part.
        """
        if not isinstance(text, str):
            raise MalformedVersion(repr(text), reason="version must be a string")

        if not text:
            raise MalformedVersion(text, offending="", reason="empty version")

        whitespace = re.search(r"\s", text)
        if whitespace:
            raise MalformedVersion(
                text,
                offending=whitespace.group(0),
                reason="embedded whitespace",
            )

        epoch = 0
        rest = text
        if ":" in text:
            epoch_text, rest = text.split(":", 1)
            if not _EPOCH_RE.match(epoch_text):
                raise MalformedVersion(
                    text, offending=epoch_text, reason="epoch is not a number"
                )
            epoch = int(epoch_text)

        upstream, revision = rest, ""
        if "-" in rest:
            upstream, revision = rest.rsplit("-", 1)
            if not revision:
                raise MalformedVersion(
                    text, offending="-", reason="empty revision after '-'"
                )
            if not _REVISION_RE.match(revision):
                raise MalformedVersion(
                    text,
                    offending=revision,
                    reason="revision contains invalid characters",
                )

        if not upstream:
            raise MalformedVersion(text, offending=rest, reason="empty upstream version")

        if not _UPSTREAM_RE.match(upstream):
            if not upstream[0].isdigit():
                raise MalformedVersion(
                    text,
                    offending=upstream,
                    reason="upstream version must start with a digit",
                )
            bad = re.search(r"[^A-Za-z0-9.+~:-]", upstream)
            raise MalformedVersion(
                text,
                offending=bad.group(0) if bad else upstream,
                reason="upstream version contains invalid characters",
            )

        return cls(epoch=epoch, upstream=upstream, revision=revision, raw=text)

    def _render(self) -> str:
        text = self.upstream
        if self.epoch or ":" in text:
            text = f"{self.epoch}:{text}"
        if self.revision:
            text = f"{text}-{self.revision}"
        return text

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._debian == other._debian

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._debian < other._debian

    def __hash__(self) -> int:
        return hash((self.epoch, _canonical(self.upstream), _canonical(self.revision)))

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"Version({self.raw!r})"


def compare(a: Version, b: Version) -> int:
    """Three-way compare two versions.

    Returns:
        ``-1`` if ``a < b``, ``0`` if equal, ``1`` if ``a > b``.
    """
    if a == b:
        return 0
    return -1 if a < b else 1


class Relation(Enum):
    """Debian version relation operators."""

    LT = "<<"
    LE = "<="
    EQ = "="
    GE = ">="
    GT = ">>"

    @classmethod
    def from_symbol(cls, symbol: str) -> "Relation":
        """Map an operator symbol to a relation.

        The obsolete ``<`` and ``>`` forms mean ``<=`` and ``>=``.

        Raises:
            ValueError: For unknown operators.
        """
        legacy = {"<": cls.LE, ">": cls.GE}
        if symbol in legacy:
            return legacy[symbol]
        return cls(symbol)

    def holds(self, order: int) -> bool:
        """Return True if a three-way comparison result meets this relation."""
        if self is Relation.LT:
            return order < 0
        if self is Relation.LE:
            return order <= 0
        if self is Relation.EQ:
            return order == 0
        if self is Relation.GE:
            return order >= 0
        return order > 0


@dataclass(frozen=True)
class VersionConstraint:
    """A relation paired with a version, e.g. ``>= 2.0-1``."""

    relation: Relation
    version: Version

    @classmethod
    def parse(cls, text: str) -> "VersionConstraint":
        """Parse ``"<op> <version>"`` (whitespace between the two is optional).

        Raises:
            MalformedVersion: If the version part is invalid or the operator
                is unknown.
        """
        match = re.match(r"^\s*(<<|<=|>=|>>|=|<|>)\s*(\S+)\s*$", text)
        if not match:
            raise MalformedVersion(text, reason="expected '<op> <version>'")
        return cls(
            Relation.from_symbol(match.group(1)),
            Version.parse(match.group(2)),
        )

    def satisfied_by(self, version: Version) -> bool:
        """Return True if ``version`` meets this constraint."""
        return self.relation.holds(compare(version, self.version))

    def __str__(self) -> str:
        return f"{self.relation.value} {self.version}"
