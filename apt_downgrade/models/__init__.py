"""
Unified data model exports for apt-downgrade.

Example:
    >>> from apt_downgrade.models import Version, PackageCandidate, ResolutionPlan
"""

from __future__ import annotations

from apt_downgrade.models.version import Relation, Version, VersionConstraint, compare
from apt_downgrade.models.dependency import (
    Alternative,
    ConflictSet,
    DependencySet,
    Requirement,
    normalize_name,
    parse_conflicts,
    parse_relations,
)
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.plan import (
    ChangeKind,
    PlanEntry,
    ResolutionPlan,
    ResolutionRequest,
)

__all__ = [
    "Version",
    "Relation",
    "VersionConstraint",
    "compare",
    "Alternative",
    "Requirement",
    "DependencySet",
    "ConflictSet",
    "normalize_name",
    "parse_relations",
    "parse_conflicts",
    "PackageCandidate",
    "ChangeKind",
    "PlanEntry",
    "ResolutionPlan",
    "ResolutionRequest",
]
