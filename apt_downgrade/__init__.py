"""
apt-downgrade: safe package downgrades for APT-based systems.

Given a package and an earlier version, apt-downgrade computes which other
packages have to move with it so that every dependency, conflict and reverse
dependency stays satisfied, and only then hands the plan to ``apt-get``.

Example::

    >>> import asyncio
    >>> from apt_downgrade import Resolver, AptMetadataProvider
    >>> plan = asyncio.run(
    ...     Resolver(AptMetadataProvider()).resolve_downgrade("libfoo1", "1.0-1")
    ... )
    >>> print(plan.summary())
"""

from __future__ import annotations

from apt_downgrade.__version__ import __version__
from apt_downgrade.core import (
    AptMetadataProvider,
    MetadataProvider,
    PlanValidator,
    Resolver,
    StaticMetadataProvider,
)
from apt_downgrade.models import (
    PackageCandidate,
    ResolutionPlan,
    ResolutionRequest,
    Version,
)

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "apt-downgrade Contributors"
__license__ = "GPL-3.0-or-later"
__description__ = "Compute and apply safe package downgrades on APT-based systems."

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "__version__",
    "Resolver",
    "PlanValidator",
    "MetadataProvider",
    "StaticMetadataProvider",
    "AptMetadataProvider",
    "Version",
    "PackageCandidate",
    "ResolutionRequest",
    "ResolutionPlan",
]
