"""
Core functionality exports for apt-downgrade.

Importing from here keeps user-facing imports clean and stable::

    from apt_downgrade.core import Resolver, AptMetadataProvider
"""

from __future__ import annotations

from apt_downgrade.core.cache import CandidateCache
from apt_downgrade.core.validator import PlanValidator
from apt_downgrade.core.resolver import Obligation, ObligationKind, Resolver
from apt_downgrade.core.installer import apply_plan, build_install_command
from apt_downgrade.core.provider import MetadataProvider, StaticMetadataProvider
from apt_downgrade.core.apt import AptEnv, AptMetadataProvider, read_apt_env

__all__ = [
    "MetadataProvider",
    "StaticMetadataProvider",
    "AptMetadataProvider",
    "AptEnv",
    "read_apt_env",
    "CandidateCache",
    "Resolver",
    "Obligation",
    "ObligationKind",
    "PlanValidator",
    "build_install_command",
    "apply_plan",
]
