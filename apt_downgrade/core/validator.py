"""Independent re-check of resolver output.

:class:`PlanValidator` is the single exit gate of a resolution. It does not
trust the search that produced the assignment. Instead it re-walks it and
confirms that:

- the requested package is pinned to exactly the requested version;
- every requirement of every changed package holds;
- every requirement that mentions a changed package holds, for every
  assigned package;
- every obligation the resolver accepted (dependencies, reverse
  dependencies, conflicts) still holds in the final assignment;
- no changed package conflicts with anything it will end up next to, and
  no installed package left in place conflicts with a changed one.

A violation is a resolver bug, reported as
:class:`~apt_downgrade.exceptions.PlanInconsistent`. A valid assignment is
tagged against the installed versions and ordered so that every package
comes after the packages it depends on.
"""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Mapping, Optional, Set

from apt_downgrade.utils.logger import get_logger
from apt_downgrade.models.version import Version
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.plan import (
    ChangeKind,
    PlanEntry,
    ResolutionPlan,
    ResolutionRequest,
)
from apt_downgrade.exceptions import PlanInconsistent

logger = get_logger("validator")

__all__ = ["PlanValidator"]


class PlanValidator:
    """Validate an assignment and turn it into a :class:`ResolutionPlan`.

    Example::

        >>> plan = PlanValidator().validate(request, assignment, installed)
        >>> [entry.name for entry in plan]
        ['libbar', 'libfoo']
    """

    def validate(
        self,
        request: ResolutionRequest,
        assignment: Mapping[str, PackageCandidate],
        installed: Mapping[str, Optional[Version]],
        obligations: Iterable = (),
        *,
        installed_candidates: Optional[Mapping[str, PackageCandidate]] = None,
        steps: int = 0,
        backtracks: int = 0,
    ) -> ResolutionPlan:
        """Check ``assignment`` and build the ordered plan.

        Args:
            request: The request the assignment answers.
            assignment: Chosen candidate per package name.
            installed: Installed versions known for the run (``None`` for
                packages that are not installed). Names missing from the
                mapping are treated as not installed.
            obligations: Obligations the resolver accepted; each must hold.
            installed_candidates: Installed candidates of packages the run
                looked at. The Conflicts and Breaks of those left unassigned
                are checked against every changed package.
            steps: Search statistics copied onto the plan.
            backtracks: Search statistics copied onto the plan.

        Returns:
            The validated plan.

        Raises:
            PlanInconsistent: If any check fails.
        """
        root = assignment.get(request.package)
        if root is None or root.version != request.version:
            raise PlanInconsistent(request.package, f"= {request.version}")

        changed = {
            name
            for name, candidate in assignment.items()
            if installed.get(name) != candidate.version
        }

        def effective(name: str) -> Optional[Version]:
            candidate = assignment.get(name)
            if candidate is not None:
                return candidate.version
            return installed.get(name)

        for name in sorted(assignment):
            candidate = assignment[name]
            for requirement in candidate.depends:
                if name not in changed and not changed.intersection(requirement.names):
                    continue
                if not requirement.is_satisfied(effective):
                    raise PlanInconsistent(name, str(requirement))

        for obligation in obligations:
            if not obligation.requirement.is_satisfied(effective):
                raise PlanInconsistent(
                    obligation.source or request.package, str(obligation.requirement)
                )

        self._check_conflicts(assignment, installed, changed, installed_candidates or {})

        entries = tuple(
            PlanEntry(
                name=name,
                old_version=installed.get(name),
                new_version=assignment[name].version,
                relation=ChangeKind.between(installed.get(name), assignment[name].version),
            )
            for name in self._order(assignment)
        )
        logger.debug("Validated plan with %d entries", len(entries))
        return ResolutionPlan(request, entries, steps=steps, backtracks=backtracks)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_conflicts(
        assignment: Mapping[str, PackageCandidate],
        installed: Mapping[str, Optional[Version]],
        changed: Set[str],
        installed_candidates: Mapping[str, PackageCandidate],
    ) -> None:
        for name in sorted(installed_candidates):
            if name in assignment:
                continue
            current = installed_candidates[name]
            for changed_name in sorted(changed):
                entry = current.conflicts_with(assignment[changed_name])
                if entry is not None:
                    raise PlanInconsistent(name, f"no {entry}")

        for name in sorted(changed):
            candidate = assignment[name]
            for other in assignment.values():
                entry = candidate.conflicts_with(other) or other.conflicts_with(candidate)
                if entry is not None:
                    raise PlanInconsistent(name, f"no {entry}")
            for entry in candidate.conflicts:
                if entry.name in assignment or entry.name == name:
                    continue
                version = installed.get(entry.name)
                if version is not None and entry.matches(version):
                    raise PlanInconsistent(name, f"no {entry}")

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def _order(assignment: Mapping[str, PackageCandidate]) -> List[str]:
        """Topologically sort ``assignment`` (dependencies first).

        Ties are broken by package name. Dependency cycles are broken by
        emitting the smallest remaining name.
        """
        dependencies: Dict[str, Set[str]] = {name: set() for name in assignment}
        dependents: Dict[str, Set[str]] = {name: set() for name in assignment}

        for name, candidate in assignment.items():
            for requirement in candidate.depends:
                for alt in requirement.alternatives:
                    target = assignment.get(alt.name)
                    if alt.name == name or target is None or not alt.matches(target.version):
                        continue
                    dependencies[name].add(alt.name)
                    dependents[alt.name].add(name)

        pending = {name: len(deps) for name, deps in dependencies.items()}
        heap = [name for name, count in pending.items() if count == 0]
        heapq.heapify(heap)
        remaining = set(assignment)
        order: List[str] = []

        while remaining:
            if heap:
                name = heapq.heappop(heap)
                if name not in remaining:
                    continue
            else:
                name = min(remaining)
                logger.debug("Breaking dependency cycle at %s", name)

            remaining.discard(name)
            order.append(name)
            for dependent in dependents[name]:
                pending[dependent] -= 1
                if pending[dependent] == 0 and dependent in remaining:
                    heapq.heappush(heap, dependent)

        return order
