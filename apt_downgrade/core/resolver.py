"""Version resolution engine for apt-downgrade.

Given a request to move one package to an earlier version, the
:class:`Resolver` computes a version for every package that has to move with
it, before anything on the system is touched.

Algorithm outline (constraint propagation with chronological backtracking):

1. The worklist starts with one pinned obligation: the requested package at
   exactly the requested version.
2. Obligations are popped in FIFO order. An obligation whose requirement is
   already met by the assignment is accepted. If the requirement names an
   assigned package at an incompatible version, that is a conflict. This
   also covers dependency cycles: a package that comes back round is judged
   against its tentative value.
3. For an unassigned package the admissible candidates are those that meet
   every constraint collected for it, do not conflict with anything already
   assigned, and whose requirements are not already refuted by the
   assignment. The installed version goes first when admissible, then the
   rest newest first. The first one is chosen and the untried ones are kept
   on the decision stack.
4. A requirement with several alternatives (``a | b``) becomes a decision of
   its own. Alternatives are tried in declared order, except that those
   already pinned to a version they reject go last.
5. Choosing a version different from the installed one schedules its
   dependencies and every installed package that conflicts with it in
   either direction. Installed reverse dependencies whose requirements would
   break are scheduled too.
6. On conflict the most recent decision with untried options is resumed.
   Every assignment and every obligation made after it is undone by
   restoring the state snapshot taken when the decision was made.

The search is single-threaded. Only metadata queries are awaited, and the
per-run :class:`~apt_downgrade.core.cache.CandidateCache` may fan them out.
The finished assignment goes through
:class:`~apt_downgrade.core.validator.PlanValidator` before it is returned.

Typical usage::

    resolver = Resolver(AptMetadataProvider())
    plan = await resolver.resolve_downgrade("libfoo1", "1.0-1")
    for entry in plan.changes():
        print(entry.name, entry.old_version, "->", entry.new_version)
"""

from __future__ import annotations

import time
from enum import Enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple

from apt_downgrade.config import AptDowngradeConfig
from apt_downgrade.utils.logger import get_logger
from apt_downgrade.core.cache import CandidateCache
from apt_downgrade.core.provider import MetadataProvider
from apt_downgrade.core.validator import PlanValidator
from apt_downgrade.models.version import Relation, Version, VersionConstraint
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.dependency import Alternative, Requirement
from apt_downgrade.models.plan import ResolutionPlan, ResolutionRequest
from apt_downgrade.constants import (
    DEFAULT_CHECK_REVERSE_DEPENDENCIES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_MAX_STEPS,
    DEFAULT_PREFETCH,
)
from apt_downgrade.exceptions import (
    MetadataUnavailable,
    ResolutionTimeout,
    Unsatisfiable,
)

logger = get_logger("resolver")

__all__ = ["Resolver", "Obligation", "ObligationKind"]


# ---------------------------------------------------------------------------
# Search state
# ---------------------------------------------------------------------------


class ObligationKind(Enum):
    """Why an obligation was scheduled."""

    ROOT = "root"
    DEPENDENCY = "dependency"
    REVERSE = "reverse-dependency"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Obligation:
    """A requirement the final assignment must meet.

    Attributes:
        requirement: What must hold.
        kind: Why it was scheduled.
        source: Package whose choice created the obligation (``None`` for
            the root request).
    """

    requirement: Requirement
    kind: ObligationKind
    source: Optional[str] = None

    def __str__(self) -> str:
        origin = self.source or "request"
        return f"{self.requirement} [{self.kind.value} from {origin}]"


# (alternative, source package) pairs constraining one package.
_Constraints = Tuple[Tuple[Alternative, Optional[str]], ...]


@dataclass
class _State:
    worklist: Deque[Obligation] = field(default_factory=deque)
    assignment: Dict[str, PackageCandidate] = field(default_factory=dict)
    changed: Set[str] = field(default_factory=set)
    constraints: Dict[str, _Constraints] = field(default_factory=dict)
    accepted: List[Obligation] = field(default_factory=list)

    def copy(self) -> "_State":
        return _State(
            worklist=deque(self.worklist),
            assignment=dict(self.assignment),
            changed=set(self.changed),
            constraints=dict(self.constraints),
            accepted=list(self.accepted),
        )


class _DecisionKind(Enum):
    VERSION = "version"
    ALTERNATIVE = "alternative"


@dataclass
class _Decision:
    kind: _DecisionKind
    obligation: Obligation
    alternative: Optional[Alternative]
    remaining: List[Any]
    snapshot: _State


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class Resolver:
    """Compute safe downgrade plans.

    Args:
        provider: Metadata source queried on demand.
        check_reverse_dependencies: Schedule installed reverse dependencies
            that a version change would break.
        prefetch: Warm the metadata cache for the dependencies of each newly
            chosen version in one concurrent burst.
        concurrent_limit: Maximum metadata queries in flight.
        max_steps: Iteration budget after which the search is abandoned.
        timeout: Wall-clock budget in seconds (``None`` for no limit).

    Example::

        >>> resolver = Resolver(provider, timeout=60)
        >>> plan = await resolver.resolve(ResolutionRequest.parse("a", "1.0"))
    """

    def __init__(
        self,
        provider: MetadataProvider,
        *,
        check_reverse_dependencies: bool = DEFAULT_CHECK_REVERSE_DEPENDENCIES,
        prefetch: bool = DEFAULT_PREFETCH,
        concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT,
        max_steps: int = DEFAULT_MAX_STEPS,
        timeout: Optional[float] = None,
    ) -> None:
        if provider is None:
            raise TypeError("provider must not be None; pass a MetadataProvider")

        self.provider = provider
        self.check_reverse_dependencies = check_reverse_dependencies
        self.prefetch = prefetch
        self.concurrent_limit = concurrent_limit
        self.max_steps = max_steps
        self.timeout = timeout

    @classmethod
    def from_config(
        cls,
        provider: MetadataProvider,
        config: AptDowngradeConfig,
    ) -> "Resolver":
        """Build a resolver using the settings of ``config``."""
        return cls(
            provider,
            check_reverse_dependencies=config.check_reverse_dependencies,
            prefetch=config.prefetch,
            concurrent_limit=config.concurrent_limit,
            max_steps=config.max_steps,
            timeout=config.timeout,
        )

    async def resolve_downgrade(self, package: str, version: str) -> ResolutionPlan:
        """Resolve a request given as plain strings.

        Raises:
            MalformedVersion: If ``version`` cannot be parsed.
            ResolutionError: If no plan can be produced.
        """
        return await self.resolve(ResolutionRequest.parse(package, version))

    async def resolve(self, request: ResolutionRequest) -> ResolutionPlan:
        """Compute and validate a plan for ``request``.

        Raises:
            Unsatisfiable: If no consistent assignment exists.
            ResolutionTimeout: If the step or time budget runs out.
            PlanInconsistent: If the validator rejects the result (a bug).
        """
        logger.info("Resolving %s", request)
        search = _Search(self, request, CandidateCache(self.provider, self.concurrent_limit))
        state = await search.run()

        plan = PlanValidator().validate(
            request,
            state.assignment,
            search.cache.cached_installed(),
            state.accepted,
            installed_candidates=search.cache.cached_installed_candidates(),
            steps=search.steps,
            backtracks=search.backtracks,
        )
        logger.info(
            "Resolved %s: %d package(s), %d change(s), %d backtrack(s)",
            request,
            len(plan),
            len(plan.changes()),
            search.backtracks,
        )
        return plan


class _Search:
    """One resolution run: worklist, decision stack and metadata cache."""

    def __init__(
        self,
        resolver: Resolver,
        request: ResolutionRequest,
        cache: CandidateCache,
    ) -> None:
        self.resolver = resolver
        self.request = request
        self.cache = cache

        self.state = _State()
        self.stack: List[_Decision] = []
        self.steps = 0
        self.backtracks = 0
        self.conflicting: Set[str] = set()
        self.unavailable: Set[str] = set()
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> _State:
        root = Requirement.single(
            self.request.package,
            VersionConstraint(Relation.EQ, self.request.version),
        )
        self._enqueue(Obligation(root, ObligationKind.ROOT))

        while self.state.worklist:
            self._checkpoint()
            obligation = self.state.worklist.popleft()
            if await self._process(obligation):
                continue
            if not await self._backtrack():
                self.conflicting.add(self.request.package)
                logger.info(
                    "No consistent assignment for %s after %d step(s)",
                    self.request,
                    self.steps,
                )
                raise Unsatisfiable(self.conflicting, unavailable=self.unavailable)

        return self.state

    def _checkpoint(self) -> None:
        self.steps += 1
        elapsed = time.monotonic() - self._started
        timeout = self.resolver.timeout
        if self.steps > self.resolver.max_steps or (
            timeout is not None and elapsed > timeout
        ):
            raise ResolutionTimeout(steps=self.steps, elapsed=elapsed)

    def _enqueue(self, obligation: Obligation) -> None:
        self.state.worklist.append(obligation)
        alternatives = obligation.requirement.alternatives
        if len(alternatives) == 1:
            alt = alternatives[0]
            self.state.constraints[alt.name] = self.state.constraints.get(
                alt.name, ()
            ) + ((alt, obligation.source),)

    def _assigned_version(self, name: str) -> Optional[Version]:
        candidate = self.state.assignment.get(name)
        return candidate.version if candidate else None

    def _note_conflict(self, *names: Optional[str]) -> None:
        self.conflicting.update(name for name in names if name)

    # ------------------------------------------------------------------
    # Obligations
    # ------------------------------------------------------------------

    async def _process(self, obligation: Obligation) -> bool:
        requirement = obligation.requirement
        if requirement.is_satisfied(self._assigned_version):
            self.state.accepted.append(obligation)
            return True

        if len(requirement.alternatives) == 1:
            return await self._require(obligation, requirement.alternatives[0])

        ordered = self._order_alternatives(requirement.alternatives)
        self.stack.append(
            _Decision(
                _DecisionKind.ALTERNATIVE,
                obligation,
                None,
                list(ordered[1:]),
                self.state.copy(),
            )
        )
        logger.debug("Trying %s for '%s'", ordered[0], requirement)
        return await self._require(obligation, ordered[0])

    def _order_alternatives(
        self, alternatives: Tuple[Alternative, ...]
    ) -> List[Alternative]:
        pending: List[Alternative] = []
        refuted: List[Alternative] = []
        for alt in alternatives:
            # Assigned means pinned to a version this alternative rejects.
            (refuted if alt.name in self.state.assignment else pending).append(alt)
        return pending + refuted

    async def _require(self, obligation: Obligation, alt: Alternative) -> bool:
        name = alt.name
        assigned = self.state.assignment.get(name)
        if assigned is not None:
            if alt.matches(assigned.version):
                self.state.accepted.append(obligation)
                return True
            logger.debug(
                "Conflict: %s needs %s but %s is chosen",
                obligation.source or "request",
                alt,
                assigned,
            )
            self._note_conflict(name, obligation.source)
            self._note_conflict(*(src for _, src in self.state.constraints.get(name, ())))
            return False

        try:
            candidates = await self.cache.candidates(name)
            installed = await self.cache.installed_version(name)
        except MetadataUnavailable as exc:
            logger.info("%s", exc)
            self.unavailable.add(name)
            self._note_conflict(name, obligation.source)
            return False

        constraints = self.state.constraints.get(name, ()) + ((alt, obligation.source),)
        ordered = self._candidate_order(name, candidates, installed, constraints)
        if not ordered:
            return False

        self.stack.append(
            _Decision(
                _DecisionKind.VERSION,
                obligation,
                alt,
                list(ordered[1:]),
                self.state.copy(),
            )
        )
        return await self._assign(obligation, alt, ordered[0])

    def _candidate_order(
        self,
        name: str,
        candidates: Iterable[PackageCandidate],
        installed: Optional[Version],
        constraints: _Constraints,
    ) -> List[PackageCandidate]:
        admissible: List[PackageCandidate] = []
        blockers: Set[str] = set()
        for candidate in candidates:
            rejection = self._rejection(candidate, constraints)
            if rejection is None:
                admissible.append(candidate)
            else:
                blockers.update(rejection)

        if not admissible:
            logger.debug("No admissible version of %s", name)
            self._note_conflict(name, *blockers)
            return []

        for index, candidate in enumerate(admissible):
            if installed is not None and candidate.version == installed:
                admissible.insert(0, admissible.pop(index))
                break
        return admissible

    def _rejection(
        self,
        candidate: PackageCandidate,
        constraints: _Constraints,
    ) -> Optional[Set[str]]:
        """Return the packages preventing ``candidate``, or ``None`` if admissible."""
        for alt, source in constraints:
            if not alt.matches(candidate.version):
                return {source} if source else set()

        for other in self.state.assignment.values():
            if candidate.conflicts_with(other) or other.conflicts_with(candidate):
                return {other.name}

        assignment = self.state.assignment
        for requirement in candidate.depends:
            if all(n in assignment for n in requirement.names) and not (
                requirement.is_satisfied(self._assigned_version)
            ):
                return set(requirement.names)

        return None

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def _assign(
        self,
        obligation: Obligation,
        alt: Alternative,
        candidate: PackageCandidate,
    ) -> bool:
        name = candidate.name
        state = self.state
        state.assignment[name] = candidate
        state.constraints[name] = state.constraints.get(name, ()) + (
            (alt, obligation.source),
        )
        state.accepted.append(obligation)

        try:
            installed = await self.cache.installed_version(name)
        except MetadataUnavailable:
            installed = None

        if installed is not None and candidate.version == installed:
            logger.debug("Keeping %s at installed version", candidate)
            self._recheck(candidate)
            return True

        logger.debug(
            "Choosing %s (installed: %s)", candidate, installed if installed else "none"
        )
        state.changed.add(name)

        for requirement in candidate.depends:
            self._enqueue(Obligation(requirement, ObligationKind.DEPENDENCY, name))

        if self.resolver.prefetch and candidate.depends:
            await self.cache.prefetch(
                n for requirement in candidate.depends for n in requirement.names
            )

        try:
            await self._schedule_conflicting(candidate)
            await self._schedule_reverse_dependencies(candidate, installed)
        except MetadataUnavailable as exc:
            logger.info("%s", exc)
            self.unavailable.add(exc.package)
            self._note_conflict(exc.package, name)
            return False

        return True

    def _recheck(self, candidate: PackageCandidate) -> None:
        """Schedule requirements of ``candidate`` refuted by changed packages."""
        for requirement in candidate.depends:
            if not any(n in self.state.changed for n in requirement.names):
                continue
            if requirement.is_satisfied(self._assigned_version):
                continue
            self._enqueue(
                Obligation(requirement, ObligationKind.DEPENDENCY, candidate.name)
            )

    async def _schedule_conflicting(self, candidate: PackageCandidate) -> None:
        for entry in candidate.conflicts:
            if entry.name == candidate.name or entry.name in self.state.assignment:
                continue
            installed = await self.cache.installed_version(entry.name)
            if installed is not None and entry.matches(installed):
                logger.debug("%s conflicts with installed %s", candidate, entry.name)
                self._enqueue(
                    Obligation(
                        Requirement.single(entry.name),
                        ObligationKind.CONFLICT,
                        candidate.name,
                    )
                )

    async def _schedule_reverse_dependencies(
        self,
        candidate: PackageCandidate,
        installed: Optional[Version],
    ) -> None:
        """Schedule installed packages affected by the change to ``candidate``.

        Conflicts and Breaks declared against the new version are always
        honoured. Dependencies of installed packages are only re-checked when
        ``check_reverse_dependencies`` is enabled and the package was
        installed before, since nothing could depend on an absent package.
        """
        name = candidate.name
        assignment = self.state.assignment

        for other in list(assignment.values()):
            if other.name not in self.state.changed and other.requirements_on(name):
                self._recheck(other)

        check_depends = (
            self.resolver.check_reverse_dependencies and installed is not None
        )

        for dependent in await self.cache.reverse_dependencies(name):
            if dependent == self.request.package or dependent in assignment:
                continue
            current = await self.cache.installed_candidate(dependent)
            if current is None:
                if await self.cache.installed_version(dependent) is not None:
                    # Relations unknown; it has to move to a version we can check.
                    logger.debug("Cannot inspect installed %s, scheduling it", dependent)
                    self._enqueue(
                        Obligation(
                            Requirement.single(dependent),
                            ObligationKind.REVERSE,
                            name,
                        )
                    )
                continue
            broken = check_depends and any(
                not requirement.is_satisfied(self._assigned_version)
                for requirement in current.requirements_on(name)
            )
            if broken or current.conflicts_with(candidate) or candidate.conflicts_with(current):
                logger.debug("Installed %s is affected by %s", current, candidate)
                self._enqueue(
                    Obligation(
                        Requirement.single(dependent),
                        ObligationKind.REVERSE,
                        name,
                    )
                )

    # ------------------------------------------------------------------
    # Backtracking
    # ------------------------------------------------------------------

    async def _backtrack(self) -> bool:
        while self.stack:
            decision = self.stack[-1]
            if not decision.remaining:
                self.stack.pop()
                continue

            self._checkpoint()
            option = decision.remaining.pop(0)
            self.state = decision.snapshot.copy()
            self.backtracks += 1

            if decision.kind is _DecisionKind.VERSION:
                logger.debug("Backtracking: retrying with %s", option)
                if await self._assign(decision.obligation, decision.alternative, option):
                    return True
            else:
                logger.debug(
                    "Backtracking: trying %s for '%s'",
                    option,
                    decision.obligation.requirement,
                )
                if await self._require(decision.obligation, option):
                    return True

        return False
