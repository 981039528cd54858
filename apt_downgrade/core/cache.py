"""Per-run metadata cache for apt-downgrade.

:class:`CandidateCache` sits between the resolver and a
:class:`~apt_downgrade.core.provider.MetadataProvider`. One instance is
created for each :meth:`Resolver.resolve` call and discarded afterwards, so
independent resolutions never share state.

Each package name triggers **at most one** query of each kind. An
:class:`asyncio.Semaphore` bounds concurrent provider calls, and a
per-name lock with a double-checked lookup makes concurrent requests for the
same name wait for the first fetch instead of querying again.

Failures are cached too: once a package is known to be unavailable, later
lookups in the same run fail immediately instead of querying again.

Typical usage::

    cache = CandidateCache(provider, concurrent_limit=8)
    await cache.prefetch(["libc6", "zlib1g"])      # concurrent fan-out
    candidates = await cache.candidates("libc6")   # served from cache
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple, TypeVar

from apt_downgrade.utils.logger import get_logger
from apt_downgrade.models.version import Version
from apt_downgrade.models.package import PackageCandidate
from apt_downgrade.models.dependency import normalize_name
from apt_downgrade.core.provider import MetadataProvider
from apt_downgrade.exceptions import MetadataUnavailable

logger = get_logger("cache")

__all__ = ["CandidateCache"]

T = TypeVar("T")

_Absent = object()


class CandidateCache:
    """Async-safe, single-run cache over a metadata provider.

    Args:
        provider: The metadata source.
        concurrent_limit: Maximum number of provider calls in flight.
    """

    def __init__(self, provider: MetadataProvider, concurrent_limit: int = 8) -> None:
        if concurrent_limit < 1:
            raise ValueError("concurrent_limit must be at least 1")

        self.provider = provider
        self._semaphore = asyncio.Semaphore(concurrent_limit)

        self._candidates: Dict[str, Tuple[PackageCandidate, ...]] = {}
        self._installed: Dict[str, Optional[Version]] = {}
        self._reverse: Dict[str, Tuple[str, ...]] = {}
        self._failures: Dict[Tuple[str, str], MetadataUnavailable] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public async accessors
    # ------------------------------------------------------------------

    async def candidates(self, name: str) -> Tuple[PackageCandidate, ...]:
        """Return the candidates of ``name`` sorted by descending version.

        Duplicate versions (the same version from several origins) are
        collapsed, keeping the first one reported by the provider.

        Raises:
            MetadataUnavailable: If the provider cannot supply them.
        """
        name = normalize_name(name)
        return await self._cached(
            "candidates",
            name,
            self._candidates,
            lambda: self._fetch_candidates(name),
        )

    async def installed_version(self, name: str) -> Optional[Version]:
        """Return the installed version of ``name`` (``None`` if absent).

        Raises:
            MetadataUnavailable: If the provider cannot be queried.
        """
        name = normalize_name(name)
        return await self._cached(
            "installed",
            name,
            self._installed,
            lambda: self.provider.installed_version(name),
        )

    async def installed_candidate(self, name: str) -> Optional[PackageCandidate]:
        """Return the candidate matching the installed version, if any.

        Raises:
            MetadataUnavailable: If the provider cannot be queried.
        """
        installed = await self.installed_version(name)
        if installed is None:
            return None
        for candidate in await self.candidates(name):
            if candidate.version == installed:
                return candidate
        logger.warning(
            "Installed version %s of %s is missing from its candidates",
            installed,
            name,
        )
        return None

    async def reverse_dependencies(self, name: str) -> Tuple[str, ...]:
        """Return installed packages with a relation on ``name``, sorted.

        Raises:
            MetadataUnavailable: If the provider cannot be queried.
        """
        name = normalize_name(name)
        return await self._cached(
            "reverse",
            name,
            self._reverse,
            lambda: self._fetch_reverse(name),
        )

    async def prefetch(self, names: Iterable[str]) -> None:
        """Concurrently warm the cache for several packages.

        Failures are recorded for later lookups rather than raised here.
        """
        pending = sorted({normalize_name(name) for name in names} - set(self._candidates))
        if not pending:
            return
        logger.debug("Prefetching metadata for %d package(s)", len(pending))
        await asyncio.gather(
            *(self._warm(name) for name in pending),
            return_exceptions=True,
        )

    # ------------------------------------------------------------------
    # Public synchronous accessors (cache-only, no I/O)
    # ------------------------------------------------------------------

    def cached_installed(self) -> Dict[str, Optional[Version]]:
        """Return a copy of every installed version fetched so far."""
        return dict(self._installed)

    def cached_installed_candidates(self) -> Dict[str, PackageCandidate]:
        """Return the installed candidate of every package fetched so far.

        Packages that are not installed, or whose installed version is not
        among their cached candidates, are left out.
        """
        found: Dict[str, PackageCandidate] = {}
        for name, version in self._installed.items():
            if version is None:
                continue
            for candidate in self._candidates.get(name, ()):
                if candidate.version == version:
                    found[name] = candidate
                    break
        return found

    def is_cached(self, name: str) -> bool:
        """Return True if the candidates of ``name`` are already known."""
        return normalize_name(name) in self._candidates

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _warm(self, name: str) -> None:
        await self.candidates(name)
        await self.installed_version(name)

    async def _cached(
        self,
        kind: str,
        name: str,
        store: Dict[str, T],
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        value = store.get(name, _Absent)
        if value is not _Absent:
            return value
        failure = self._failures.get((kind, name))
        if failure is not None:
            raise failure

        lock = self._locks.setdefault((kind, name), asyncio.Lock())
        async with lock:
            value = store.get(name, _Absent)
            if value is not _Absent:
                return value
            failure = self._failures.get((kind, name))
            if failure is not None:
                raise failure

            async with self._semaphore:
                try:
                    result = await fetch()
                except MetadataUnavailable as exc:
                    logger.debug("Provider failed for %s (%s): %s", name, kind, exc)
                    self._failures.setdefault((kind, name), exc)
                    raise

            return store.setdefault(name, result)

    async def _fetch_candidates(self, name: str) -> Tuple[PackageCandidate, ...]:
        fetched = await self.provider.candidates(name)
        unique: Dict[Version, PackageCandidate] = {}
        for candidate in fetched:
            if candidate.name != name:
                raise MetadataUnavailable(
                    name, f"provider returned candidate for '{candidate.name}'"
                )
            unique.setdefault(candidate.version, candidate)
        return tuple(sorted(unique.values(), key=lambda c: c.version, reverse=True))

    async def _fetch_reverse(self, name: str) -> Tuple[str, ...]:
        names = await self.provider.reverse_dependencies(name)
        return tuple(sorted({normalize_name(n) for n in names} - {name}))
