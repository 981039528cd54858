"""
Custom exception hierarchy for apt-downgrade.

This module defines structured exception types used across apt-downgrade.
All exceptions inherit from :class:`AptDowngradeError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

Resolution failures come in two flavours that must not be confused:

- :class:`Unsatisfiable` means no consistent plan exists for the request.
  It is a normal, user-visible outcome.
- :class:`PlanInconsistent` means the resolver produced a plan that the
  validator rejected. It signals a defect in the resolver itself.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence


class AptDowngradeError(Exception):
    """Base exception for all apt-downgrade errors.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class MalformedVersion(AptDowngradeError, ValueError):
    """Raised when a Debian version string cannot be parsed.

    Args:
        input: The full version string that was rejected.
        offending: The substring that made it invalid.
        reason: Short explanation of the problem.
    """

    __slots__ = ("input", "offending")

    def __init__(
        self,
        input: str,
        *,
        offending: Optional[str] = None,
        reason: str = "invalid version",
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "offending", offending)
        super().__init__(f"Malformed version {input!r}: {reason}", details)
        self.input = input
        self.offending = offending if offending is not None else input


class MalformedRelation(AptDowngradeError, ValueError):
    """Raised when a Depends/Conflicts style field cannot be parsed.

    Args:
        text: The relation field, or the part of it being parsed.
        offending: The relation atom that was rejected.
        reason: Short explanation of the problem.
    """

    __slots__ = ("text", "offending")

    def __init__(
        self,
        text: str,
        *,
        offending: Optional[str] = None,
        reason: str = "invalid relation",
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "offending", offending)
        super().__init__(f"Malformed relation {_truncate(text)!r}: {reason}", details)
        self.text = text
        self.offending = offending


class ConfigError(AptDowngradeError):
    """Raised when configuration is invalid or cannot be loaded.

    Args:
        message: Error description.
        config_path: Path of the configuration file involved.
        option: Name of the offending option.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)
        super().__init__(message, details)
        self.config_path = config_path
        self.option = option


class MetadataUnavailable(AptDowngradeError):
    """Raised when the metadata provider cannot supply data for a package.

    Args:
        package: Name of the package that could not be queried.
        reason: Why the provider failed.
    """

    __slots__ = ("package", "reason")

    def __init__(self, package: str, reason: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "reason", reason)
        super().__init__(f"Metadata unavailable for package '{package}'", details)
        self.package = package
        self.reason = reason


class ResolutionError(AptDowngradeError):
    """Base class for failures to produce a plan."""


class Unsatisfiable(ResolutionError):
    """Raised when no consistent version assignment exists.

    Args:
        packages: Packages whose constraints could not be jointly satisfied.
        unavailable: Packages the provider could not supply data for.
    """

    __slots__ = ("packages", "unavailable")

    def __init__(
        self,
        packages: Iterable[str],
        *,
        unavailable: Iterable[str] = (),
    ) -> None:
        self.packages: Sequence[str] = tuple(sorted(set(packages)))
        self.unavailable: Sequence[str] = tuple(sorted(set(unavailable)))
        details: MutableMapping[str, Any] = {}
        if self.unavailable:
            details["unavailable"] = ", ".join(self.unavailable)
        super().__init__(
            "No consistent version set exists for: " + ", ".join(self.packages),
            details,
        )


class ResolutionTimeout(ResolutionError):
    """Raised when the search exceeds its step or time budget.

    Args:
        steps: Number of worklist iterations performed.
        elapsed: Seconds spent searching.
    """

    __slots__ = ("steps", "elapsed")

    def __init__(self, *, steps: int, elapsed: float) -> None:
        super().__init__(
            "Resolution aborted before completion",
            {"steps": steps, "elapsed": f"{elapsed:.2f}s"},
        )
        self.steps = steps
        self.elapsed = elapsed


class PlanInconsistent(AptDowngradeError):
    """Raised when the validator rejects a plan produced by the resolver.

    This is an internal invariant violation, never a normal outcome.

    Args:
        package: Package whose obligation is not met.
        requirement: Human-readable form of the unmet requirement.
    """

    __slots__ = ("package", "requirement")

    def __init__(self, package: str, requirement: str) -> None:
        super().__init__(
            f"Resolver produced an inconsistent plan: '{package}' needs {requirement}",
            {"package": package},
        )
        self.package = package
        self.requirement = requirement


class CommandError(AptDowngradeError):
    """Raised when an external package-management command fails.

    Args:
        message: Error description.
        command: The command line that was run.
        returncode: Process exit status.
        stderr: Captured standard error, truncated for safety.
    """

    __slots__ = ("command", "returncode", "stderr")

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "command", " ".join(command) if command else None)
        _add_if(details, "returncode", returncode)
        if stderr:
            details["stderr"] = _truncate(stderr.strip())

        super().__init__(message, details)

        self.command = tuple(command) if command else ()
        self.returncode = returncode
        self.stderr = stderr
