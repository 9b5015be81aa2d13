"""Error taxonomy for archives, resolution and lifecycle transitions.

Parse, format and integrity errors are permanent and always name the
offending artifact, section or path. Resolution errors are raised before
any mutation. ``PartialFailure`` and ``TriggerTimeout`` leave the package
record in a non-terminal state that the caller must retry or roll back.
"""

from __future__ import annotations

from collections.abc import Sequence


class LimePackageError(Exception):
    """Base class for every error raised by limepkg."""


# ---------------------------------------------------------------------------
# Parse / validation
# ---------------------------------------------------------------------------


class InvalidVersion(LimePackageError, ValueError):
    """Raised when a version string cannot be parsed."""


class InvalidName(LimePackageError, ValueError):
    """Raised when a package name contains characters outside [a-z0-9_-]."""


class InvalidManifest(LimePackageError, ValueError):
    """Raised when a manifest breaks a structural rule."""


class EncodingError(LimePackageError, ValueError):
    """Raised when radix-85 text cannot be decoded."""


# ---------------------------------------------------------------------------
# Archive format / integrity
# ---------------------------------------------------------------------------


class FormatError(LimePackageError):
    """Raised when an archive is not a package or its sections are malformed."""

    def __init__(self, section: str, message: str) -> None:
        self.section = section
        super().__init__(f"{section}: {message}")


class IntegrityError(LimePackageError):
    """Raised when a hash or the index disagrees with the manifest."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionError(LimePackageError):
    """Base class for dependency resolution failures."""


class UnresolvedDependency(ResolutionError):
    """Raised when a Depends/Predepends constraint has no satisfying package."""

    def __init__(self, package: str, dependency: str, constraint: str) -> None:
        self.package = package
        self.dependency = dependency
        self.constraint = constraint
        super().__init__(
            f"{package} requires {dependency} {constraint}, which is not available"
        )


class DependencyConflict(ResolutionError):
    """Raised when a Breaks/Conflicts relation matches a known package."""

    def __init__(self, package: str, other: str, reason: str) -> None:
        self.package = package
        self.other = other
        super().__init__(f"{package} conflicts with {other}: {reason}")


class CyclicDependency(ResolutionError):
    """Raised when Depends/Predepends edges form a cycle."""

    def __init__(self, packages: Sequence[str]) -> None:
        self.packages = list(packages)
        super().__init__(
            f"Dependency cycle between: {', '.join(sorted(self.packages))}"
        )


class BreakingUpgrade(ResolutionError):
    """Raised when an upgrade would break an installed dependent."""

    def __init__(self, package: str, dependent: str, constraint: str) -> None:
        self.package = package
        self.dependent = dependent
        self.constraint = constraint
        super().__init__(
            f"Upgrading {package} breaks {dependent}, which requires {constraint}"
        )


class DependentPackagesExist(ResolutionError):
    """Raised when removing a package that installed packages still depend on."""

    def __init__(self, package: str, dependents: Sequence[str]) -> None:
        self.package = package
        self.dependents = list(dependents)
        super().__init__(
            f"Cannot remove {package}: still required by {', '.join(self.dependents)}"
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class LifecycleError(LimePackageError):
    """Base class for lifecycle engine failures."""


class InvalidTransition(LifecycleError):
    """Raised when a lifecycle action is not allowed from the current state."""


class PluginNotFound(LifecycleError):
    """Raised when a manifest needs plugins that are not registered."""

    def __init__(self, package: str, plugins: Sequence[str]) -> None:
        self.package = package
        self.plugins = list(plugins)
        super().__init__(
            f"{package} requires unregistered plugins: {', '.join(self.plugins)}"
        )


class ActionItemFailed(LifecycleError):
    """Raised when a plugin fails while running an action item."""

    def __init__(self, package: str, phase: str, plugin: str, message: str) -> None:
        self.package = package
        self.phase = phase
        self.plugin = plugin
        super().__init__(f"{package} {phase} item ({plugin}) failed: {message}")


class PartialFailure(LifecycleError):
    """Raised when a transition stopped after mutating some files."""

    def __init__(
        self,
        package: str,
        state: str,
        succeeded: Sequence[str],
        failed: str,
        message: str,
    ) -> None:
        self.package = package
        self.state = state
        self.succeeded = list(succeeded)
        self.failed = failed
        super().__init__(
            f"{package} left in {state}: {failed} failed ({message}); "
            f"completed: {', '.join(self.succeeded) or 'none'}"
        )


class TriggerTimeout(LifecycleError):
    """Raised when an action item or trigger exceeds its timeout."""

    def __init__(self, package: str, plugin: str, timeout: float) -> None:
        self.package = package
        self.plugin = plugin
        self.timeout = timeout
        super().__init__(
            f"{package}: action item ({plugin}) did not finish within {timeout}s"
        )
