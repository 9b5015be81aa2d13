"""Dependency resolution and install ordering.

The resolver checks a set of manifests (one transaction) against the
packages already present:

- Depends/Predepends must be satisfied by an installed package or by
  another manifest in the transaction, either by name or through a
  Provides/Replaces entry with a compatible version. A package stuck
  mid-transition (upgrading, removing) provides nothing.
- Breaks/Conflicts must not match any present or incoming package, in
  either direction.
- Suggests/Recommends never fail; unmet ones become diagnostics.

Install order is a topological sort (Kahn's algorithm) over the
Depends/Predepends edges between manifests of the same transaction.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from limepkg.errors import (
    BreakingUpgrade,
    CyclicDependency,
    DependencyConflict,
    DependentPackagesExist,
    UnresolvedDependency,
)
from limepkg.models.enums import (
    ADVISORY_RELATIONSHIPS,
    HARD_RELATIONSHIPS,
    NEGATIVE_RELATIONSHIPS,
    VIRTUAL_RELATIONSHIPS,
    Relationship,
)
from limepkg.models.manifest import Dependency, Manifest
from limepkg.models.version import Version

logger = logging.getLogger(__name__)


@runtime_checkable
class KnownPackages(Protocol):
    """Queryable view of the packages that are already present."""

    def present_manifests(self) -> list[Manifest]:
        ...

    def installed_manifests(self) -> list[Manifest]:
        ...


class Resolution(BaseModel):
    """Outcome of a successful resolution."""

    model_config = ConfigDict(frozen=True)

    order: list[str] = Field(default_factory=list)
    # package -> names of transaction members it predepends on
    predepends: dict[str, list[str]] = Field(default_factory=dict)
    diagnostics: list[str] = Field(default_factory=list)


def provided_versions(manifest: Manifest, name: str) -> list[Version]:
    """Versions at which ``manifest`` answers to ``name`` (itself or virtual)."""
    versions = []
    if manifest.name == name:
        versions.append(manifest.version)
    for dep in manifest.dependencies:
        if dep.relationship in VIRTUAL_RELATIONSHIPS and dep.name == name:
            versions.append(dep.version)
    return versions


def satisfies(manifest: Manifest, dep: Dependency) -> bool:
    """Whether ``manifest`` satisfies ``dep`` by name or by Provides/Replaces."""
    return any(dep.is_satisfied_by(v) for v in provided_versions(manifest, dep.name))


class DependencyResolver:
    """Resolves transactions against a view of present packages.

    Parameters
    ----------
    known:
        Anything with ``present_manifests()`` and ``installed_manifests()``,
        usually a PackageDatabase.
    """

    def __init__(self, known: KnownPackages) -> None:
        self._known = known

    # ------------------------------------------------------------------
    # Pool helpers
    # ------------------------------------------------------------------

    def _pool(self, incoming: Sequence[Manifest], *, present: bool = False) -> list[Manifest]:
        """Known manifests with incoming manifests replacing same-name ones.

        Installed packages only, unless ``present`` also asks for packages
        left mid-transition.
        """
        incoming_names = {m.name for m in incoming}
        known = self._known.present_manifests() if present else self._known.installed_manifests()
        return [*(m for m in known if m.name not in incoming_names), *incoming]

    @staticmethod
    def _providers(dep: Dependency, pool: Iterable[Manifest], *, exclude: str) -> list[Manifest]:
        return [m for m in pool if m.name != exclude and satisfies(m, dep)]

    # ------------------------------------------------------------------
    # Install resolution
    # ------------------------------------------------------------------

    def resolve(self, manifest: Manifest) -> Resolution:
        """Resolve a single manifest against the present packages."""
        return self.resolve_batch([manifest])

    def resolve_batch(self, manifests: Sequence[Manifest]) -> Resolution:
        """Resolve a transaction and return its install order.

        Raises
        ------
        UnresolvedDependency
            A Depends/Predepends constraint has no provider.
        DependencyConflict
            A Breaks/Conflicts relation matches, in either direction.
        CyclicDependency
            Depends/Predepends edges within the transaction form a cycle.
        """
        batch_names = [m.name for m in manifests]
        pool = self._pool(manifests)

        edges: dict[str, set[str]] = {name: set() for name in batch_names}
        predepends: dict[str, list[str]] = {}
        diagnostics: list[str] = []

        for manifest in manifests:
            for dep in manifest.dependencies_of(*HARD_RELATIONSHIPS):
                providers = self._providers(dep, pool, exclude=manifest.name)
                if not providers:
                    raise UnresolvedDependency(
                        manifest.name,
                        dep.name,
                        f"{dep.relationship.value} {dep.constraint}",
                    )
                # Prefer a provider that is already installed over one arriving now.
                provider = next(
                    (p for p in providers if p.name not in edges), providers[0]
                )
                if provider.name in edges:
                    edges[manifest.name].add(provider.name)
                    if dep.relationship == Relationship.PREDEPENDS:
                        predepends.setdefault(manifest.name, []).append(provider.name)

            for dep in manifest.dependencies_of(*ADVISORY_RELATIONSHIPS):
                if not self._providers(dep, pool, exclude=manifest.name):
                    message = (
                        f"{manifest.name} {dep.relationship.value} {dep.name} "
                        f"{dep.constraint}, which is not available"
                    )
                    logger.warning(message)
                    diagnostics.append(message)

        self._check_conflicts(manifests, self._pool(manifests, present=True))

        order = self._topological_order(batch_names, edges)
        logger.debug("Resolved order: %s", order)
        return Resolution(order=order, predepends=predepends, diagnostics=diagnostics)

    def _check_conflicts(self, manifests: Sequence[Manifest], pool: Sequence[Manifest]) -> None:
        for manifest in manifests:
            for dep in manifest.dependencies_of(*NEGATIVE_RELATIONSHIPS):
                for other in self._providers(dep, pool, exclude=manifest.name):
                    raise DependencyConflict(
                        manifest.name,
                        other.name,
                        f"{dep.relationship.value} {dep.name} {dep.constraint}",
                    )
        for other in pool:
            for dep in other.dependencies_of(*NEGATIVE_RELATIONSHIPS):
                for manifest in manifests:
                    if manifest.name != other.name and satisfies(manifest, dep):
                        raise DependencyConflict(
                            manifest.name,
                            other.name,
                            f"{other.name} {dep.relationship.value} {dep.name} "
                            f"{dep.constraint}",
                        )

    @staticmethod
    def _topological_order(
        names: list[str], edges: dict[str, set[str]], *, break_cycles: bool = False
    ) -> list[str]:
        """Kahn's algorithm; ``edges[a]`` holds what ``a`` must come after.

        A cycle raises CyclicDependency unless ``break_cycles`` is set, in
        which case one member of the cycle is released early and the rest
        of the order is kept.
        """
        position = {name: i for i, name in enumerate(names)}
        in_degree = {name: len(edges[name]) for name in names}
        dependents: dict[str, list[str]] = {name: [] for name in names}
        for name, prerequisites in edges.items():
            for prereq in prerequisites:
                dependents[prereq].append(name)

        queue = deque(sorted((n for n in names if in_degree[n] == 0), key=position.get))
        order: list[str] = []
        placed: set[str] = set()
        while True:
            while queue:
                node = queue.popleft()
                order.append(node)
                placed.add(node)
                for dep in sorted(dependents[node], key=position.get):
                    in_degree[dep] -= 1
                    if in_degree[dep] == 0:
                        queue.append(dep)

            stuck = [n for n in names if n not in placed]
            if not stuck:
                return order
            if not break_cycles:
                raise CyclicDependency(stuck)

            # Every stuck node waits on another stuck node, so following
            # prerequisites len(names) times lands on a cycle.
            node = stuck[0]
            for _ in names:
                node = min((p for p in edges[node] if p not in placed), key=position.get)
            logger.warning("Dependency cycle among %s; releasing %s first", ", ".join(stuck), node)
            in_degree[node] = 0
            queue.append(node)

    # ------------------------------------------------------------------
    # Upgrade / removal checks
    # ------------------------------------------------------------------

    def check_upgrade(self, manifest: Manifest) -> Resolution:
        """Resolve an upgrade and make sure no present dependent breaks.

        A present package P breaks when one of its Depends/Predepends was
        satisfied only by the old version of ``manifest`` and the new
        version (by name or by Provides/Replaces) no longer satisfies it.

        Raises
        ------
        BreakingUpgrade
            A dependent would lose its only provider.
        CyclicDependency
            The new version depends, directly or not, on a package that
            depends on it.
        """
        resolution = self.resolve_batch([manifest])
        installed = self._known.installed_manifests()
        old = next((m for m in installed if m.name == manifest.name), None)
        if old is None:
            return resolution

        for dependent in self._known.present_manifests():
            if dependent.name == manifest.name:
                continue
            for dep in dependent.dependencies_of(*HARD_RELATIONSHIPS):
                if not satisfies(old, dep) or satisfies(manifest, dep):
                    continue
                others = [
                    m for m in installed
                    if m.name not in (manifest.name, dependent.name) and satisfies(m, dep)
                ]
                if not others:
                    raise BreakingUpgrade(
                        manifest.name,
                        dependent.name,
                        f"{dep.name} {dep.constraint}",
                    )

        self._check_cycle_through(manifest)
        return resolution

    def _check_cycle_through(self, manifest: Manifest) -> None:
        """Raise CyclicDependency if a dependency path leads back to ``manifest``."""
        pool = self._pool([manifest])
        edges = {
            m.name: {
                p.name
                for dep in m.dependencies_of(*HARD_RELATIONSHIPS)
                for p in self._providers(dep, pool, exclude=m.name)
            }
            for m in pool
        }
        parents: dict[str, str] = {}
        queue = deque([manifest.name])
        while queue:
            node = queue.popleft()
            for nxt in sorted(edges.get(node, ())):
                if nxt == manifest.name:
                    cycle = [node]
                    while cycle[-1] != manifest.name:
                        cycle.append(parents[cycle[-1]])
                    raise CyclicDependency(cycle)
                if nxt not in parents:
                    parents[nxt] = node
                    queue.append(nxt)

    def dependents_of(self, name: str, *, removing: Iterable[str] = ()) -> list[str]:
        """Present packages that would lose a Depends/Predepends if ``name`` went.

        Packages in ``removing`` are ignored as dependents and as
        alternative providers. Only installed packages count as
        alternatives.
        """
        removing_set = set(removing) | {name}
        present = self._known.present_manifests()
        target = next((m for m in present if m.name == name), None)
        if target is None:
            return []

        installed = self._known.installed_manifests()
        result: list[str] = []
        for dependent in present:
            if dependent.name in removing_set:
                continue
            for dep in dependent.dependencies_of(*HARD_RELATIONSHIPS):
                if not satisfies(target, dep):
                    continue
                alternatives = [
                    m for m in installed
                    if m.name not in removing_set
                    and m.name != dependent.name
                    and satisfies(m, dep)
                ]
                if not alternatives:
                    result.append(dependent.name)
                    break
        return result

    def check_removal(self, names: Sequence[str]) -> list[str]:
        """Validate removing ``names`` together and return a safe removal order.

        Dependents are removed before the packages they depend on. Packages
        that depend on each other are all removed; the cycle is broken at
        one member.
        """
        for name in names:
            dependents = self.dependents_of(name, removing=names)
            if dependents:
                raise DependentPackagesExist(name, dependents)

        present = {m.name: m for m in self._known.present_manifests()}
        edges: dict[str, set[str]] = {name: set() for name in names}
        for name in names:
            manifest = present.get(name)
            if manifest is None:
                continue
            for dep in manifest.dependencies_of(*HARD_RELATIONSHIPS):
                for other in names:
                    if other != name and other in present and satisfies(present[other], dep):
                        # ``name`` depends on ``other``: remove ``name`` first.
                        edges[other].add(name)
        return self._topological_order(list(names), edges, break_cycles=True)
