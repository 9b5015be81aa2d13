"""Tests for the DependencyResolver."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from limepkg.core.resolver import DependencyResolver, satisfies
from limepkg.errors import (
    BreakingUpgrade,
    CyclicDependency,
    DependencyConflict,
    DependentPackagesExist,
    UnresolvedDependency,
)
from limepkg.models.manifest import Dependency, Manifest


class FakeKnown:
    """Known-package view backed by a plain list.

    Names in ``pending`` are present but mid-transition, so not installed.
    """

    def __init__(self, *manifests: Manifest, pending: tuple[str, ...] = ()) -> None:
        self.manifests = list(manifests)
        self.pending = set(pending)

    def present_manifests(self) -> list[Manifest]:
        return list(self.manifests)

    def installed_manifests(self) -> list[Manifest]:
        return [m for m in self.manifests if m.name not in self.pending]


def dep(name: str, version: str = "v1.0.0", requires: str = ">=", relation: str = "depends") -> dict:
    return {"name": name, "version": version, "requires": requires, "relation": relation}


@pytest.fixture
def pkg(make_manifest: Callable[..., Manifest]) -> Callable[..., Manifest]:
    def _factory(name: str, version: str = "v1.0.0", *deps: dict) -> Manifest:
        return make_manifest(name, version, depends=list(deps))

    return _factory


class TestResolveInstall:
    def test_satisfied_by_present_package(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("a", "v1.0.0")))
        resolution = resolver.resolve(pkg("b", "v1.0.0", dep("a", "v1.0.0", ">=")))
        assert resolution.order == ["b"]
        assert resolution.diagnostics == []

    def test_unsatisfied_version(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("a", "v1.0.0")))
        with pytest.raises(UnresolvedDependency) as exc_info:
            resolver.resolve(pkg("b", "v1.0.0", dep("a", "v2.0.0", ">=")))
        assert exc_info.value.package == "b"
        assert exc_info.value.dependency == "a"
        assert "depends >= v2.0.0" in exc_info.value.constraint

    def test_missing_package(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        with pytest.raises(UnresolvedDependency):
            resolver.resolve(pkg("b", "v1.0.0", dep("a", relation="predepends")))

    def test_satisfied_by_virtual_provider(self, pkg):
        mta = pkg("postfix", "v3.0.0", dep("mail-transport-agent", "v1.0.0", relation="provides"))
        resolver = DependencyResolver(FakeKnown(mta))
        resolution = resolver.resolve(
            pkg("mailer", "v1.0.0", dep("mail-transport-agent", "v1.0.0", "=="))
        )
        assert resolution.order == ["mailer"]

    def test_virtual_version_must_match(self, pkg):
        mta = pkg("postfix", "v3.0.0", dep("mta", "v1.0.0", relation="replaces"))
        resolver = DependencyResolver(FakeKnown(mta))
        with pytest.raises(UnresolvedDependency):
            resolver.resolve(pkg("mailer", "v1.0.0", dep("mta", "v2.0.0", ">=")))

    def test_advisory_dependencies_are_diagnostics(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        resolution = resolver.resolve(
            pkg("app", "v1.0.0", dep("docs", relation="suggests"), dep("extras", relation="recommends"))
        )
        assert resolution.order == ["app"]
        assert len(resolution.diagnostics) == 2
        assert "docs" in resolution.diagnostics[0]

    def test_pending_package_is_not_a_provider(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("a"), pending=("a",)))
        with pytest.raises(UnresolvedDependency):
            resolver.resolve(pkg("b", "v1.0.0", dep("a", relation="predepends")))
        with pytest.raises(UnresolvedDependency):
            resolver.resolve(pkg("c", "v1.0.0", dep("a")))


class TestConflicts:
    def test_conflict_with_present(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("old", "v1.0.0")))
        with pytest.raises(DependencyConflict) as exc_info:
            resolver.resolve(pkg("new", "v1.0.0", dep("old", "v2.0.0", "<<", "conflicts")))
        assert exc_info.value.other == "old"

    def test_conflict_version_not_matching(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("old", "v3.0.0")))
        resolution = resolver.resolve(pkg("new", "v1.0.0", dep("old", "v2.0.0", "<<", "breaks")))
        assert resolution.order == ["new"]

    def test_reverse_conflict(self, pkg):
        present = pkg("guard", "v1.0.0", dep("intruder", "v0.0.0", ">=", "breaks"))
        resolver = DependencyResolver(FakeKnown(present))
        with pytest.raises(DependencyConflict):
            resolver.resolve(pkg("intruder", "v1.0.0"))

    def test_conflict_inside_batch(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        with pytest.raises(DependencyConflict):
            resolver.resolve_batch([pkg("a"), pkg("b", "v1.0.0", dep("a", "v1.0.0", "==", "conflicts"))])

    def test_pending_package_still_conflicts(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("old", "v1.0.0"), pending=("old",)))
        with pytest.raises(DependencyConflict):
            resolver.resolve(pkg("new", "v1.0.0", dep("old", "v2.0.0", "<<", "conflicts")))


class TestOrdering:
    def test_batch_topological_order(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        c = pkg("c", "v1.0.0", dep("b"))
        b = pkg("b", "v1.0.0", dep("a"))
        a = pkg("a")
        resolution = resolver.resolve_batch([c, b, a])
        assert resolution.order == ["a", "b", "c"]

    def test_order_is_stable_for_independent_packages(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        resolution = resolver.resolve_batch([pkg("z"), pkg("y"), pkg("x")])
        assert resolution.order == ["z", "y", "x"]

    def test_predepends_recorded(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        resolution = resolver.resolve_batch(
            [pkg("app", "v1.0.0", dep("runtime", relation="predepends")), pkg("runtime")]
        )
        assert resolution.order == ["runtime", "app"]
        assert resolution.predepends == {"app": ["runtime"]}

    def test_present_provider_preferred(self, pkg):
        resolver = DependencyResolver(FakeKnown(pkg("lib", "v1.0.0")))
        resolution = resolver.resolve_batch(
            [pkg("app", "v1.0.0", dep("lib")), pkg("other", "v1.0.0")]
        )
        assert resolution.order == ["app", "other"]

    def test_cycle_detected(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        with pytest.raises(CyclicDependency) as exc_info:
            resolver.resolve_batch([pkg("a", "v1.0.0", dep("b")), pkg("b", "v1.0.0", dep("a"))])
        assert sorted(exc_info.value.packages) == ["a", "b"]

    def test_three_node_cycle(self, pkg):
        resolver = DependencyResolver(FakeKnown())
        with pytest.raises(CyclicDependency):
            resolver.resolve_batch(
                [
                    pkg("a", "v1.0.0", dep("b")),
                    pkg("b", "v1.0.0", dep("c")),
                    pkg("c", "v1.0.0", dep("a")),
                    pkg("d"),
                ]
            )


class TestUpgradeAndRemoval:
    def test_breaking_upgrade(self, pkg):
        known = FakeKnown(pkg("lib", "v1.5.0"), pkg("app", "v1.0.0", dep("lib", "v2.0.0", "<<")))
        resolver = DependencyResolver(known)
        with pytest.raises(BreakingUpgrade) as exc_info:
            resolver.check_upgrade(pkg("lib", "v2.0.0"))
        assert exc_info.value.dependent == "app"

    def test_compatible_upgrade(self, pkg):
        known = FakeKnown(pkg("lib", "v1.5.0"), pkg("app", "v1.0.0", dep("lib", "v1.0.0", ">=")))
        resolution = DependencyResolver(known).check_upgrade(pkg("lib", "v2.0.0"))
        assert resolution.order == ["lib"]

    def test_upgrade_dropping_virtual_breaks(self, pkg):
        old = pkg("postfix", "v1.0.0", dep("mta", "v1.0.0", relation="provides"))
        known = FakeKnown(old, pkg("mailer", "v1.0.0", dep("mta")))
        with pytest.raises(BreakingUpgrade):
            DependencyResolver(known).check_upgrade(pkg("postfix", "v2.0.0"))

    def test_upgrade_with_alternative_provider(self, pkg):
        old = pkg("postfix", "v1.0.0", dep("mta", "v1.0.0", relation="provides"))
        alt = pkg("exim", "v1.0.0", dep("mta", "v1.0.0", relation="provides"))
        known = FakeKnown(old, alt, pkg("mailer", "v1.0.0", dep("mta")))
        DependencyResolver(known).check_upgrade(pkg("postfix", "v2.0.0"))

    def test_advisory_dependents_do_not_block_upgrade(self, pkg):
        known = FakeKnown(pkg("lib", "v1.0.0"), pkg("app", "v1.0.0", dep("lib", "v1.0.0", "==", "recommends")))
        DependencyResolver(known).check_upgrade(pkg("lib", "v2.0.0"))

    def test_removal_blocked_by_dependent(self, pkg):
        known = FakeKnown(pkg("a"), pkg("b", "v1.0.0", dep("a")))
        resolver = DependencyResolver(known)
        with pytest.raises(DependentPackagesExist) as exc_info:
            resolver.check_removal(["a"])
        assert exc_info.value.dependents == ["b"]

    def test_removal_of_both(self, pkg):
        known = FakeKnown(pkg("a"), pkg("b", "v1.0.0", dep("a")))
        order = DependencyResolver(known).check_removal(["a", "b"])
        assert order == ["b", "a"]

    def test_removal_with_alternative_provider(self, pkg):
        known = FakeKnown(
            pkg("a", "v1.0.0", dep("virt", relation="provides")),
            pkg("c", "v1.0.0", dep("virt", relation="provides")),
            pkg("b", "v1.0.0", dep("virt")),
        )
        assert DependencyResolver(known).check_removal(["a"]) == ["a"]

    def test_dependents_of(self, pkg):
        known = FakeKnown(pkg("a"), pkg("b", "v1.0.0", dep("a")), pkg("c", "v1.0.0", dep("a")))
        resolver = DependencyResolver(known)
        assert resolver.dependents_of("a") == ["b", "c"]
        assert resolver.dependents_of("a", removing=["b"]) == ["c"]
        assert resolver.dependents_of("missing") == []

    def test_upgrade_closing_a_cycle_rejected(self, pkg):
        known = FakeKnown(pkg("a"), pkg("b", "v1.0.0", dep("a")))
        with pytest.raises(CyclicDependency) as exc_info:
            DependencyResolver(known).check_upgrade(pkg("a", "v1.1.0", dep("b")))
        assert sorted(exc_info.value.packages) == ["a", "b"]

    def test_upgrade_cycle_through_virtual(self, pkg):
        known = FakeKnown(
            pkg("a"),
            pkg("b", "v1.0.0", dep("a"), dep("svc", relation="provides")),
            pkg("c", "v1.0.0", dep("b")),
        )
        with pytest.raises(CyclicDependency) as exc_info:
            DependencyResolver(known).check_upgrade(pkg("a", "v1.1.0", dep("svc")))
        assert sorted(exc_info.value.packages) == ["a", "b"]

    def test_removal_of_mutual_dependents(self, pkg):
        known = FakeKnown(pkg("a", "v1.0.0", dep("b")), pkg("b", "v1.0.0", dep("a")))
        order = DependencyResolver(known).check_removal(["a", "b"])
        assert sorted(order) == ["a", "b"]

    def test_removal_cycle_keeps_outside_order(self, pkg):
        known = FakeKnown(
            pkg("base"),
            pkg("a", "v1.0.0", dep("b"), dep("base")),
            pkg("b", "v1.0.0", dep("a")),
            pkg("top", "v1.0.0", dep("a")),
        )
        order = DependencyResolver(known).check_removal(["base", "a", "b", "top"])
        assert sorted(order) == ["a", "b", "base", "top"]
        assert order.index("top") < order.index("a")
        assert order.index("a") < order.index("base")

    def test_removal_alternative_must_be_installed(self, pkg):
        known = FakeKnown(
            pkg("a", "v1.0.0", dep("virt", relation="provides")),
            pkg("c", "v1.0.0", dep("virt", relation="provides")),
            pkg("b", "v1.0.0", dep("virt")),
            pending=("c",),
        )
        with pytest.raises(DependentPackagesExist):
            DependencyResolver(known).check_removal(["a"])


class TestSatisfiesHelper:
    def test_by_name_and_virtual(self, pkg):
        m = pkg("postfix", "v3.0.0", dep("mta", "v1.0.0", relation="provides"))
        assert satisfies(m, Dependency(name="postfix", version="v3.0.0", requires="=="))
        assert satisfies(m, Dependency(name="mta", version="v1.0.0", requires=">="))
        assert not satisfies(m, Dependency(name="mta", version="v2.0.0", requires=">="))
