"""Turn the dependency graph into a platform-normalized build plan."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import CyclicBuildDependency
from ..logging import get_logger
from ..models import (
    DependencyEdge,
    DependencyGraph,
    DependencyRole,
    Diagnostic,
    DroppedEdge,
    Package,
    PackageKey,
    PlannedBuild,
    PlannedBuildScript,
    PlannedDependency,
    PlannedPackage,
    PlatformDetails,
    SourceKind,
    WorkspaceContext,
    identity_sort_key,
    sorted_by_identity,
)
from ..platform.resolver import Classification, PlatformResolver
from ..settings import CrateSettings, RazeSettings
from .license import classify_license

UNKNOWN_OVERRIDE_TARGET = "unknown-override-target"
EXCLUDED_EDGE = "excluded-edge"
SKIPPED_EDGE = "skipped-edge"
INACTIVE_OPTIONAL_EDGE = "inactive-optional-edge"
BUILD_SCRIPT_DISABLED = "build-script-disabled"
DEV_EDGE = "dev-edge"
UNSUPPORTED_KIND_EDGE = "unsupported-kind-edge"

DEFAULT_RUSTC_FLAGS = ("--cap-lints=allow",)

_NO_OVERRIDES = CrateSettings()


@dataclass(frozen=True)
class PlanResult:
    """A plan plus the non-fatal diagnostics gathered while building it."""

    build: PlannedBuild
    diagnostics: Tuple[Diagnostic, ...] = ()


@dataclass
class _MergedEdge:
    target: int
    role: DependencyRole
    features: Set[str] = field(default_factory=set)
    universal: bool = False
    predicates: Set[str] = field(default_factory=set)
    renames: Set[str] = field(default_factory=set)


class BuildPlanner:
    """Plans every non-root package of a graph for the requested platforms."""

    def __init__(
        self,
        settings: RazeSettings,
        platforms: PlatformDetails,
        *,
        collect_exclusions: bool = False,
    ) -> None:
        self.settings = settings
        self.resolver = PlatformResolver(platforms)
        self.collect_exclusions = collect_exclusions
        self.logger = get_logger("planning")

    def plan(self, graph: DependencyGraph) -> PlanResult:
        """Return the PlannedBuild for ``graph``.

        Raises CyclicBuildDependency when build-script dependencies loop back on
        themselves; no partial plan is produced in that case.
        """
        diagnostics: List[Diagnostic] = list(self._unknown_crate_overrides(graph))
        root_members = self._root_members(graph)
        planned_indexes = [
            index for index in range(len(graph.packages)) if index not in root_members
        ]

        if self.collect_exclusions:
            diagnostics.extend(self._dropped_edge_diagnostics(graph, root_members))

        merged: Dict[int, List[_MergedEdge]] = {}
        for index in planned_indexes:
            merged[index] = self._merge_edges(graph, index, diagnostics)
        self._check_build_cycles(graph, merged)

        packages = [self._plan_package(graph, index, merged[index]) for index in planned_indexes]
        packages.sort(key=lambda planned: identity_sort_key(planned.key))

        workspace = WorkspaceContext(
            workspace_path=self.settings.workspace_path,
            workspace_root=graph.workspace_root,
            gen_workspace_prefix=self.settings.gen_workspace_prefix,
            output_buildfile_suffix=self.settings.output_buildfile_suffix,
            vendor_dir=self.settings.vendor_dir,
            root_dependencies=self._root_dependencies(graph, root_members),
        )
        self.logger.info(
            "Planned %d packages for %s", len(packages), ", ".join(self.resolver.details.triples)
        )
        return PlanResult(PlannedBuild(workspace, tuple(packages)), tuple(diagnostics))

    # Edge handling

    def _merge_edges(
        self, graph: DependencyGraph, index: int, diagnostics: List[Diagnostic]
    ) -> List[_MergedEdge]:
        package = graph.packages[index]
        crate = self._crate_settings(package)
        outgoing = graph.outgoing(index)
        diagnostics.extend(self._unknown_dependency_overrides(graph, package, crate, outgoing))
        gen_buildrs = self._gen_buildrs(crate) and package.has_build_script

        groups: Dict[Tuple[int, DependencyRole], _MergedEdge] = {}
        for edge in outgoing:
            target = graph.packages[edge.target]
            forced = _matches_any(crate.forced_deps, target)
            if not forced and _matches_any(crate.skipped_deps, target):
                self._record_exclusion(diagnostics, SKIPPED_EDGE, package, target, edge, "skipped by settings")
                continue
            if edge.role is DependencyRole.BUILD and not gen_buildrs:
                self._record_exclusion(
                    diagnostics, BUILD_SCRIPT_DISABLED, package, target, edge, "build script is not generated"
                )
                continue
            if edge.optional and not forced and not package.enables(edge.rename or target.name):
                self._record_exclusion(
                    diagnostics, INACTIVE_OPTIONAL_EDGE, package, target, edge, "optional feature is not enabled"
                )
                continue

            classification = self.resolver.classify(edge)
            if classification.kind is Classification.EXCLUDED and not forced:
                self._record_exclusion(
                    diagnostics, EXCLUDED_EDGE, package, target, edge, "predicate matches no requested platform"
                )
                continue

            group = groups.setdefault((edge.target, edge.role), _MergedEdge(edge.target, edge.role))
            group.features.update(edge.features)
            if forced or classification.kind is Classification.UNIVERSAL:
                group.universal = True
            elif classification.predicate is not None:
                group.predicates.add(classification.predicate)
            if edge.rename:
                group.renames.add(edge.rename)

        return [groups[key] for key in sorted(groups, key=lambda k: (k[0], k[1].value))]

    def _record_exclusion(
        self,
        diagnostics: List[Diagnostic],
        code: str,
        package: Package,
        target: Package,
        edge: DependencyEdge,
        reason: str,
    ) -> None:
        self.logger.debug("Dropping %s -> %s: %s", package.name, target.name, reason)
        if not self.collect_exclusions:
            return
        detail = {"dependency": f"{target.name}-{target.version}", "role": edge.role.value}
        if edge.platform:
            detail["predicate"] = edge.platform
        diagnostics.append(
            Diagnostic(
                code=code,
                message=f"{package.name}-{package.version} -> {target.name}-{target.version}: {reason}",
                package=package.key,
                detail=detail,
            )
        )

    def _dropped_edge_diagnostics(self, graph: DependencyGraph, root_members: Set[int]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        for dropped in graph.dropped_edges:
            if dropped.source in root_members:
                continue
            package = graph.packages[dropped.source]
            target = graph.packages[dropped.target]
            diagnostics.append(_dropped_diagnostic(package, target, dropped))
        return diagnostics

    # Package planning

    def _plan_package(
        self, graph: DependencyGraph, index: int, merged: Sequence[_MergedEdge]
    ) -> PlannedPackage:
        package = graph.packages[index]
        crate = self._crate_settings(package)
        normal = [edge for edge in merged if edge.role is DependencyRole.NORMAL]
        build = [edge for edge in merged if edge.role is DependencyRole.BUILD]
        deps, conditional = self._split(graph, normal, crate)

        build_script: Optional[PlannedBuildScript] = None
        if package.build_script is not None and self._gen_buildrs(crate):
            build_deps, build_conditional = self._split(graph, build, crate)
            name = f"{package.crate_name}_build_script"
            build_script = PlannedBuildScript(
                name=name,
                crate_root=package.build_script,
                deps=build_deps,
                conditional_deps=build_conditional,
                extra_deps=tuple(crate.buildrs_additional_deps),
                env=dict(sorted(crate.buildrs_additional_environment_variables.items())),
                outputs=(f"{name}.out_dir", f"{name}.env"),
            )
            local = PlannedDependency(key=package.key, target=name, local=True)
            deps = tuple(sorted((*deps, local), key=_dependency_sort_key))

        return PlannedPackage(
            package=package,
            deps=deps,
            conditional_deps=conditional,
            license=classify_license(package.license),
            build_script=build_script,
            features=tuple(sorted(package.features)),
            rustc_flags=(*DEFAULT_RUSTC_FLAGS, *crate.additional_flags),
            rustc_env=dict(sorted(crate.additional_env.items())),
            extra_deps=tuple(crate.additional_deps),
            data_attr=crate.data_attr,
            extra_aliased_targets=tuple(crate.extra_aliased_targets),
            download_url=self._download_url(package),
        )

    def _split(
        self, graph: DependencyGraph, merged: Iterable[_MergedEdge], crate: CrateSettings
    ) -> Tuple[Tuple[PlannedDependency, ...], Dict[str, Tuple[PlannedDependency, ...]]]:
        universal: List[PlannedDependency] = []
        conditional: Dict[str, List[PlannedDependency]] = {}
        for edge in merged:
            target = graph.packages[edge.target]
            dependency = PlannedDependency(
                key=target.key,
                target=target.crate_name,
                rename=min(edge.renames) if edge.renames else None,
                override=_rename_for(crate.renames, target),
                features=tuple(sorted(edge.features)),
            )
            if edge.universal:
                universal.append(dependency)
                continue
            for predicate in edge.predicates:
                conditional.setdefault(predicate, []).append(dependency)

        ordered = {
            predicate: tuple(sorted(conditional[predicate], key=_dependency_sort_key))
            for predicate in sorted(conditional)
        }
        return tuple(sorted(universal, key=_dependency_sort_key)), ordered

    def _download_url(self, package: Package) -> Optional[str]:
        if package.source is not SourceKind.REGISTRY:
            return None
        return self.settings.registry_url.format(crate=package.name, version=package.version)

    def _crate_settings(self, package: Package) -> CrateSettings:
        return self.settings.crate_settings(package.name, package.version) or _NO_OVERRIDES

    def _gen_buildrs(self, crate: CrateSettings) -> bool:
        if crate.gen_buildrs is not None:
            return crate.gen_buildrs
        return self.settings.default_gen_buildrs

    # Workspace roots

    @staticmethod
    def _root_members(graph: DependencyGraph) -> Set[int]:
        depended_on = {edge.target for edge in graph.edges}
        return {member for member in graph.workspace_members if member not in depended_on}

    def _root_dependencies(self, graph: DependencyGraph, root_members: Set[int]) -> Tuple[PackageKey, ...]:
        keys: Set[PackageKey] = set()
        for member in root_members:
            for edge in graph.outgoing(member):
                if edge.role is not DependencyRole.NORMAL or edge.target in root_members:
                    continue
                if self.resolver.classify(edge).kind is Classification.EXCLUDED:
                    continue
                keys.add(graph.packages[edge.target].key)
        return tuple(sorted_by_identity(list(keys)))

    # Override validation

    def _unknown_crate_overrides(self, graph: DependencyGraph) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        names = graph.names()
        for name in sorted(self.settings.crates):
            for version in sorted(self.settings.crates[name]):
                if version == "*":
                    known = name in names
                else:
                    known = graph.index_of((name, version)) is not None
                if known:
                    continue
                message = f"Settings override crate {name} {version}, which is not in the dependency graph"
                self.logger.warning(message)
                diagnostics.append(
                    Diagnostic(
                        code=UNKNOWN_OVERRIDE_TARGET,
                        message=message,
                        package=None,
                        detail={"crate": name, "version": version},
                    )
                )
        return diagnostics

    def _unknown_dependency_overrides(
        self,
        graph: DependencyGraph,
        package: Package,
        crate: CrateSettings,
        outgoing: Sequence[DependencyEdge],
    ) -> List[Diagnostic]:
        targets = [graph.packages[edge.target] for edge in outgoing]
        requested: List[Tuple[str, str]] = [
            *(("skipped_deps", entry) for entry in crate.skipped_deps),
            *(("forced_deps", entry) for entry in crate.forced_deps),
            *(("renames", entry) for entry in sorted(crate.renames)),
        ]
        diagnostics: List[Diagnostic] = []
        for setting, entry in requested:
            if any(_matches(entry, target) for target in targets):
                continue
            message = (
                f"Settings for {package.name}-{package.version} name dependency '{entry}' "
                f"in {setting}, but it has no such dependency"
            )
            self.logger.warning(message)
            diagnostics.append(
                Diagnostic(
                    code=UNKNOWN_OVERRIDE_TARGET,
                    message=message,
                    package=package.key,
                    detail={"setting": setting, "dependency": entry},
                )
            )
        return diagnostics

    # Cycle detection

    def _check_build_cycles(self, graph: DependencyGraph, merged: Mapping[int, Sequence[_MergedEdge]]) -> None:
        adjacency: Dict[int, List[int]] = {
            source: sorted({edge.target for edge in edges if edge.target in merged})
            for source, edges in merged.items()
        }
        for component in _strongly_connected(sorted(merged), adjacency):
            members = set(component)
            build_edges = [
                (source, edge.target)
                for source in sorted(members)
                for edge in merged[source]
                if edge.role is DependencyRole.BUILD and edge.target in members
            ]
            if not build_edges:
                continue
            source, target = build_edges[0]
            path = _shortest_path(target, source, adjacency, members)
            cycle = [source, *path[:-1]] if target != source else [source]
            names = [f"{graph.packages[i].name}-{graph.packages[i].version}" for i in cycle]
            raise CyclicBuildDependency(names)


def _strongly_connected(nodes: Sequence[int], adjacency: Mapping[int, Sequence[int]]) -> List[List[int]]:
    """Tarjan's algorithm, iterative so deep graphs do not hit the recursion limit."""
    order: Dict[int, int] = {}
    low: Dict[int, int] = {}
    stack: List[int] = []
    on_stack: Set[int] = set()
    components: List[List[int]] = []
    counter = 0

    for root in nodes:
        if root in order:
            continue
        order[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(adjacency.get(root, ())))]
        while work:
            node, children = work[-1]
            descended = False
            for child in children:
                if child not in order:
                    order[child] = low[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(adjacency.get(child, ()))))
                    descended = True
                    break
                if child in on_stack:
                    low[node] = min(low[node], order[child])
            if descended:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == order[node]:
                component: List[int] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))
    return components


def _shortest_path(
    start: int, goal: int, adjacency: Mapping[int, Sequence[int]], allowed: Set[int]
) -> List[int]:
    """Breadth-first path from start to goal inside ``allowed`` (both ends included)."""
    previous: Dict[int, Optional[int]] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        if node == goal:
            break
        for child in adjacency.get(node, ()):
            if child in allowed and child not in previous:
                previous[child] = node
                queue.append(child)
    path: List[int] = []
    cursor: Optional[int] = goal
    while cursor is not None:
        path.append(cursor)
        cursor = previous.get(cursor)
    return list(reversed(path))


def _dropped_diagnostic(package: Package, target: Package, dropped: DroppedEdge) -> Diagnostic:
    code = DEV_EDGE if dropped.kind == "dev" else UNSUPPORTED_KIND_EDGE
    detail = {"dependency": f"{target.name}-{target.version}", "kind": dropped.kind}
    if dropped.platform:
        detail["predicate"] = dropped.platform
    return Diagnostic(
        code=code,
        message=(
            f"{package.name}-{package.version} -> {target.name}-{target.version}: "
            f"{dropped.kind} dependencies are not built"
        ),
        package=package.key,
        detail=detail,
    )


def _matches(entry: str, package: Package) -> bool:
    return entry in (package.name, f"{package.name}-{package.version}")


def _matches_any(entries: Iterable[str], package: Package) -> bool:
    return any(_matches(entry, package) for entry in entries)


def _rename_for(renames: Mapping[str, str], package: Package) -> Optional[str]:
    return renames.get(f"{package.name}-{package.version}") or renames.get(package.name)


def _dependency_sort_key(dependency: PlannedDependency) -> Tuple[int, Tuple, str]:
    return (0 if dependency.local else 1, identity_sort_key(dependency.key), dependency.target)


__all__ = ["BuildPlanner", "PlanResult"]
