"""Core data models shared across raze components."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

PackageKey = Tuple[str, str]

_VERSION_PART = re.compile(r"(\d+|[^\d.+-]+)")


class SourceKind(str, Enum):
    """Where a package's sources come from."""

    WORKSPACE = "workspace"
    REGISTRY = "registry"
    GIT = "git"
    PATH = "path"


class DependencyRole(str, Enum):
    """Role of a dependency edge; dev-only edges never reach the graph."""

    NORMAL = "normal"
    BUILD = "build"


@dataclass(frozen=True)
class Target:
    """A compilable cargo target (library or build script)."""

    name: str
    kind: str
    crate_root: str
    edition: str


@dataclass(frozen=True)
class Package:
    """One resolved package from cargo metadata."""

    id: str
    name: str
    version: str
    source: SourceKind
    source_url: Optional[str] = None
    license: Optional[str] = None
    license_file: Optional[str] = None
    edition: str = "2015"
    features: Tuple[str, ...] = ()
    feature_map: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    lib_target: Optional[Target] = None
    build_script: Optional[str] = None
    manifest_dir: str = ""
    checksum: Optional[str] = None
    description: Optional[str] = None
    authors: Tuple[str, ...] = ()
    links: Optional[str] = None

    @property
    def key(self) -> PackageKey:
        return (self.name, self.version)

    @property
    def has_build_script(self) -> bool:
        return self.build_script is not None

    @property
    def crate_name(self) -> str:
        """Name of the compiled crate, which is also its Bazel target name."""
        if self.lib_target is not None:
            return sanitize_name(self.lib_target.name)
        return sanitize_name(self.name)

    @property
    def declared_features(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.feature_map)

    def enables(self, gate: str) -> bool:
        """Return True when the resolved features activate the optional dependency ``gate``."""
        if gate in self.features:
            return True
        definitions = dict(self.feature_map)
        for feature in self.features:
            for entry in definitions.get(feature, ()):
                if entry == f"dep:{gate}" or entry.startswith(f"{gate}/"):
                    return True
        return False


@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge between two packages, stored as indexes into the graph."""

    source: int
    target: int
    role: DependencyRole = DependencyRole.NORMAL
    features: FrozenSet[str] = frozenset()
    platform: Optional[str] = None
    rename: Optional[str] = None
    optional: bool = False


@dataclass(frozen=True)
class DroppedEdge:
    """A resolved edge discarded at ingestion (dev-only or an unsupported kind)."""

    source: int
    target: int
    kind: str
    platform: Optional[str] = None


@dataclass(frozen=True)
class DependencyGraph:
    """Flat, immutable view of the resolved cargo graph."""

    packages: Tuple[Package, ...]
    edges: Tuple[DependencyEdge, ...]
    workspace_members: FrozenSet[int] = frozenset()
    workspace_root: str = ""
    dropped_edges: Tuple[DroppedEdge, ...] = ()
    _by_key: Dict[PackageKey, int] = field(init=False, repr=False, compare=False)
    _outgoing: Dict[int, Tuple[DependencyEdge, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_key = {package.key: index for index, package in enumerate(self.packages)}
        outgoing: Dict[int, List[DependencyEdge]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
        object.__setattr__(self, "_by_key", by_key)
        object.__setattr__(
            self, "_outgoing", {index: tuple(edges) for index, edges in outgoing.items()}
        )

    def index_of(self, key: PackageKey) -> Optional[int]:
        return self._by_key.get(key)

    def outgoing(self, index: int) -> Tuple[DependencyEdge, ...]:
        return self._outgoing.get(index, ())

    def names(self) -> FrozenSet[str]:
        return frozenset(package.name for package in self.packages)


@dataclass(frozen=True)
class TargetPlatform:
    """A target triple and the cfg values rustc reports for it."""

    triple: str
    cfg: FrozenSet[Tuple[str, Optional[str]]] = frozenset()

    def has(self, key: str, value: Optional[str] = None) -> bool:
        if key == "target" and value is not None:
            return value == self.triple
        return (key, value) in self.cfg


@dataclass(frozen=True)
class PlatformDetails:
    """The set of platforms a plan must support."""

    platforms: Tuple[TargetPlatform, ...]

    @property
    def triples(self) -> Tuple[str, ...]:
        return tuple(platform.triple for platform in self.platforms)


@dataclass(frozen=True)
class WorkspaceContext:
    """Workspace-level facts shared by every rendered file."""

    workspace_path: str = "//cargo"
    workspace_root: str = ""
    gen_workspace_prefix: str = "raze"
    output_buildfile_suffix: str = ""
    vendor_dir: str = "vendor"
    root_dependencies: Tuple[PackageKey, ...] = ()


@dataclass(frozen=True)
class LicenseInfo:
    """Bazel license classification of a package's license expression."""

    kind: str
    name: str
    raw: Optional[str] = None


@dataclass(frozen=True)
class PlannedDependency:
    """A dependency of a planned package.

    ``override`` is a rendered reference from settings that replaces the
    computed label; ``local`` marks a target declared in the same BUILD file.
    ``features`` is the union requested by every merged edge to the target.
    """

    key: PackageKey
    target: str
    rename: Optional[str] = None
    override: Optional[str] = None
    local: bool = False
    features: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.key[0]

    @property
    def version(self) -> str:
        return self.key[1]


@dataclass(frozen=True)
class PlannedBuildScript:
    """Synthetic build-script target of a package."""

    name: str
    crate_root: str
    deps: Tuple[PlannedDependency, ...] = ()
    conditional_deps: Dict[str, Tuple[PlannedDependency, ...]] = field(default_factory=dict)
    extra_deps: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    outputs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PlannedPackage:
    """A package with its final, platform-normalized dependency lists."""

    package: Package
    deps: Tuple[PlannedDependency, ...]
    conditional_deps: Dict[str, Tuple[PlannedDependency, ...]]
    license: LicenseInfo
    build_script: Optional[PlannedBuildScript] = None
    features: Tuple[str, ...] = ()
    rustc_flags: Tuple[str, ...] = ()
    rustc_env: Dict[str, str] = field(default_factory=dict)
    extra_deps: Tuple[str, ...] = ()
    data_attr: Optional[str] = None
    extra_aliased_targets: Tuple[str, ...] = ()
    download_url: Optional[str] = None

    @property
    def key(self) -> PackageKey:
        return self.package.key

    def all_dependencies(self) -> List[PlannedDependency]:
        deps = list(self.deps)
        for group in self.conditional_deps.values():
            deps.extend(group)
        if self.build_script is not None:
            deps.extend(self.build_script.deps)
            for group in self.build_script.conditional_deps.values():
                deps.extend(group)
        return deps


@dataclass(frozen=True)
class PlannedBuild:
    """The normalized build plan handed to a renderer."""

    workspace: WorkspaceContext
    packages: Tuple[PlannedPackage, ...]

    def keys(self) -> List[PackageKey]:
        return [package.key for package in self.packages]

    def get(self, key: PackageKey) -> Optional[PlannedPackage]:
        for package in self.packages:
            if package.key == key:
                return package
        return None

    def missing_dependencies(self) -> List[Tuple[PackageKey, PackageKey]]:
        """Return (consumer, dependency) pairs whose dependency is not planned."""
        keys = set(self.keys())
        missing: List[Tuple[PackageKey, PackageKey]] = []
        for package in self.packages:
            for dep in package.all_dependencies():
                if not dep.local and dep.key not in keys:
                    missing.append((package.key, dep.key))
        return missing


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal finding reported alongside a plan."""

    code: str
    message: str
    package: Optional[PackageKey] = None
    detail: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderDetails:
    """Where rendered files go and how BUILD files are named."""

    path_prefix: str = "."
    buildfile_suffix: str = ""


@dataclass(frozen=True)
class FileOutput:
    """A rendered file."""

    path: str
    contents: str


def sanitize_name(name: str) -> str:
    """Turn a crate or package name into a valid Bazel target name."""
    return name.replace("-", "_")


def version_sort_key(version: str) -> Tuple[Tuple[int, int, str], ...]:
    """Natural sort key for version strings (``1.10.0`` after ``1.9.0``)."""
    parts: List[Tuple[int, int, str]] = []
    for token in _VERSION_PART.findall(version):
        if token.isdigit():
            parts.append((0, int(token), ""))
        else:
            parts.append((1, 0, token))
    return tuple(parts)


def identity_sort_key(key: PackageKey) -> Tuple[str, Tuple[Tuple[int, int, str], ...], str]:
    name, version = key
    return (name, version_sort_key(version), version)


def sorted_by_identity(keys: Sequence[PackageKey]) -> List[PackageKey]:
    return sorted(keys, key=identity_sort_key)
