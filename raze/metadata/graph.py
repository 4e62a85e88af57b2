"""Build the dependency graph model from ``cargo metadata`` output."""

from __future__ import annotations

from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import MalformedMetadata
from ..logging import get_logger
from ..models import (
    DependencyEdge,
    DependencyGraph,
    DependencyRole,
    DroppedEdge,
    Package,
    PackageKey,
    SourceKind,
    Target,
)
from ..platform.cfg import parse_predicate

_LIB_KINDS = ("lib", "rlib", "dylib", "proc-macro", "cdylib", "staticlib")
_ROLES = {None: DependencyRole.NORMAL, "normal": DependencyRole.NORMAL, "build": DependencyRole.BUILD}

logger = get_logger("metadata")


def build_graph(
    metadata: Mapping[str, Any],
    checksums: Mapping[PackageKey, str] | None = None,
) -> DependencyGraph:
    """Return the immutable graph for a cargo metadata document.

    Raises MalformedMetadata when a package lacks its name, version or id, when
    a resolved dependency lacks its target, or when it names an unknown package.
    Dev-only edges are dropped here and never reach planning; they are kept in
    ``dropped_edges`` so exclusions can still be reported. Platform predicates
    are parsed here, so an invalid one fails before planning starts.
    """
    raw_packages = metadata.get("packages")
    if not isinstance(raw_packages, list):
        raise MalformedMetadata("Metadata has no package list", field="packages")
    resolve = metadata.get("resolve")
    nodes = resolve.get("nodes") if isinstance(resolve, Mapping) else None
    if not isinstance(nodes, list):
        raise MalformedMetadata("Metadata has no resolved dependency graph", field="resolve.nodes")

    members = set(metadata.get("workspace_members") or [])
    node_features: Dict[str, Tuple[str, ...]] = {}
    for node in nodes:
        node_id = _require(node, "id", "resolve.nodes")
        node_features[node_id] = tuple(sorted(str(f) for f in node.get("features") or []))

    packages: List[Package] = []
    declared: List[Sequence[Mapping[str, Any]]] = []
    index_by_id: Dict[str, int] = {}
    seen_keys: Dict[PackageKey, str] = {}
    for raw in raw_packages:
        package = _build_package(raw, members, node_features, checksums or {})
        if package.key in seen_keys:
            raise MalformedMetadata(
                f"Duplicate package {package.name} {package.version} "
                f"(also provided by {seen_keys[package.key]})",
                package=package.id,
            )
        seen_keys[package.key] = package.id
        index_by_id[package.id] = len(packages)
        packages.append(package)
        declared.append([dep for dep in raw.get("dependencies") or [] if isinstance(dep, Mapping)])

    edges: List[DependencyEdge] = []
    dropped: List[DroppedEdge] = []
    for node in nodes:
        node_id = node["id"]
        source = index_by_id.get(node_id)
        if source is None:
            raise MalformedMetadata("Resolve node references an unknown package", package=node_id)
        for dep in node.get("deps") or []:
            edges.extend(_edges_for(dep, source, packages, declared[source], index_by_id, dropped))

    member_indexes = frozenset(index_by_id[m] for m in members if m in index_by_id)
    logger.debug("Built graph with %d packages and %d edges", len(packages), len(edges))
    return DependencyGraph(
        packages=tuple(packages),
        edges=tuple(edges),
        workspace_members=member_indexes,
        workspace_root=str(metadata.get("workspace_root") or ""),
        dropped_edges=tuple(dropped),
    )


def _edges_for(
    dep: Mapping[str, Any],
    source: int,
    packages: Sequence[Package],
    declared: Sequence[Mapping[str, Any]],
    index_by_id: Mapping[str, int],
    dropped: List[DroppedEdge],
) -> List[DependencyEdge]:
    consumer = packages[source]
    target_id = dep.get("pkg")
    if not target_id:
        raise MalformedMetadata("Resolved dependency has no target", package=consumer.id, field="pkg")
    target = index_by_id.get(target_id)
    if target is None:
        raise MalformedMetadata(
            f"Resolved dependency references unknown package {target_id}", package=consumer.id
        )
    target_package = packages[target]

    dep_kinds = dep.get("dep_kinds")
    if dep_kinds is None:
        # Older cargo releases omit dep_kinds; recover them from the manifest.
        dep_kinds = [
            {"kind": entry.get("kind"), "target": entry.get("target")}
            for entry in declared
            if entry.get("name") == target_package.name
        ] or [{"kind": None, "target": None}]

    edges: List[DependencyEdge] = []
    seen: Set[Tuple[Optional[str], Optional[str]]] = set()
    for kind_entry in dep_kinds:
        kind = kind_entry.get("kind")
        platform = kind_entry.get("target")
        if (kind, platform) in seen:
            continue
        seen.add((kind, platform))
        if platform is not None:
            _check_predicate(platform, consumer)
        role = _ROLES.get(kind)
        if role is None:
            logger.debug("Dropping %s dependency %s -> %s", kind, consumer.name, target_package.name)
            dropped.append(DroppedEdge(source=source, target=target, kind=str(kind), platform=platform))
            continue
        declaration = _find_declaration(declared, target_package.name, kind, platform)
        features = set(_as_list(declaration.get("features")))
        if declaration.get("uses_default_features", True) and "default" in target_package.declared_features:
            features.add("default")
        rename = declaration.get("rename")
        extern_name = dep.get("name")
        if not rename and extern_name and extern_name != target_package.crate_name:
            rename = extern_name
        edges.append(
            DependencyEdge(
                source=source,
                target=target,
                role=role,
                features=frozenset(features),
                platform=platform,
                rename=rename or None,
                optional=bool(declaration.get("optional", False)),
            )
        )
    return edges


def _check_predicate(predicate: str, consumer: Package) -> None:
    try:
        parse_predicate(predicate)
    except MalformedMetadata as exc:
        raise MalformedMetadata(str(exc), package=consumer.id, field="dep_kinds.target") from exc


def _find_declaration(
    declared: Sequence[Mapping[str, Any]],
    name: str,
    kind: Optional[str],
    platform: Optional[str],
) -> Mapping[str, Any]:
    candidates = [entry for entry in declared if entry.get("name") == name]
    for entry in candidates:
        if entry.get("kind") == kind and entry.get("target") == platform:
            return entry
    for entry in candidates:
        if entry.get("kind") == kind:
            return entry
    return candidates[0] if candidates else {}


def _build_package(
    raw: Mapping[str, Any],
    members: Set[str],
    node_features: Mapping[str, Tuple[str, ...]],
    checksums: Mapping[PackageKey, str],
) -> Package:
    if not isinstance(raw, Mapping):
        raise MalformedMetadata("Package record is not a mapping", field="packages")
    name = _require(raw, "name", "packages")
    version = _require(raw, "version", "packages", package=name)
    package_id = _require(raw, "id", "packages", package=f"{name} {version}")

    source_url = raw.get("source")
    if package_id in members:
        source = SourceKind.WORKSPACE
    elif not source_url:
        source = SourceKind.PATH
    elif str(source_url).startswith("git+"):
        source = SourceKind.GIT
    else:
        source = SourceKind.REGISTRY

    manifest_path = str(raw.get("manifest_path") or "")
    manifest_dir = _parent(manifest_path)
    edition = str(raw.get("edition") or "2015")

    lib_target: Optional[Target] = None
    build_script: Optional[str] = None
    for target in raw.get("targets") or []:
        kinds = _as_list(target.get("kind"))
        src_path = str(target.get("src_path") or "")
        if "custom-build" in kinds and build_script is None:
            build_script = _relative(src_path, manifest_dir) or "build.rs"
            continue
        lib_kind = next((kind for kind in _LIB_KINDS if kind in kinds), None)
        if lib_kind is not None and lib_target is None:
            lib_target = Target(
                name=str(target.get("name") or name),
                kind="proc-macro" if lib_kind == "proc-macro" else "lib",
                crate_root=_relative(src_path, manifest_dir) or "src/lib.rs",
                edition=str(target.get("edition") or edition),
            )

    feature_map = tuple(
        sorted(
            (str(feature), tuple(str(entry) for entry in _as_list(entries)))
            for feature, entries in (raw.get("features") or {}).items()
        )
    )
    return Package(
        id=package_id,
        name=name,
        version=version,
        source=source,
        source_url=str(source_url) if source_url else None,
        license=_optional_str(raw.get("license")),
        license_file=_optional_str(raw.get("license_file")),
        edition=edition,
        features=node_features.get(package_id, ()),
        feature_map=feature_map,
        lib_target=lib_target,
        build_script=build_script,
        manifest_dir=manifest_dir,
        checksum=checksums.get((name, version)),
        description=_optional_str(raw.get("description")),
        authors=tuple(str(author) for author in _as_list(raw.get("authors"))),
        links=_optional_str(raw.get("links")),
    )


def _require(record: Any, key: str, where: str, *, package: str | None = None) -> str:
    if not isinstance(record, Mapping):
        raise MalformedMetadata(f"Record in {where} is not a mapping", package=package)
    value = record.get(key)
    if value is None or value == "":
        raise MalformedMetadata(f"Missing required field in {where}", package=package, field=key)
    return str(value)


def _parent(path: str) -> str:
    if not path:
        return ""
    pure = PureWindowsPath(path) if "\\" in path else PurePosixPath(path)
    return pure.parent.as_posix()


def _relative(path: str, root: str) -> str:
    if not path:
        return ""
    pure = PureWindowsPath(path) if "\\" in path else PurePosixPath(path)
    if root:
        try:
            return pure.relative_to(root).as_posix()
        except ValueError:
            pass
    return pure.as_posix()


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value else None


__all__ = ["build_graph"]
