"""Render a PlannedBuild into Bazel BUILD files."""

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..errors import RenderPathCollision
from ..logging import get_logger
from ..models import (
    FileOutput,
    Package,
    PackageKey,
    PlannedBuild,
    PlannedDependency,
    PlannedPackage,
    RenderDetails,
    WorkspaceContext,
    identity_sort_key,
    sanitize_name,
)
from .layouts import Layout, package_dir
from .starlark import comment_text, label, starlark_literal

HEADER = "# @generated by raze. DO NOT EDIT! Regenerate by running `raze`."
REMOTE_INDEX_DIR = "remote"

_DEFAULT_TEMPLATES = Path(__file__).with_name("templates")


class BazelRenderer:
    """Emits one BUILD file per planned package, plus the remote index when needed.

    Output is a pure function of the plan: packages are rendered in identity
    order and no timestamps or absolute paths leak into file contents.
    """

    def __init__(self, layout: Layout, templates_dir: Path | None = None) -> None:
        self.layout = layout
        self.logger = get_logger("rendering")
        self._env = self._create_env(templates_dir)

    def render(self, build: PlannedBuild, details: RenderDetails) -> List[FileOutput]:
        """Return the rendered files; raise RenderPathCollision on duplicate paths."""
        outputs: List[FileOutput] = []
        owners: Dict[str, PackageKey] = {}
        for package in sorted(build.packages, key=lambda planned: identity_sort_key(planned.key)):
            path = self.package_path(build.workspace, details, package.key)
            if path in owners:
                raise RenderPathCollision(path, owners[path], package.key)
            owners[path] = package.key
            outputs.append(FileOutput(path=path, contents=self.render_package(build.workspace, package)))
            self.logger.debug("Rendered %s", path)

        if self.layout.emits_index:
            path = posixpath.join(details.path_prefix, REMOTE_INDEX_DIR, f"BUILD{details.buildfile_suffix}")
            if path in owners:
                raise RenderPathCollision(path, owners[path], ("remote index", ""))
            outputs.append(FileOutput(path=path, contents=self.render_index(build, details)))
        self.logger.info("Rendered %d files in %s mode", len(outputs), self.layout.name)
        return outputs

    def package_path(self, workspace: WorkspaceContext, details: RenderDetails, key: PackageKey) -> str:
        name, version = key
        return posixpath.join(
            details.path_prefix,
            package_dir(self.layout.root(workspace), name, version),
            f"BUILD{details.buildfile_suffix}",
        )

    def label_for(self, workspace: WorkspaceContext, key: PackageKey, target: str) -> str:
        return self.layout.label(workspace, key, target)

    def reference(self, workspace: WorkspaceContext, dependency: PlannedDependency) -> str:
        """How a dependency appears in a ``deps`` list."""
        if dependency.override:
            return dependency.override
        if dependency.local:
            return f":{dependency.target}"
        return self.label_for(workspace, dependency.key, dependency.target)

    def render_package(self, workspace: WorkspaceContext, package: PlannedPackage) -> str:
        crate = package.package
        lib = crate.lib_target
        edition = lib.edition if lib is not None else crate.edition

        build_script = None
        if package.build_script is not None:
            script = package.build_script
            build_script = {
                "name": script.name,
                "crate_root": script.crate_root,
                "edition": crate.edition,
                "deps": self._references(workspace, script.deps, script.extra_deps),
                "conditional_deps": self._conditional(workspace, script.conditional_deps),
                "aliases": self._aliases(workspace, script.deps, script.conditional_deps),
                "rustc_flags": list(package.rustc_flags),
                "features": list(package.features),
                "env": list(script.env.items()),
                "links": crate.links,
                "version": crate.version,
                "outputs": list(script.outputs),
            }

        context = {
            "header": HEADER,
            "annotations": [
                *self._metadata_lines(crate),
                *(comment_text(line) for line in self.layout.source_lines(package, workspace)),
            ],
            "license": {"kind": package.license.kind, "comment": self._license_comment(package)},
            "build_script": build_script,
            "crate": {
                "name": crate.name,
                "version": crate.version,
                "target": crate.crate_name,
                "crate_type": lib.kind if lib is not None else "lib",
                "crate_root": lib.crate_root if lib is not None else "src/lib.rs",
                "edition": edition,
                "deps": self._references(workspace, package.deps, package.extra_deps),
                "conditional_deps": self._conditional(workspace, package.conditional_deps),
                "rustc_flags": list(package.rustc_flags),
                "rustc_env": list(package.rustc_env.items()),
                "aliases": self._aliases(workspace, package.deps, package.conditional_deps),
                "data_attr": package.data_attr,
                "features": list(package.features),
                "aliased_targets": [
                    {"name": target, "actual": f":{target}"} for target in package.extra_aliased_targets
                ],
            },
        }
        return self._env.get_template("crate.BUILD.j2").render(**context)

    def render_index(self, build: PlannedBuild, details: RenderDetails) -> str:
        workspace = build.workspace
        sources = []
        for package in sorted(build.packages, key=lambda planned: identity_sort_key(planned.key)):
            name, version = package.key
            build_file = label(
                workspace.workspace_path,
                package_dir(self.layout.root(workspace), name, version),
                f"BUILD{details.buildfile_suffix}",
            )
            fields = self.layout.source_entry(package, workspace, build_file)
            if fields is None:
                continue
            sources.append({"key": f"{name}-{version}", "fields": fields})

        context = {
            "header": HEADER,
            "workspace_path": workspace.workspace_path,
            "sources": sources,
            "aliases": self._root_aliases(build),
        }
        return self._env.get_template("remote_index.BUILD.j2").render(**context)

    def _references(
        self,
        workspace: WorkspaceContext,
        dependencies: Sequence[PlannedDependency],
        extra: Iterable[str] = (),
    ) -> List[str]:
        references = [self.reference(workspace, dependency) for dependency in dependencies]
        references.extend(extra)
        return _unique(references)

    def _conditional(
        self, workspace: WorkspaceContext, groups: Dict[str, Tuple[PlannedDependency, ...]]
    ) -> List[Tuple[str, List[str]]]:
        return [(predicate, self._references(workspace, groups[predicate])) for predicate in sorted(groups)]

    def _aliases(
        self,
        workspace: WorkspaceContext,
        deps: Sequence[PlannedDependency],
        conditional: Dict[str, Tuple[PlannedDependency, ...]],
    ) -> List[Tuple[str, str]]:
        aliases: Dict[str, str] = {}
        for dependency in (*deps, *(dep for group in conditional.values() for dep in group)):
            if dependency.rename and not dependency.override and not dependency.local:
                aliases[self.reference(workspace, dependency)] = dependency.rename
        return sorted(aliases.items())

    def _root_aliases(self, build: PlannedBuild) -> List[Dict[str, str]]:
        workspace = build.workspace
        keys = list(workspace.root_dependencies)
        counts: Dict[str, int] = {}
        for name, _ in keys:
            counts[name] = counts.get(name, 0) + 1

        aliases = []
        for key in keys:
            package = build.get(key)
            if package is None:
                continue
            name, version = key
            target = package.package.crate_name
            alias_name = sanitize_name(name)
            if counts[name] > 1:
                alias_name = f"{alias_name}__{sanitize_name(version).replace('.', '_')}"
            aliases.append({"name": alias_name, "actual": self.label_for(workspace, key, target)})
        return aliases

    @staticmethod
    def _metadata_lines(crate: Package) -> List[str]:
        lines: List[str] = []
        if crate.description:
            lines.append(comment_text(crate.description))
        if crate.authors:
            lines.append("Authors: " + ", ".join(comment_text(author) for author in crate.authors))
        if crate.license_file:
            lines.append(f"License file: {comment_text(crate.license_file)}")
        return lines

    @staticmethod
    def _license_comment(package: PlannedPackage) -> str:
        info = package.license
        if info.raw is None:
            return "no license"
        raw = comment_text(info.raw)
        if raw == info.name:
            return raw
        return f'{info.name} from expression "{raw}"'

    @staticmethod
    def _create_env(templates_dir: Path | None) -> Environment:
        directories: List[str] = []
        if templates_dir:
            directories.append(str(templates_dir))
        if str(_DEFAULT_TEMPLATES) not in directories:
            directories.append(str(_DEFAULT_TEMPLATES))
        env = Environment(
            loader=FileSystemLoader(directories),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )
        env.filters["starlark"] = starlark_literal
        return env


def _unique(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


__all__ = ["BazelRenderer", "HEADER"]
