"""Source-location strategies for the vendored and remote generation modes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from ..models import PackageKey, PlannedPackage, SourceKind, WorkspaceContext
from ..settings import GenMode
from .starlark import label, repository_name


def package_dir(root: str, name: str, version: str) -> str:
    return f"{root}/{name}-{version}"


@dataclass(frozen=True)
class VendoredLayout:
    """Crate sources already live under ``<vendor_dir>/<name>-<version>``."""

    name: str = "vendored"
    emits_index: bool = False

    def root(self, workspace: WorkspaceContext) -> str:
        return workspace.vendor_dir

    def label(self, workspace: WorkspaceContext, key: PackageKey, target: str) -> str:
        name, version = key
        return label(workspace.workspace_path, package_dir(self.root(workspace), name, version), target)

    def source_lines(self, package: PlannedPackage, workspace: WorkspaceContext) -> List[str]:
        crate = package.package
        return [f"Vendored sources: {package_dir(self.root(workspace), crate.name, crate.version)}"]

    def source_entry(
        self, package: PlannedPackage, workspace: WorkspaceContext, build_file: str
    ) -> Optional[List[Tuple[str, Optional[str]]]]:
        return None


@dataclass(frozen=True)
class RemoteLayout:
    """Bazel fetches crate sources; an index file lists every archive."""

    name: str = "remote"
    emits_index: bool = True

    def root(self, workspace: WorkspaceContext) -> str:
        return "remote"

    def label(self, workspace: WorkspaceContext, key: PackageKey, target: str) -> str:
        """Crate targets live in the external repository the index fetches the archive into."""
        name, version = key
        return f"@{repository_name(workspace.gen_workspace_prefix, name, version)}//:{target}"

    def source_lines(self, package: PlannedPackage, workspace: WorkspaceContext) -> List[str]:
        crate = package.package
        lines = [
            f"Remote repository: @{repository_name(workspace.gen_workspace_prefix, crate.name, crate.version)}",
            f"Fetched from: {self._url(package) or 'unknown'}",
        ]
        if crate.source is SourceKind.REGISTRY:
            lines.append(f"sha256: {crate.checksum or 'unknown'}")
        return lines

    def source_entry(
        self, package: PlannedPackage, workspace: WorkspaceContext, build_file: str
    ) -> Optional[List[Tuple[str, Optional[str]]]]:
        crate = package.package
        return [
            ("name", crate.name),
            ("version", crate.version),
            ("repository", repository_name(workspace.gen_workspace_prefix, crate.name, crate.version)),
            ("url", self._url(package)),
            ("sha256", crate.checksum),
            ("strip_prefix", f"{crate.name}-{crate.version}"),
            ("build_file", build_file),
        ]

    @staticmethod
    def _url(package: PlannedPackage) -> Optional[str]:
        if package.download_url:
            return package.download_url
        source_url = package.package.source_url
        if source_url and source_url.startswith("git+"):
            return source_url[len("git+"):]
        return source_url


Layout = Union[VendoredLayout, RemoteLayout]

_LAYOUTS: Dict[GenMode, Layout] = {
    GenMode.VENDORED: VendoredLayout(),
    GenMode.REMOTE: RemoteLayout(),
}


def layout_for(genmode: GenMode) -> Layout:
    """Return the layout strategy for a generation mode."""
    return _LAYOUTS[genmode]


__all__ = ["Layout", "RemoteLayout", "VendoredLayout", "layout_for", "package_dir"]
