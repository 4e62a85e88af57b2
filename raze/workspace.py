"""Bazel workspace discovery and output prefix selection."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .models import WorkspaceContext
from .settings import RazeSettings

WORKSPACE_MARKERS = ("WORKSPACE", "WORKSPACE.bazel", "MODULE.bazel")


def find_workspace_root(start: Path | None = None) -> Optional[Path]:
    """Walk up from ``start`` to the nearest directory holding a workspace marker."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        if any((directory / marker).is_file() for marker in WORKSPACE_MARKERS):
            return directory
    return None


def resolve_path_prefix(
    settings: RazeSettings,
    workspace: WorkspaceContext,
    *,
    output: str | None = None,
    buildprefix: str | None = None,
    start: Path | None = None,
) -> str:
    """Pick the directory rendered files are written under.

    An explicit ``output`` wins, then a positional build prefix; otherwise the
    current directory, or ``<workspace root>/<workspace_path>`` when
    ``incompatible_relative_workspace_path`` is set and a root is found.
    """
    if output:
        return output
    if buildprefix:
        return buildprefix
    if settings.incompatible_relative_workspace_path:
        root = find_workspace_root(start)
        if root is not None:
            return str(root / workspace.workspace_path.lstrip("/"))
    return "."


__all__ = ["WORKSPACE_MARKERS", "find_workspace_root", "resolve_path_prefix"]
