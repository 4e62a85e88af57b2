"""Starlark literal and label helpers used by the BUILD templates."""

from __future__ import annotations

import re
from typing import Any

_UNSAFE_REPOSITORY_CHARS = re.compile(r"[^A-Za-z0-9_]")


def starlark_literal(value: Any) -> str:
    """Render a Python value as a Starlark literal (strings are double quoted)."""
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return str(value)
    text = str(value)
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def label(workspace_path: str, package_path: str, target: str) -> str:
    """Build ``//<workspace_path>/<package_path>:<target>``."""
    base = workspace_path.strip().rstrip("/")
    if base and not base.startswith("//"):
        base = "//" + base.lstrip("/")
    if not base or base == "/":
        return f"//{package_path}:{target}"
    return f"{base}/{package_path}:{target}"


def repository_name(prefix: str, name: str, version: str) -> str:
    """External repository name for a remote crate, e.g. ``raze__serde__1_0_130``."""
    return "__".join(
        _UNSAFE_REPOSITORY_CHARS.sub("_", part) for part in (prefix, name, version) if part
    )


def comment_text(text: str) -> str:
    """Collapse text onto a single line so it can follow a ``#``."""
    return " ".join(text.split())


__all__ = ["comment_text", "label", "repository_name", "starlark_literal"]
