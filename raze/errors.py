"""Exceptions raised by the raze pipeline."""

from __future__ import annotations

from typing import Sequence, Tuple


class RazeError(RuntimeError):
    """Base class for fatal pipeline errors."""


class SettingsError(RazeError):
    """Raised when the override settings cannot be read or have the wrong shape."""


class MetadataFetchError(RazeError):
    """Raised when cargo or rustc cannot be queried."""


class MalformedMetadata(RazeError):
    """Raised when resolved metadata does not describe a well-formed graph."""

    def __init__(self, message: str, *, package: str | None = None, field: str | None = None) -> None:
        self.package = package
        self.field = field
        location = []
        if package:
            location.append(f"package {package}")
        if field:
            location.append(f"field '{field}'")
        suffix = f" ({', '.join(location)})" if location else ""
        super().__init__(f"{message}{suffix}")


class CyclicBuildDependency(RazeError):
    """Raised when build-script dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join([*self.cycle, self.cycle[0]]) if self.cycle else "(empty)"
        super().__init__(f"Build dependencies form a cycle: {path}")


class RenderPathCollision(RazeError):
    """Raised when two packages would render to the same output path."""

    def __init__(self, path: str, first: Tuple[str, str], second: Tuple[str, str]) -> None:
        self.path = path
        self.first = first
        self.second = second
        super().__init__(
            f"Packages {first[0]}-{first[1]} and {second[0]}-{second[1]} both render to {path}"
        )


__all__ = [
    "CyclicBuildDependency",
    "MalformedMetadata",
    "MetadataFetchError",
    "RazeError",
    "RenderPathCollision",
    "SettingsError",
]
