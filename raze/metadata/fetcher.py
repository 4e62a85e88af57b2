"""Run ``cargo metadata`` and read ``Cargo.lock`` checksums."""

from __future__ import annotations

import json
import subprocess
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, Sequence

from ..errors import MalformedMetadata, MetadataFetchError
from ..logging import get_logger
from ..models import PackageKey


class CargoMetadataFetcher:
    """Fetches the resolved dependency graph of a cargo workspace."""

    def __init__(
        self,
        cargo_bin: str = "cargo",
        runner: Callable[[Sequence[str], Path], str] | None = None,
    ) -> None:
        self.cargo_bin = cargo_bin
        self._runner = runner or self._default_runner
        self.logger = get_logger("metadata")

    def fetch(self, manifest_path: Path) -> Dict[str, Any]:
        """Return the parsed ``cargo metadata --format-version 1`` document."""
        manifest_path = manifest_path.expanduser().resolve()
        if not manifest_path.exists():
            raise MetadataFetchError(f"Cargo manifest not found: {manifest_path}")
        command = [
            self.cargo_bin,
            "metadata",
            "--format-version",
            "1",
            "--manifest-path",
            str(manifest_path),
        ]
        self.logger.debug("Running %s", " ".join(command))
        output = self._runner(command, manifest_path.parent)
        try:
            document = json.loads(output)
        except json.JSONDecodeError as exc:
            raise MalformedMetadata(f"cargo metadata returned invalid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise MalformedMetadata("cargo metadata did not return an object")
        return document

    @staticmethod
    def _default_runner(command: Sequence[str], cwd: Path) -> str:
        try:
            completed = subprocess.run(
                list(command),
                cwd=str(cwd),
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise MetadataFetchError(f"Unable to run {command[0]}: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise MetadataFetchError(f"cargo metadata failed: {stderr}") from exc
        return completed.stdout


def load_lockfile_checksums(lock_path: Path) -> Dict[PackageKey, str]:
    """Return ``(name, version) -> sha256`` for every package in Cargo.lock."""
    if not lock_path.exists():
        return {}
    try:
        data = tomllib.loads(lock_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise MalformedMetadata(f"Failed to parse {lock_path.name}: {exc}") from exc

    checksums: Dict[PackageKey, str] = {}
    for entry in data.get("package") or []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        version = entry.get("version")
        checksum = entry.get("checksum")
        if name and version and checksum:
            checksums[(str(name), str(version))] = str(checksum)

    # Lockfile format v1 keeps checksums in a [metadata] table.
    metadata = data.get("metadata")
    if isinstance(metadata, dict):
        for key, value in metadata.items():
            if not key.startswith("checksum ") or value == "<none>":
                continue
            parts = key.split(" ")
            if len(parts) >= 3:
                checksums.setdefault((parts[1], parts[2]), str(value))
    return checksums


__all__ = ["CargoMetadataFetcher", "load_lockfile_checksums"]
