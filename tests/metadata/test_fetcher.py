"""Tests for cargo metadata fetching and Cargo.lock checksums."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

import pytest

from raze.errors import MalformedMetadata, MetadataFetchError
from raze.metadata import CargoMetadataFetcher, load_lockfile_checksums


def _manifest(tmp_path: Path) -> Path:
    manifest = tmp_path / "Cargo.toml"
    manifest.write_text('[package]\nname = "app"\nversion = "0.1.0"\n', encoding="utf-8")
    return manifest


def test_fetch_runs_cargo_metadata(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path)
    calls: list[tuple[list[str], Path]] = []

    def runner(command: Sequence[str], cwd: Path) -> str:
        calls.append((list(command), cwd))
        return json.dumps({"packages": [], "resolve": {"nodes": []}})

    document = CargoMetadataFetcher("/usr/local/bin/cargo", runner=runner).fetch(manifest)

    assert document == {"packages": [], "resolve": {"nodes": []}}
    command, cwd = calls[0]
    assert command == [
        "/usr/local/bin/cargo",
        "metadata",
        "--format-version",
        "1",
        "--manifest-path",
        str(manifest.resolve()),
    ]
    assert cwd == tmp_path.resolve()


def test_fetch_requires_existing_manifest(tmp_path: Path) -> None:
    fetcher = CargoMetadataFetcher(runner=lambda command, cwd: "{}")

    with pytest.raises(MetadataFetchError, match="manifest not found"):
        fetcher.fetch(tmp_path / "Cargo.toml")


@pytest.mark.parametrize("output", ["not json", "[1, 2, 3]"])
def test_fetch_rejects_bad_output(tmp_path: Path, output: str) -> None:
    fetcher = CargoMetadataFetcher(runner=lambda command, cwd: output)

    with pytest.raises(MalformedMetadata):
        fetcher.fetch(_manifest(tmp_path))


def test_lockfile_checksums_v3(tmp_path: Path) -> None:
    lock = tmp_path / "Cargo.lock"
    lock.write_text(
        """
version = 3

[[package]]
name = "app"
version = "0.1.0"

[[package]]
name = "libc"
version = "0.2.150"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "89d92a4743f9a61002fae18374ed11e7973f530cb3a3255fb354818118b2203c"
""",
        encoding="utf-8",
    )

    assert load_lockfile_checksums(lock) == {
        ("libc", "0.2.150"): "89d92a4743f9a61002fae18374ed11e7973f530cb3a3255fb354818118b2203c"
    }


def test_lockfile_checksums_v1_metadata_table(tmp_path: Path) -> None:
    lock = tmp_path / "Cargo.lock"
    lock.write_text(
        """
[[package]]
name = "libc"
version = "0.2.50"
source = "registry+https://github.com/rust-lang/crates.io-index"

[metadata]
"checksum libc 0.2.50 (registry+https://github.com/rust-lang/crates.io-index)" = "aab692d7759f5cd8c859e169db98ae5b52c924add2af5fbbca11d12fefb567c1"
"checksum local 0.1.0 (path+file:///work/local)" = "<none>"
""",
        encoding="utf-8",
    )

    assert load_lockfile_checksums(lock) == {
        ("libc", "0.2.50"): "aab692d7759f5cd8c859e169db98ae5b52c924add2af5fbbca11d12fefb567c1"
    }


def test_missing_lockfile_has_no_checksums(tmp_path: Path) -> None:
    assert load_lockfile_checksums(tmp_path / "Cargo.lock") == {}
