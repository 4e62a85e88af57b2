"""Override settings for raze (Cargo.toml ``[package.metadata.raze]`` or a YAML file)."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from .errors import SettingsError

DEFAULT_TARGET = "x86_64-unknown-linux-gnu"
DEFAULT_REGISTRY_URL = "https://crates.io/api/v1/crates/{crate}/{version}/download"


class GenMode(str, Enum):
    """How crate sources are made available to Bazel."""

    VENDORED = "vendored"
    REMOTE = "remote"


@dataclass(frozen=True)
class CrateSettings:
    """Per-crate overrides applied while planning."""

    additional_deps: List[str] = field(default_factory=list)
    skipped_deps: List[str] = field(default_factory=list)
    forced_deps: List[str] = field(default_factory=list)
    renames: Dict[str, str] = field(default_factory=dict)
    additional_flags: List[str] = field(default_factory=list)
    additional_env: Dict[str, str] = field(default_factory=dict)
    gen_buildrs: Optional[bool] = None
    buildrs_additional_deps: List[str] = field(default_factory=list)
    buildrs_additional_environment_variables: Dict[str, str] = field(default_factory=dict)
    data_attr: Optional[str] = None
    extra_aliased_targets: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RazeSettings:
    """Settings for one raze run."""

    workspace_path: str = "//cargo"
    genmode: GenMode = GenMode.VENDORED
    targets: List[str] = field(default_factory=lambda: [DEFAULT_TARGET])
    output_buildfile_suffix: str = ""
    gen_workspace_prefix: str = "raze"
    vendor_dir: str = "vendor"
    default_gen_buildrs: bool = True
    incompatible_relative_workspace_path: bool = False
    registry_url: str = DEFAULT_REGISTRY_URL
    crates: Dict[str, Dict[str, CrateSettings]] = field(default_factory=dict)

    def crate_settings(self, name: str, version: str) -> Optional[CrateSettings]:
        """Return overrides for a crate, preferring an exact version over ``*``."""
        by_version = self.crates.get(name)
        if not by_version:
            return None
        if version in by_version:
            return by_version[version]
        return by_version.get("*")


def load_settings(path: Path) -> RazeSettings:
    """Load settings from a Cargo.toml or a YAML file; defaults when absent."""
    path = path.expanduser()
    if path.is_dir():
        path = path / "Cargo.toml"
    if not path.exists():
        return RazeSettings()

    if path.suffix in {".yml", ".yaml"}:
        data = _read_yaml(path)
    else:
        data = _raze_table(_read_toml(path))
    return settings_from_mapping(data, source=path.name)


def settings_from_mapping(data: Mapping[str, Any], *, source: str = "settings") -> RazeSettings:
    """Build settings from an already parsed mapping."""
    if not isinstance(data, Mapping):
        raise SettingsError(f"{source} must contain a mapping of raze settings")

    defaults = RazeSettings()
    targets = _as_str_list(data.get("targets")) or _as_str_list(data.get("target"))

    return RazeSettings(
        workspace_path=_as_str(data.get("workspace_path")) or defaults.workspace_path,
        genmode=_as_genmode(data.get("genmode"), source),
        targets=targets or list(defaults.targets),
        output_buildfile_suffix=_as_str(data.get("output_buildfile_suffix")) or "",
        gen_workspace_prefix=_as_str(data.get("gen_workspace_prefix")) or defaults.gen_workspace_prefix,
        vendor_dir=_as_str(data.get("vendor_dir")) or defaults.vendor_dir,
        default_gen_buildrs=_with_default(_as_bool(data.get("default_gen_buildrs")), True),
        incompatible_relative_workspace_path=_with_default(
            _as_bool(data.get("incompatible_relative_workspace_path")), False
        ),
        registry_url=_as_str(data.get("registry_url")) or defaults.registry_url,
        crates=_parse_crates(data.get("crates"), source),
    )


def _parse_crates(value: Any, source: str) -> Dict[str, Dict[str, CrateSettings]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise SettingsError(f"{source}: 'crates' must map crate names to versions")
    crates: Dict[str, Dict[str, CrateSettings]] = {}
    for name, versions in value.items():
        if not isinstance(versions, Mapping):
            raise SettingsError(f"{source}: crate '{name}' must map versions to settings")
        parsed: Dict[str, CrateSettings] = {}
        for version, settings in versions.items():
            parsed[str(version)] = _parse_crate_settings(_as_dict(settings))
        crates[str(name)] = parsed
    return crates


def _parse_crate_settings(data: Dict[str, Any]) -> CrateSettings:
    return CrateSettings(
        additional_deps=_as_str_list(data.get("additional_deps")),
        skipped_deps=_as_str_list(data.get("skipped_deps")),
        forced_deps=_as_str_list(data.get("forced_deps")),
        renames=_as_str_dict(data.get("renames")),
        additional_flags=_as_str_list(data.get("additional_flags")),
        additional_env=_as_str_dict(data.get("additional_env")),
        gen_buildrs=_as_bool(data.get("gen_buildrs")),
        buildrs_additional_deps=_as_str_list(data.get("buildrs_additional_deps")),
        buildrs_additional_environment_variables=_as_str_dict(
            data.get("buildrs_additional_environment_variables")
        ),
        data_attr=_as_str(data.get("data_attr")),
        extra_aliased_targets=_as_str_list(data.get("extra_aliased_targets")),
    )


def _raze_table(manifest: Dict[str, Any]) -> Dict[str, Any]:
    for section in ("package", "workspace"):
        metadata = _as_dict(_as_dict(manifest.get(section)).get("metadata"))
        if "raze" in metadata:
            return _as_dict(metadata["raze"])
    return _as_dict(manifest.get("raze"))


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise SettingsError(f"Failed to parse {path.name}: {exc}") from exc


def _read_yaml(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SettingsError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsError(f"{path.name} must contain a mapping at the root")
    raze = loaded.get("raze")
    return raze if isinstance(raze, dict) else loaded


def _as_genmode(value: Any, source: str) -> GenMode:
    if value is None:
        return GenMode.VENDORED
    text = str(value).strip().lower()
    try:
        return GenMode(text)
    except ValueError:
        raise SettingsError(
            f"{source}: unknown genmode '{value}' (expected 'Vendored' or 'Remote')"
        ) from None


def _with_default(value: Optional[bool], default: bool) -> bool:
    return default if value is None else value


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


def _as_str_dict(value: Any) -> Dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


__all__ = [
    "CrateSettings",
    "GenMode",
    "RazeSettings",
    "load_settings",
    "settings_from_mapping",
]
