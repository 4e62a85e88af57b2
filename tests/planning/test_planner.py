"""Tests for raze.planning.planner."""

from __future__ import annotations

import pytest

from raze.errors import CyclicBuildDependency
from raze.metadata import build_graph
from raze.models import PlatformDetails
from raze.planning import BuildPlanner, PlanResult
from raze.planning.planner import (
    BUILD_SCRIPT_DISABLED,
    DEV_EDGE,
    EXCLUDED_EDGE,
    INACTIVE_OPTIONAL_EDGE,
    SKIPPED_EDGE,
    UNKNOWN_OVERRIDE_TARGET,
)
from raze.settings import CrateSettings, RazeSettings
from tests._fixtures.metadata_builder import LINUX, MACOS, WINDOWS, MetadataBuilder, platforms

LINUX_ONLY = 'cfg(target_os = "linux")'


def _plan(
    builder: MetadataBuilder,
    details: PlatformDetails,
    settings: RazeSettings | None = None,
    *,
    collect_exclusions: bool = False,
) -> PlanResult:
    planner = BuildPlanner(settings or RazeSettings(), details, collect_exclusions=collect_exclusions)
    return planner.plan(build_graph(builder.build()))


def _overrides(name: str, version: str = "*", **values) -> RazeSettings:
    return RazeSettings(crates={name: {version: CrateSettings(**values)}})


def _dependency_names(deps) -> list[str]:
    return [dep.name for dep in deps]


@pytest.fixture
def linux_only_graph(metadata_builder: MetadataBuilder) -> MetadataBuilder:
    """app (workspace root) -> a -> {b, c on linux}."""
    app = metadata_builder.package("app", "0.1.0", member=True)
    a = metadata_builder.package("a", "1.0.0")
    b = metadata_builder.package("b", "2.0.0")
    c = metadata_builder.package("c", "1.0.0")
    metadata_builder.depend(app, a)
    metadata_builder.depend(a, b)
    metadata_builder.depend(a, c, target=LINUX_ONLY)
    return metadata_builder


def test_root_members_are_not_planned(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(LINUX))

    assert result.build.keys() == [("a", "1.0.0"), ("b", "2.0.0"), ("c", "1.0.0")]
    assert result.build.workspace.root_dependencies == (("a", "1.0.0"),)
    assert result.diagnostics == ()


def test_predicate_matching_every_platform_becomes_universal(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(LINUX))

    a = result.build.get(("a", "1.0.0"))
    assert _dependency_names(a.deps) == ["b", "c"]
    assert a.conditional_deps == {}


def test_predicate_matching_some_platforms_is_conditional(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(LINUX, WINDOWS))

    a = result.build.get(("a", "1.0.0"))
    assert _dependency_names(a.deps) == ["b"]
    assert list(a.conditional_deps) == [LINUX_ONLY]
    assert _dependency_names(a.conditional_deps[LINUX_ONLY]) == ["c"]


def test_predicate_matching_no_platform_drops_the_edge(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(WINDOWS))

    a = result.build.get(("a", "1.0.0"))
    assert _dependency_names(a.deps) == ["b"]
    assert a.conditional_deps == {}
    # The package itself is still part of the resolved graph.
    assert ("c", "1.0.0") in result.build.keys()


def test_plan_is_closed_over_its_dependencies(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(LINUX, WINDOWS, MACOS))

    assert result.build.missing_dependencies() == []


def test_plan_is_deterministic(linux_only_graph: MetadataBuilder) -> None:
    first = _plan(linux_only_graph, platforms(LINUX, WINDOWS))
    second = _plan(linux_only_graph, platforms(LINUX, WINDOWS))

    assert first.build == second.build


def test_universal_edge_absorbs_conditional_duplicate(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    b = metadata_builder.package("b", "2.0.0")
    metadata_builder.depend(a, b)
    metadata_builder.depend(a, b, target="cfg(windows)")

    result = _plan(metadata_builder, platforms(LINUX, WINDOWS))

    planned = result.build.get(("a", "1.0.0"))
    assert _dependency_names(planned.deps) == ["b"]
    assert planned.conditional_deps == {}


def test_each_conditional_predicate_gets_its_own_group(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    c = metadata_builder.package("c", "1.0.0")
    metadata_builder.depend(a, c, target="cfg(unix)")
    metadata_builder.depend(a, c, target="cfg(windows)")

    result = _plan(metadata_builder, platforms(LINUX, WINDOWS, MACOS))

    planned = result.build.get(("a", "1.0.0"))
    assert planned.deps == ()
    assert sorted(planned.conditional_deps) == ["cfg(unix)", "cfg(windows)"]


def test_target_triple_predicates_are_supported(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    w = metadata_builder.package("winapi", "0.3.9")
    metadata_builder.depend(a, w, target="x86_64-pc-windows-msvc")

    result = _plan(metadata_builder, platforms(LINUX, WINDOWS))

    planned = result.build.get(("a", "1.0.0"))
    assert _dependency_names(planned.conditional_deps["x86_64-pc-windows-msvc"]) == ["winapi"]


def test_dev_dependencies_never_reach_the_plan(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    t = metadata_builder.package("tempfile", "3.0.0")
    metadata_builder.depend(a, t, kind="dev")

    result = _plan(metadata_builder, platforms(LINUX))

    assert result.build.get(("a", "1.0.0")).deps == ()


def test_forced_dependency_survives_platform_exclusion(linux_only_graph: MetadataBuilder) -> None:
    settings = _overrides("a", "1.0.0", forced_deps=["c"])

    result = _plan(linux_only_graph, platforms(WINDOWS), settings)

    a = result.build.get(("a", "1.0.0"))
    assert _dependency_names(a.deps) == ["b", "c"]
    assert a.conditional_deps == {}


def test_skipped_dependency_is_removed(linux_only_graph: MetadataBuilder) -> None:
    settings = _overrides("a", skipped_deps=["b-2.0.0"])

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    assert _dependency_names(result.build.get(("a", "1.0.0")).deps) == ["c"]


def test_forced_wins_over_skipped(linux_only_graph: MetadataBuilder) -> None:
    settings = _overrides("a", skipped_deps=["b"], forced_deps=["b"])

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    assert "b" in _dependency_names(result.build.get(("a", "1.0.0")).deps)


def test_exact_version_overrides_take_precedence_over_wildcard(linux_only_graph: MetadataBuilder) -> None:
    settings = RazeSettings(
        crates={
            "a": {
                "*": CrateSettings(additional_flags=["--cfg=wildcard"]),
                "1.0.0": CrateSettings(additional_flags=["--cfg=exact"]),
            }
        }
    )

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    assert result.build.get(("a", "1.0.0")).rustc_flags == ("--cap-lints=allow", "--cfg=exact")


def test_rename_override_replaces_the_computed_reference(linux_only_graph: MetadataBuilder) -> None:
    settings = _overrides("a", renames={"b": "//third_party:renamed_b"})

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    b = result.build.get(("a", "1.0.0")).deps[0]
    assert b.name == "b"
    assert b.override == "//third_party:renamed_b"


def test_cargo_rename_is_recorded(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    b = metadata_builder.package("b", "2.0.0")
    metadata_builder.depend(a, b, rename="bee")

    result = _plan(metadata_builder, platforms(LINUX))

    dep = result.build.get(("a", "1.0.0")).deps[0]
    assert dep.rename == "bee"
    assert dep.target == "b"


def test_unknown_crate_override_is_reported(linux_only_graph: MetadataBuilder) -> None:
    settings = RazeSettings(
        crates={
            "missing": {"*": CrateSettings()},
            "b": {"9.9.9": CrateSettings()},
        }
    )

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    assert [d.code for d in result.diagnostics] == [UNKNOWN_OVERRIDE_TARGET, UNKNOWN_OVERRIDE_TARGET]
    assert [d.detail["crate"] for d in result.diagnostics] == ["b", "missing"]
    assert all(d.package is None for d in result.diagnostics)
    # Planning still succeeds.
    assert len(result.build.packages) == 3


def test_unknown_dependency_override_is_reported(linux_only_graph: MetadataBuilder) -> None:
    settings = _overrides("a", skipped_deps=["nonexistent"])

    result = _plan(linux_only_graph, platforms(LINUX), settings)

    assert len(result.diagnostics) == 1
    diagnostic = result.diagnostics[0]
    assert diagnostic.code == UNKNOWN_OVERRIDE_TARGET
    assert diagnostic.package == ("a", "1.0.0")
    assert diagnostic.detail == {"setting": "skipped_deps", "dependency": "nonexistent"}


def test_inactive_optional_dependency_is_dropped(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    d = metadata_builder.package("d", "3.0.0")
    metadata_builder.depend(a, d, optional=True)

    result = _plan(metadata_builder, platforms(LINUX))

    assert result.build.get(("a", "1.0.0")).deps == ()


def test_optional_dependency_enabled_through_feature_map(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0", features=["extra"], feature_map={"extra": ["dep:d"]})
    d = metadata_builder.package("d", "3.0.0")
    metadata_builder.depend(a, d, optional=True)

    result = _plan(metadata_builder, platforms(LINUX))

    planned = result.build.get(("a", "1.0.0"))
    assert _dependency_names(planned.deps) == ["d"]
    assert planned.features == ("extra",)


def test_optional_gate_and_platform_gate_must_both_hold(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0", features=["d"], feature_map={"d": ["dep:d"]})
    d = metadata_builder.package("d", "3.0.0")
    metadata_builder.depend(a, d, optional=True, target="cfg(windows)")

    linux = _plan(metadata_builder, platforms(LINUX)).build.get(("a", "1.0.0"))
    windows = _plan(metadata_builder, platforms(WINDOWS)).build.get(("a", "1.0.0"))

    assert linux.deps == ()
    assert _dependency_names(windows.deps) == ["d"]


def test_build_script_gets_its_own_target_and_build_deps(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0", build_script=True)
    cc = metadata_builder.package("cc", "1.0.79")
    libc = metadata_builder.package("libc", "0.2.150")
    metadata_builder.depend(a, cc, kind="build")
    metadata_builder.depend(a, libc)

    result = _plan(metadata_builder, platforms(LINUX))

    planned = result.build.get(("a", "1.0.0"))
    script = planned.build_script
    assert script is not None
    assert script.name == "a_build_script"
    assert script.crate_root == "build.rs"
    assert _dependency_names(script.deps) == ["cc"]
    assert script.outputs == ("a_build_script.out_dir", "a_build_script.env")
    assert planned.deps[0].local is True
    assert planned.deps[0].target == "a_build_script"
    assert _dependency_names(planned.deps[1:]) == ["libc"]


def test_build_script_overrides_flow_into_the_plan(metadata_builder: MetadataBuilder) -> None:
    metadata_builder.package("a", "1.0.0", build_script=True)
    settings = _overrides(
        "a",
        buildrs_additional_deps=["//tools:protoc"],
        buildrs_additional_environment_variables={"PROTOC": "protoc", "B": "x"},
    )

    script = _plan(metadata_builder, platforms(LINUX), settings).build.get(("a", "1.0.0")).build_script

    assert script.extra_deps == ("//tools:protoc",)
    assert list(script.env.items()) == [("B", "x"), ("PROTOC", "protoc")]


def test_disabled_build_script_drops_build_edges(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0", build_script=True)
    cc = metadata_builder.package("cc", "1.0.79")
    metadata_builder.depend(a, cc, kind="build")
    settings = _overrides("a", gen_buildrs=False)

    result = _plan(metadata_builder, platforms(LINUX), settings, collect_exclusions=True)

    planned = result.build.get(("a", "1.0.0"))
    assert planned.build_script is None
    assert planned.deps == ()
    assert [d.code for d in result.diagnostics] == [BUILD_SCRIPT_DISABLED]


def test_default_gen_buildrs_setting_applies_to_every_crate(metadata_builder: MetadataBuilder) -> None:
    metadata_builder.package("a", "1.0.0", build_script=True)

    result = _plan(metadata_builder, platforms(LINUX), RazeSettings(default_gen_buildrs=False))

    assert result.build.get(("a", "1.0.0")).build_script is None


def test_build_dependency_cycle_is_fatal(metadata_builder: MetadataBuilder) -> None:
    x = metadata_builder.package("x", "1.0.0", build_script=True)
    y = metadata_builder.package("y", "1.0.0")
    metadata_builder.depend(x, y, kind="build")
    metadata_builder.depend(y, x)

    with pytest.raises(CyclicBuildDependency) as excinfo:
        _plan(metadata_builder, platforms(LINUX))

    assert excinfo.value.cycle == ["x-1.0.0", "y-1.0.0"]
    assert "x-1.0.0 -> y-1.0.0 -> x-1.0.0" in str(excinfo.value)


def test_normal_only_cycle_is_not_fatal(metadata_builder: MetadataBuilder) -> None:
    x = metadata_builder.package("x", "1.0.0")
    y = metadata_builder.package("y", "1.0.0")
    metadata_builder.depend(x, y)
    metadata_builder.depend(y, x)

    result = _plan(metadata_builder, platforms(LINUX))

    assert result.build.keys() == [("x", "1.0.0"), ("y", "1.0.0")]


def test_collect_exclusions_reports_dropped_edges(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    b = metadata_builder.package("b", "2.0.0")
    c = metadata_builder.package("c", "1.0.0")
    d = metadata_builder.package("d", "3.0.0")
    metadata_builder.depend(a, b)
    metadata_builder.depend(a, c, target=LINUX_ONLY)
    metadata_builder.depend(a, d, optional=True)
    t = metadata_builder.package("tempfile", "3.0.0")
    metadata_builder.depend(a, t, kind="dev")
    settings = _overrides("a", skipped_deps=["b"])

    result = _plan(metadata_builder, platforms(WINDOWS), settings, collect_exclusions=True)

    by_code = {d.code: d for d in result.diagnostics}
    assert set(by_code) == {SKIPPED_EDGE, EXCLUDED_EDGE, INACTIVE_OPTIONAL_EDGE, DEV_EDGE}
    assert by_code[EXCLUDED_EDGE].detail == {
        "dependency": "c-1.0.0",
        "role": "normal",
        "predicate": LINUX_ONLY,
    }
    assert by_code[DEV_EDGE].package == ("a", "1.0.0")
    assert by_code[DEV_EDGE].detail == {"dependency": "tempfile-3.0.0", "kind": "dev"}


def test_merged_edges_carry_the_union_of_features(metadata_builder: MetadataBuilder) -> None:
    a = metadata_builder.package("a", "1.0.0")
    b = metadata_builder.package("b", "2.0.0")
    metadata_builder.depend(a, b, features=["serde"])
    metadata_builder.depend(a, b, target="cfg(unix)", features=["std"])

    result = _plan(metadata_builder, platforms(LINUX))

    planned = result.build.get(("a", "1.0.0"))
    assert _dependency_names(planned.deps) == ["b"]
    assert planned.deps[0].features == ("serde", "std")


def test_exclusions_are_silent_by_default(linux_only_graph: MetadataBuilder) -> None:
    result = _plan(linux_only_graph, platforms(WINDOWS))

    assert result.diagnostics == ()


def test_packages_are_ordered_by_name_then_natural_version(metadata_builder: MetadataBuilder) -> None:
    metadata_builder.package("rand", "0.10.0")
    metadata_builder.package("rand", "0.9.0")
    metadata_builder.package("libc", "0.2.150")

    result = _plan(metadata_builder, platforms(LINUX))

    assert result.build.keys() == [("libc", "0.2.150"), ("rand", "0.9.0"), ("rand", "0.10.0")]


def test_package_settings_and_metadata_flow_into_plan(metadata_builder: MetadataBuilder) -> None:
    metadata_builder.package("a", "1.0.0", license="MIT OR GPL-3.0")
    settings = _overrides(
        "a",
        additional_deps=["//extra:dep"],
        additional_env={"FOO": "bar"},
        data_attr='glob(["data/**"])',
        extra_aliased_targets=["a_bin"],
    )

    planned = _plan(metadata_builder, platforms(LINUX), settings).build.get(("a", "1.0.0"))

    assert planned.license.kind == "notice"
    assert planned.extra_deps == ("//extra:dep",)
    assert planned.rustc_env == {"FOO": "bar"}
    assert planned.data_attr == 'glob(["data/**"])'
    assert planned.extra_aliased_targets == ("a_bin",)
    assert planned.download_url == "https://crates.io/api/v1/crates/a/1.0.0/download"


def test_path_packages_have_no_download_url(metadata_builder: MetadataBuilder) -> None:
    metadata_builder.package("local", "0.1.0", source=None)

    planned = _plan(metadata_builder, platforms(LINUX)).build.get(("local", "0.1.0"))

    assert planned.download_url is None


def test_cycle_through_two_build_scripts_names_both_packages(metadata_builder: MetadataBuilder) -> None:
    x = metadata_builder.package("x", "1.0.0", build_script=True)
    y = metadata_builder.package("y", "1.0.0", build_script=True)
    metadata_builder.depend(x, y, kind="build")
    metadata_builder.depend(y, x, kind="build")

    with pytest.raises(CyclicBuildDependency) as excinfo:
        _plan(metadata_builder, platforms(LINUX))

    assert sorted(excinfo.value.cycle) == ["x-1.0.0", "y-1.0.0"]
