"""Pipeline orchestration: fetch, plan, render, publish."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, TextIO, Tuple

from .logging import get_logger
from .metadata import CargoMetadataFetcher, build_graph, load_lockfile_checksums
from .models import Diagnostic, FileOutput, PackageKey, PlatformDetails, RenderDetails
from .planning import BuildPlanner, PlanResult
from .platform import RustcPlatformProbe
from .rendering import BazelRenderer, layout_for
from .settings import RazeSettings, load_settings
from .sink import OutputSink
from .workspace import resolve_path_prefix


@dataclass(frozen=True)
class GenerationResult:
    """Plan and rendered files for one set of inputs."""

    plan: PlanResult
    outputs: List[FileOutput]

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return self.plan.diagnostics


@dataclass
class RunOutcome:
    """Result of a full raze run."""

    outputs: List[FileOutput]
    diagnostics: Tuple[Diagnostic, ...]
    written: List[Path]
    dry_run: bool


def generate(
    metadata: Mapping[str, Any],
    settings: RazeSettings,
    platforms: PlatformDetails,
    *,
    render_details: RenderDetails | None = None,
    checksums: Mapping[PackageKey, str] | None = None,
    collect_exclusions: bool = False,
) -> GenerationResult:
    """Run the pure pipeline: metadata to graph to plan to rendered files."""
    graph = build_graph(metadata, checksums)
    plan = BuildPlanner(settings, platforms, collect_exclusions=collect_exclusions).plan(graph)
    details = render_details or RenderDetails(buildfile_suffix=settings.output_buildfile_suffix)
    outputs = BazelRenderer(layout_for(settings.genmode)).render(plan.build, details)
    return GenerationResult(plan=plan, outputs=outputs)


class Orchestrator:
    """Coordinates one raze run against a cargo workspace."""

    def __init__(
        self,
        fetcher: CargoMetadataFetcher | None = None,
        probe: RustcPlatformProbe | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self.fetcher = fetcher or CargoMetadataFetcher()
        self.probe = probe or RustcPlatformProbe()
        self.stream = stream
        self.logger = get_logger("orchestrator")

    def run(
        self,
        manifest_path: str = "Cargo.toml",
        *,
        settings_path: str | None = None,
        output: str | None = None,
        buildprefix: str | None = None,
        dry_run: bool = False,
    ) -> RunOutcome:
        manifest = Path(manifest_path).expanduser().resolve()
        settings = load_settings(Path(settings_path) if settings_path else manifest)
        self.logger.debug("Loaded override settings: %s", settings)

        metadata = self.fetcher.fetch(manifest)
        checksums = load_lockfile_checksums(manifest.with_name("Cargo.lock"))
        platforms = self.probe.details(settings.targets)

        graph = build_graph(metadata, checksums)
        plan = BuildPlanner(settings, platforms).plan(graph)
        prefix = resolve_path_prefix(
            settings,
            plan.build.workspace,
            output=output,
            buildprefix=buildprefix,
            start=manifest.parent,
        )
        details = RenderDetails(path_prefix=prefix, buildfile_suffix=settings.output_buildfile_suffix)
        outputs = BazelRenderer(layout_for(settings.genmode)).render(plan.build, details)

        written = OutputSink(dry_run=dry_run, stream=self.stream).publish(outputs)
        if plan.diagnostics:
            self.logger.warning("Finished with %d diagnostics", len(plan.diagnostics))
        return RunOutcome(
            outputs=outputs,
            diagnostics=plan.diagnostics,
            written=written,
            dry_run=dry_run,
        )


__all__ = ["GenerationResult", "Orchestrator", "RunOutcome", "generate"]
