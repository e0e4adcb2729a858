"""
Configure orchestration for graphbuild projects.

Runs the configuration pipeline for one project in a fixed order:

    [1/6] resolve the build profile
    [2/6] discover source sets
    [3/6] bootstrap external dependencies
    [4/6] declare the target graph
    [5/6] locate tools and register verification tasks
    [6/6] write compile_commands.json and the build state, then mark the
          build support scripts executable

Each step consumes the output of the ones before it. Any ConfigurationError
aborts the run before the state file is written, so a build directory never
holds a partial graph.
"""

import logging
import os
import platform
import stat
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import psutil

from .. import __version__
from ..config import DESCRIPTOR_NAME, ProjectConfig
from ..exceptions import InSourceBuildError
from ..output import TimedLogger, log, log_detail, log_header, log_success
from ..packages.external_deps import DependencyBootstrapper, default_generator
from ..tools.tool_locator import ToolLocator
from ..tools.verification import VerificationTask, TaskRegistrar
from .build_context import BuildContext, ConfigureParams
from .build_profiles import format_profile_banner, resolve_profile
from .build_state import STATE_FILE, BuildState, hash_file
from .compile_commands import write_database
from .source_scanner import SourceManifest, SourceScanner
from .target_graph import TargetGraph, TargetGraphBuilder
from .targets import TargetKind

logger = logging.getLogger(__name__)

PHASES = 6

BootstrapperFactory = Callable[[Path, bool], DependencyBootstrapper]


def _default_bootstrapper(build_dir: Path, verbose: bool) -> DependencyBootstrapper:
    return DependencyBootstrapper(build_dir, generator=default_generator(), verbose=verbose)


@dataclass
class ConfigureResult:
    """Result of a successful configure run."""

    state: BuildState
    graph: TargetGraph
    tasks: dict[str, VerificationTask]
    configure_time: float


def check_out_of_source(build_dir: Path) -> None:
    """Refuse to configure into a directory holding the top-level descriptor.

    Raises:
        InSourceBuildError: If build_dir contains gbuild.ini
    """
    if (build_dir / DESCRIPTOR_NAME).exists():
        raise InSourceBuildError(str(build_dir))


def system_info_lines() -> list[str]:
    """Host description printed in the configure banner."""
    memory = psutil.virtual_memory()
    physical = psutil.cpu_count(logical=False) or 0
    logical = psutil.cpu_count(logical=True) or 0
    return [
        f"Host: {platform.system()} {platform.release()} ({platform.machine()})",
        f"CPUs: {physical} physical, {logical} logical",
        f"Memory: {memory.total / (1024 ** 3):.1f} GiB total, {memory.available / (1024 ** 3):.1f} GiB available",
        f"Python: {platform.python_version()} ({sys.executable})",
    ]


def mark_executable(manifest: SourceManifest) -> None:
    """Add the exec bits to build support scripts."""
    if sys.platform == "win32":
        return
    for path in manifest.files:
        mode = path.stat().st_mode
        wanted = mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        if mode != wanted:
            os.chmod(path, wanted)


def registered_test_programs(graph: TargetGraph) -> list[str]:
    """Programs `gbuild test` runs: every test binary with at least one source."""
    return [t.name for t in graph if t.kind is TargetKind.TEST_BINARY and t.sources]


class ConfigureOrchestrator:
    """
    Orchestrates the configure pipeline.

    The bootstrapper and tool locator are injectable so the pipeline can run
    without network access or installed tools.
    """

    def __init__(
        self,
        bootstrapper_factory: Optional[BootstrapperFactory] = None,
        locator: Optional[ToolLocator] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            bootstrapper_factory: Creates the dependency bootstrapper for a build directory
            locator: Tool locator (defaults to one built from the project descriptor)
        """
        self.bootstrapper_factory = bootstrapper_factory or _default_bootstrapper
        self.locator = locator

    def configure(self, params: ConfigureParams) -> ConfigureResult:
        """Execute the complete configure pipeline.

        Args:
            params: Configure parameters from the CLI

        Returns:
            ConfigureResult with the persisted state and the validated graph

        Raises:
            ConfigurationError: If any step fails (nothing is persisted)
        """
        start_time = time.time()
        project_dir = params.project_dir
        build_dir = params.build_dir

        check_out_of_source(build_dir)
        project = ProjectConfig.load(project_dir)

        log_header(project.name, project.version)
        for line in system_info_lines():
            log_detail(line, indent=0)
        log_detail(f"graphbuild {__version__}, build directory {build_dir}", indent=0)
        log("")

        with TimedLogger("Resolving build profile", phase=(1, PHASES)) as step:
            configuration = resolve_profile(params.profile)
            step.detail(format_profile_banner(configuration, project.compiler))

        with TimedLogger("Discovering sources", phase=(2, PHASES)) as step:
            sources = SourceScanner(project_dir, project.entry_point).scan()
            for role, manifest in sources.manifests.items():
                step.detail(f"{role.value}: {len(manifest)} files")

        build_dir.mkdir(parents=True, exist_ok=True)

        with TimedLogger("Bootstrapping external dependencies", phase=(3, PHASES)) as step:
            bootstrapper = self.bootstrapper_factory(build_dir, params.verbose)
            scope = bootstrapper.bootstrap_all(project.dependencies)
            for imported in scope:
                step.detail(f"{imported.dependency}::{imported.name} -> {imported.archive}")

        with TimedLogger("Declaring targets", phase=(4, PHASES)) as step:
            graph = TargetGraphBuilder(project, configuration, sources, scope.as_mapping(), build_dir).build()
            for target in graph:
                step.detail(f"{target.name} ({target.kind.value}, {len(target.sources)} sources)")

        with TimedLogger("Registering verification tasks", phase=(5, PHASES)):
            locator = self.locator or ToolLocator.for_project(project)
            tools = locator.locate_all(project)
            tasks = TaskRegistrar(project, tools, sources).register()

        with TimedLogger("Writing build files", phase=(6, PHASES)) as step:
            database = write_database(project.compiler, graph, build_dir, project_dir)
            step.detail(str(database))
            state = BuildState(
                project_dir=str(project_dir),
                profile=configuration.name,
                compiler=project.compiler,
                archiver=project.archiver,
                descriptor_hash=hash_file(project.descriptor_path),
                fingerprints=sources.fingerprints(),
                graph=graph.to_dict(),
                tasks={name: task.to_dict() for name, task in tasks.items()},
                tests=registered_test_programs(graph),
            )
            state.save(build_dir / STATE_FILE)
            mark_executable(sources.build_support)

        configure_time = time.time() - start_time
        log_success(f"Configured {project.name} ({configuration.name}) in {configure_time:.2f}s")
        return ConfigureResult(state=state, graph=graph, tasks=tasks, configure_time=configure_time)

    def ensure_fresh(self, build_dir: Path, verbose: bool = False) -> Optional[BuildContext]:
        """Load a configured build directory, reconfiguring first if it went stale.

        Discovery is re-run against the project; if the descriptor changed or a
        manifest gained or lost files, the project is reconfigured with the same
        profile before the context is returned.

        Returns:
            The up-to-date BuildContext, or None if build_dir was never configured

        Raises:
            ConfigurationError: If the reconfiguration fails
        """
        build_dir = build_dir.absolute()
        state = BuildState.load(build_dir / STATE_FILE)
        if state is None:
            return None

        project_dir = Path(state.project_dir)
        project = ProjectConfig.load(project_dir)
        sources = SourceScanner(project_dir, project.entry_point).scan()
        reasons = state.stale_reasons(project.descriptor_path, sources)
        if not reasons:
            logger.debug("Build configuration is up to date")
            return BuildContext.from_state(state, build_dir)

        log("Build configuration is out of date:")
        for reason in reasons:
            log_detail(f"- {reason}")
        result = self.configure(ConfigureParams.create(project_dir, build_dir, state.profile, verbose))
        return BuildContext.from_state(result.state, build_dir)
