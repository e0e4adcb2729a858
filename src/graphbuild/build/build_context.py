"""Build Context - Aggregated build configuration.

This module defines:
- ConfigureParams: Basic configure parameters from the CLI (used by the orchestrator)
- BuildContext: Everything a configured build directory holds (used by build, run, test)

Design:
    ConfigureParams flows from CLI -> orchestrator with the raw user input;
    the profile name is resolved by the orchestrator, after the in-source
    check, so a bad profile never touches the build directory.
    BuildContext is created from a persisted BuildState. It carries the
    validated target graph and the task registry, and flows through the
    compilation executor and the task runners.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..tools.verification import VerificationTask
from .build_state import STATE_FILE, BuildState
from .target_graph import TargetGraph


@dataclass(frozen=True)
class ConfigureParams:
    """Basic configure parameters from the CLI.

    Attributes:
        project_dir: Project root directory containing gbuild.ini
        build_dir: Out-of-source build directory
        profile: Profile name as typed by the user (None selects the default)
        verbose: Whether to show nested tool output
    """

    project_dir: Path
    build_dir: Path
    profile: Optional[str]
    verbose: bool

    @classmethod
    def create(cls, project_dir: Path, build_dir: Path, profile: Optional[str] = None, verbose: bool = False) -> "ConfigureParams":
        """Create ConfigureParams with absolute directories."""
        return cls(
            project_dir=project_dir.resolve(),
            build_dir=build_dir.absolute(),
            profile=profile,
            verbose=verbose,
        )


@dataclass(frozen=True)
class BuildContext:
    """A configured build directory, loaded back from its state file.

    Attributes:
        project_dir: Project root directory
        build_dir: Build directory holding gbuild_state.json
        compiler: C++ compiler driver
        archiver: Static archiver
        graph: Validated target graph
        tasks: Registered verification tasks by name
        tests: Programs run by `gbuild test`
        state: The state the context was loaded from
    """

    project_dir: Path
    build_dir: Path
    compiler: str
    archiver: str
    graph: TargetGraph
    tasks: dict[str, VerificationTask]
    tests: tuple[str, ...]
    state: BuildState

    @property
    def state_path(self) -> Path:
        return self.build_dir / STATE_FILE

    @classmethod
    def from_state(cls, state: BuildState, build_dir: Path) -> "BuildContext":
        """Rebuild the context from a persisted state.

        Raises:
            GraphError: If the stored graph no longer validates
        """
        return cls(
            project_dir=Path(state.project_dir),
            build_dir=build_dir,
            compiler=state.compiler,
            archiver=state.archiver,
            graph=TargetGraph.from_dict(state.graph),
            tasks={name: VerificationTask.from_dict(data) for name, data in state.tasks.items()},
            tests=tuple(state.tests),
            state=state,
        )

    @classmethod
    def load(cls, build_dir: Path) -> Optional["BuildContext"]:
        """Load the context of a configured build directory (None if not configured)."""
        build_dir = build_dir.absolute()
        state = BuildState.load(build_dir / STATE_FILE)
        if state is None:
            return None
        return cls.from_state(state, build_dir)
