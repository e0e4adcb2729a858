"""Compilation Executor - parallel compile, archive and link.

Executes a configured target graph:

    1. compile every (target, source) job of the selected targets in a thread
       pool; the library sources belong to the object set only, so each of
       them is compiled exactly once per build
    2. archive/link the selected targets in dependency order

Incremental builds: each object is written with a make-style dependency file
(-MMD) and a signature file holding its command line. An object is rebuilt
when it is missing, its command changed, or any file listed in its
dependency file is newer than it. Archives and programs are relinked under
the same rules against their object and library inputs.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

import psutil
from tqdm import tqdm

from ..exceptions import BuildError
from ..output import log, log_detail, log_error
from ..subprocess_utils import format_command, run_step
from .build_context import BuildContext
from .compile_commands import compile_command
from .targets import Target, TargetKind

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".cmd"
DEPFILE_SUFFIX = ".d"


@dataclass
class BuildSummary:
    """Outcome of one build run."""

    compiled: int = 0
    up_to_date: int = 0
    linked: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    build_time: float = 0.0


def parse_depfile(depfile: Path) -> list[Path]:
    """Read the prerequisites listed in a make-style dependency file."""
    if not depfile.is_file():
        return []
    content = depfile.read_text(encoding="utf-8", errors="replace").replace("\\\n", " ")
    _, sep, prerequisites = content.partition(": ")
    if not sep:
        return []
    # Escaped spaces belong to the path
    tokens = prerequisites.replace("\\ ", "\0").split()
    return [Path(token.replace("\0", " ")) for token in tokens]


def _signature_path(output: Path) -> Path:
    return output.with_name(output.name + SIGNATURE_SUFFIX)


def is_up_to_date(output: Path, inputs: Iterable[Path], command: Sequence[str]) -> bool:
    """True if output exists, was produced by `command`, and is newer than every input."""
    signature = _signature_path(output)
    if not output.is_file() or not signature.is_file():
        return False
    if signature.read_text(encoding="utf-8") != format_command(command):
        return False
    output_mtime = output.stat().st_mtime
    for path in inputs:
        try:
            if path.stat().st_mtime > output_mtime:
                return False
        except FileNotFoundError:
            return False
    return True


def _record_signature(output: Path, command: Sequence[str]) -> None:
    _signature_path(output).write_text(format_command(command), encoding="utf-8")


class CompilationExecutor:
    """Builds the targets of a configured build directory."""

    def __init__(
        self,
        context: BuildContext,
        jobs: Optional[int] = None,
        show_progress: bool = True,
        verbose: bool = False,
    ):
        """Initialize the executor.

        Args:
            context: Loaded build context
            jobs: Parallel compile jobs (defaults to the logical CPU count)
            show_progress: Show a tqdm progress bar while compiling
            verbose: Log every command line
        """
        self.context = context
        self.graph = context.graph
        self.jobs = jobs or psutil.cpu_count(logical=True) or 1
        self.show_progress = show_progress
        self.verbose = verbose

    def select(self, names: Optional[Sequence[str]] = None) -> list[Target]:
        """Targets to build, in dependency order: the named ones plus everything they depend on.

        Raises:
            GraphError: If a name is not a declared target
        """
        ordered = self.graph.topological_order()
        if not names:
            return ordered
        wanted: set[str] = set()
        for name in names:
            wanted.add(self.graph[name].name)
            wanted.update(self.graph.transitive_dependencies(name))
        return [t for t in ordered if t.name in wanted]

    def object_path(self, target: Target, source: Path) -> Path:
        return target.object_path(self.context.build_dir, source, self.context.project_dir)

    def objects_of(self, target: Target) -> list[Path]:
        """Object files a target consumes (its own, or its object set's)."""
        producer = self.graph[target.objects_from] if target.objects_from else target
        return [self.object_path(producer, source) for source in producer.sources]

    def build(self, names: Optional[Sequence[str]] = None) -> BuildSummary:
        """Compile and link the selected targets.

        Args:
            names: Targets to build (None builds everything)

        Returns:
            BuildSummary of the work done

        Raises:
            BuildError: If a compile or link step fails
        """
        start_time = time.time()
        summary = BuildSummary()
        targets = self.select(names)
        selected = {t.name for t in targets}
        jobs = [(t, s) for t, s in self.graph.compile_jobs() if t.name in selected]

        self.compile_all(jobs, summary)
        for target in targets:
            if target.kind is not TargetKind.OBJECT_SET:
                self.link(target, summary)

        summary.build_time = time.time() - start_time
        return summary

    def compile_command(self, target: Target, source: Path) -> list[str]:
        obj = self.object_path(target, source)
        depfile = obj.with_suffix(DEPFILE_SUFFIX)
        return compile_command(self.context.compiler, self.graph, target, source, obj) + ["-MMD", "-MF", str(depfile)]

    def compile_all(self, jobs: list[tuple[Target, Path]], summary: BuildSummary) -> None:
        """Compile every out-of-date job in parallel.

        Raises:
            BuildError: If any translation unit failed to compile
        """
        pending = []
        for target, source in jobs:
            obj = self.object_path(target, source)
            command = self.compile_command(target, source)
            inputs = [source] + parse_depfile(obj.with_suffix(DEPFILE_SUFFIX))
            if is_up_to_date(obj, inputs, command):
                summary.up_to_date += 1
            else:
                pending.append((source, obj, command))

        if not pending:
            logger.debug("All objects up to date")
            return

        log(f"Compiling {len(pending)} of {len(jobs)} translation units with {self.jobs} jobs")
        failures: list[tuple[Path, str]] = []
        progress = tqdm(total=len(pending), desc="Compiling", unit="file", ncols=80, leave=False, disable=not self.show_progress)
        with progress, ThreadPoolExecutor(max_workers=self.jobs) as executor:
            futures = {executor.submit(self._compile_one, obj, command): source for source, obj, command in pending}
            for future in as_completed(futures):
                error = future.result()
                if error is None:
                    summary.compiled += 1
                else:
                    failures.append((futures[future], error))
                progress.update(1)

        if failures:
            for source, error in sorted(failures):
                log_error(f"Compiling {source} failed")
                log_detail(error, indent=0)
            raise BuildError(f"{len(failures)} of {len(pending)} translation units failed to compile")

    def _compile_one(self, obj: Path, command: list[str]) -> Optional[str]:
        """Compile one object; returns the compiler output on failure, None on success."""
        obj.parent.mkdir(parents=True, exist_ok=True)
        if self.verbose:
            logger.info(format_command(command))
        result = run_step(command, capture=True)
        if result.returncode != 0:
            obj.unlink(missing_ok=True)
            return (result.stderr or result.stdout or f"exit status {result.returncode}").strip()
        _record_signature(obj, command)
        return None

    def link_command(self, target: Target) -> Optional[list[str]]:
        """Archive or link command for a target (None for the object set)."""
        output = target.output_path
        if output is None:
            return None
        objects = [str(p) for p in self.objects_of(target)]
        if target.kind is TargetKind.STATIC_LIBRARY:
            return [self.context.archiver, "rcs", str(output)] + objects
        libraries = [str(p) for p in self.graph.link_libraries(target.name)]
        if target.kind is TargetKind.SHARED_LIBRARY:
            return [self.context.compiler] + self.graph.link_flags(target.name) + objects + ["-o", str(output)]
        return [self.context.compiler] + objects + libraries + self.graph.link_flags(target.name) + ["-o", str(output)]

    def link(self, target: Target, summary: BuildSummary) -> None:
        """Archive or link one target if any of its inputs changed.

        Raises:
            BuildError: If the archiver or linker fails
        """
        command = self.link_command(target)
        output = target.output_path
        if command is None or output is None:
            return
        if target.kind.is_program and not target.sources:
            log_detail(f"{target.name}: no sources, not linked")
            summary.skipped.append(target.name)
            return
        if target.kind is TargetKind.SHARED_LIBRARY and not self.objects_of(target):
            # the linker rejects a shared library with no input files
            log_detail(f"{target.name}: no objects, not linked")
            summary.skipped.append(target.name)
            return

        inputs = self.objects_of(target) + self.graph.link_libraries(target.name)
        if is_up_to_date(output, inputs, command):
            logger.debug(f"{target.name} is up to date")
            return

        output.parent.mkdir(parents=True, exist_ok=True)
        if target.kind is TargetKind.STATIC_LIBRARY:
            # ar rcs only adds members; start from an empty archive
            output.unlink(missing_ok=True)
        if self.verbose:
            logger.info(format_command(command))
        result = run_step(command, capture=True)
        if result.returncode != 0:
            output.unlink(missing_ok=True)
            log_error(f"Linking {target.name} failed")
            log_detail((result.stderr or result.stdout or "").strip(), indent=0)
            raise BuildError(f"Linking {target.name} failed with exit status {result.returncode}")
        _record_signature(output, command)
        summary.linked.append(target.name)
        log_detail(f"{target.kind.value} {output}")
