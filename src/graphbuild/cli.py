"""
Command-line interface for graphbuild.

This module provides the `gbuild` CLI tool. Typical use, from an empty
build directory next to the project:

    mkdir build ; cd build
    gbuild configure .. --profile release
    gbuild build -j 8
    gbuild test
    gbuild run check-format
"""

import argparse
import logging
import sys
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, TypeVar

from rich.console import Console
from rich.table import Table

from . import __version__
from .build.build_context import BuildContext, ConfigureParams
from .build.compilation_executor import CompilationExecutor
from .build.orchestrator import ConfigureOrchestrator
from .config import ProjectConfig
from .exceptions import BuildError, ConfigurationError, GraphError
from .output import init_timer, log, log_detail, log_error, log_success, log_warning, set_verbose
from .subprocess_utils import format_command, run_step
from .tools.runners import run_task

EXIT_OK = 0
EXIT_FAILURE = 1
# A task or build directory that was never configured is not a failing check
EXIT_NOT_CONFIGURED = 2
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

ArgsT = TypeVar("ArgsT")


@dataclass
class ConfigureArgs:
    """Arguments for the configure command."""

    project_dir: Path
    build_dir: Path
    profile: Optional[str] = None
    verbose: bool = False


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    build_dir: Path
    jobs: Optional[int] = None
    targets: list[str] = field(default_factory=list)
    verbose: bool = False


@dataclass
class RunArgs:
    """Arguments for the run command."""

    task: str
    build_dir: Path
    jobs: Optional[int] = None
    verbose: bool = False


@dataclass
class BuildDirArgs:
    """Arguments for commands that only need a build directory (tasks, test, coverage)."""

    build_dir: Path
    jobs: Optional[int] = None
    verbose: bool = False


def setup_logging(verbose: bool) -> None:
    """Route module loggers to stderr; debug diagnostics only with --verbose."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_context(build_dir: Path, verbose: bool) -> Optional[BuildContext]:
    context = ConfigureOrchestrator().ensure_fresh(build_dir, verbose=verbose)
    if context is None:
        log_error(f"{build_dir.absolute()} is not configured, run gbuild configure first")
    return context


def configure_command(args: ConfigureArgs) -> int:
    """Configure a build directory.

    Examples:
        gbuild configure ..                    # Configure ../ into the current directory
        gbuild configure .. --profile release  # Release profile
        gbuild configure . -B build            # Configure into ./build
    """
    params = ConfigureParams.create(args.project_dir, args.build_dir, args.profile, args.verbose)
    ConfigureOrchestrator().configure(params)
    return EXIT_OK


def build_command(args: BuildArgs) -> int:
    """Build all targets (or the named ones) of a configured build directory."""
    context = _load_context(args.build_dir, args.verbose)
    if context is None:
        return EXIT_NOT_CONFIGURED
    executor = CompilationExecutor(context, jobs=args.jobs, show_progress=not args.verbose, verbose=args.verbose)
    summary = executor.build(args.targets or None)
    log_success(
        f"Build finished in {summary.build_time:.2f}s: {summary.compiled} compiled, "
        f"{summary.up_to_date} up to date, {len(summary.linked)} linked"
    )
    return EXIT_OK


def run_command(args: RunArgs) -> int:
    """Run a verification task (format, check-format, check-lint, check-clang-tidy)."""
    context = _load_context(args.build_dir, args.verbose)
    if context is None:
        return EXIT_NOT_CONFIGURED
    task = context.tasks.get(args.task)
    if task is None:
        log_error(f"Task {args.task} is not configured (its tool was not found at configure time)")
        if context.tasks:
            log_detail(f"Configured tasks: {', '.join(sorted(context.tasks))}")
        return EXIT_NOT_CONFIGURED
    return run_task(task, context.build_dir, context.graph.imported, args.jobs)


def tasks_command(args: BuildDirArgs) -> int:
    """List the targets and verification tasks of a configured build directory."""
    context = BuildContext.load(args.build_dir)
    if context is None:
        log_error(f"{args.build_dir.absolute()} is not configured, run gbuild configure first")
        return EXIT_NOT_CONFIGURED

    console = Console()
    targets = Table(title=f"Targets ({context.state.profile})")
    targets.add_column("Target")
    targets.add_column("Kind")
    targets.add_column("Sources", justify="right")
    targets.add_column("Output")
    for target in context.graph.topological_order():
        output = target.output_path
        targets.add_row(target.name, target.kind.value, str(len(target.sources)), str(output) if output else "-")
    console.print(targets)

    tasks = Table(title="Verification tasks")
    tasks.add_column("Task")
    tasks.add_column("Mode")
    tasks.add_column("Tool")
    for name in sorted(context.tasks):
        task = context.tasks[name]
        tasks.add_row(name, task.mode.value, str(task.tool_path))
    console.print(tasks)
    return EXIT_OK


def test_command(args: BuildDirArgs) -> int:
    """Build and run the registered test programs."""
    context = _load_context(args.build_dir, args.verbose)
    if context is None:
        return EXIT_NOT_CONFIGURED
    if not context.tests:
        log_warning("No test programs registered (no test sources)")
        return EXIT_OK

    CompilationExecutor(context, jobs=args.jobs, show_progress=not args.verbose, verbose=args.verbose).build(list(context.tests))
    failed = []
    for name in context.tests:
        program = context.graph[name].output_path
        if program is None:
            raise GraphError(f"Test target {name} has no output program")
        log(f"Running {name}")
        result = run_step([program], cwd=context.build_dir)
        if result.returncode != 0:
            failed.append(name)
    if failed:
        log_error(f"Failing test programs: {', '.join(failed)}")
        return EXIT_FAILURE
    log_success(f"{len(context.tests)} test program(s) passed")
    return EXIT_OK


def coverage_command(args: BuildDirArgs) -> int:
    """Run the project's coverage upload command from the build directory."""
    context = _load_context(args.build_dir, args.verbose)
    if context is None:
        return EXIT_NOT_CONFIGURED
    project = ProjectConfig.load(context.project_dir)
    if not project.coverage_command:
        log_error(f"No [coverage] command in {project.descriptor_path}")
        return EXIT_FAILURE
    log(f"Running {format_command(project.coverage_command)}")
    return run_step(list(project.coverage_command), cwd=context.build_dir).returncode


def run_guarded(command: Callable[[ArgsT], int], args: ArgsT, verbose: bool) -> int:
    """Run a command, turning errors into exit codes."""
    try:
        return command(args)
    except (ConfigurationError, BuildError) as e:
        log_error(str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log_warning("Interrupted")
        return EXIT_INTERRUPTED
    except Exception as e:
        log_error(f"Unexpected error: {type(e).__name__}: {e}")
        if verbose:
            print(traceback.format_exc(), file=sys.stderr)
        return EXIT_FAILURE


def _add_build_dir(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-B",
        "--build-dir",
        type=Path,
        default=Path.cwd(),
        help="Build directory (default: current directory)",
    )


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_jobs(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel jobs (default: logical CPU count)",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gbuild",
        description="graphbuild - declarative C++ build graphs",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"gbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    configure_parser = subparsers.add_parser("configure", help="Configure a build directory")
    configure_parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path(".."),
        help="Project directory containing gbuild.ini (default: ..)",
    )
    _add_build_dir(configure_parser)
    configure_parser.add_argument(
        "-p",
        "--profile",
        default=None,
        help="Build profile: debug, fastdebug, release, relwithdebinfo (default: debug)",
    )
    _add_verbose(configure_parser)

    build_parser = subparsers.add_parser("build", help="Build targets")
    _add_build_dir(build_parser)
    _add_jobs(build_parser)
    build_parser.add_argument(
        "-t",
        "--target",
        action="append",
        default=[],
        dest="targets",
        help="Target to build (repeatable, default: all)",
    )
    _add_verbose(build_parser)

    run_parser = subparsers.add_parser("run", help="Run a verification task")
    run_parser.add_argument("task", help="Task name (format, check-format, check-lint, check-clang-tidy)")
    _add_build_dir(run_parser)
    _add_jobs(run_parser)
    _add_verbose(run_parser)

    for name, help_text in (
        ("tasks", "List configured targets and tasks"),
        ("test", "Build and run the test programs"),
        ("coverage", "Run the coverage upload command"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        _add_build_dir(sub)
        _add_jobs(sub)
        _add_verbose(sub)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """graphbuild - declarative C++ build graphs."""
    parser = create_parser()
    parsed = parser.parse_args(argv)
    if not parsed.command:
        parser.print_help()
        sys.exit(EXIT_FAILURE)

    init_timer()
    verbose = parsed.verbose
    set_verbose(verbose)
    setup_logging(verbose)

    if parsed.command == "configure":
        code = run_guarded(
            configure_command,
            ConfigureArgs(parsed.project_dir, parsed.build_dir, parsed.profile, verbose),
            verbose,
        )
    elif parsed.command == "build":
        code = run_guarded(build_command, BuildArgs(parsed.build_dir, parsed.jobs, parsed.targets, verbose), verbose)
    elif parsed.command == "run":
        code = run_guarded(run_command, RunArgs(parsed.task, parsed.build_dir, parsed.jobs, verbose), verbose)
    else:
        commands: dict[str, Callable[[BuildDirArgs], int]] = {
            "tasks": tasks_command,
            "test": test_command,
            "coverage": coverage_command,
        }
        code = run_guarded(commands[parsed.command], BuildDirArgs(parsed.build_dir, parsed.jobs, verbose), verbose)
    sys.exit(code)


if __name__ == "__main__":
    main()
