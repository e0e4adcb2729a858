"""Verification task runners.

Each runner executes one registered VerificationTask and returns an exit
status: 0 when everything passed, 1 when the tool reported a problem.

    format / check-format   clang-format per file; check mode diffs the
                            formatted output against the file on disk
    check-lint              cpplint over the lint manifest in batches of 12
                            files, at most 8 batches at a time
    check-clang-tidy        clang-tidy per translation unit listed in the
                            compile command database
"""

import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

import psutil

from ..build.compile_commands import DATABASE_NAME
from ..build.targets import ImportedTarget
from ..output import log, log_detail, log_error
from ..subprocess_utils import format_command, run_step
from .verification import CHECK_CLANG_TIDY, CHECK_LINT, TaskMode, VerificationTask

logger = logging.getLogger(__name__)

FORMAT_SUFFIXES = (".h", ".hpp", ".cpp", ".cc")

# cpplint takes a non-trivial time to launch, so each invocation gets a batch
LINT_BATCH_SIZE = 12
LINT_MAX_WORKERS = 8
LINT_ARGS = (
    "--verbose=2",
    "--linelength=120",
    "--quiet",
    "--filter=-legal/copyright,-build/header_guard",
)


def default_workers() -> int:
    return psutil.cpu_count(logical=True) or 1


def _is_excluded(path: Path, exclusions: Sequence[Path]) -> bool:
    for excluded in exclusions:
        if path == excluded or excluded in path.parents:
            return True
    return False


def collect_format_files(task: VerificationTask) -> list[Path]:
    """Files under the task's directories that clang-format should see."""
    files: set[Path] = set()
    for directory in task.scope:
        if not directory.is_dir():
            continue
        for path in directory.rglob("*"):
            if path.suffix in FORMAT_SUFFIXES and path.is_file():
                resolved = path.resolve()
                if not _is_excluded(resolved, task.exclusions):
                    files.add(resolved)
    return sorted(files)


def run_format(task: VerificationTask, workers: Optional[int] = None) -> int:
    """Run clang-format in fix or check mode.

    Returns:
        1 in check mode if any file is not in canonical form (or clang-format failed), else 0
    """
    files = collect_format_files(task)
    tool = task.tool_path

    def check_one(path: Path) -> Optional[str]:
        if task.mode is TaskMode.FIX:
            result = run_step([tool, "-style=file", "-i", path], capture=True)
            return None if result.returncode == 0 else f"{path}: {result.stderr.strip()}"
        # compared as bytes, sources are not required to be UTF-8
        result = run_step([tool, "-style=file", path], capture=True, text=False)
        if result.returncode != 0:
            return f"{path}: {result.stderr.decode(errors='replace').strip()}"
        if result.stdout != path.read_bytes():
            return f"{path}: needs formatting"
        return None

    with ThreadPoolExecutor(max_workers=workers or default_workers()) as executor:
        problems = [p for p in executor.map(check_one, files) if p is not None]

    for problem in problems:
        log_detail(problem)
    if problems:
        log_error(f"{task.name}: {len(problems)} of {len(files)} files failed")
        return 1
    log(f"{task.name}: {len(files)} files OK")
    return 0


def batched(items: Sequence[Path], size: int) -> list[list[Path]]:
    """Split items into consecutive batches of at most `size`."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def lint_command(tool: Path, batch: Iterable[Path]) -> list[str]:
    """cpplint invocation for one batch; cpplint.py runs through the current interpreter."""
    prefix = [sys.executable, str(tool)] if tool.suffix == ".py" else [str(tool)]
    return prefix + list(LINT_ARGS) + [str(p) for p in batch]


def run_lint(task: VerificationTask) -> int:
    """Run cpplint over the lint manifest.

    Returns:
        1 if any batch reported a violation, else 0
    """
    files = [p for p in task.scope if p.is_file()]
    batches = batched(files, LINT_BATCH_SIZE)

    def lint_batch(batch: list[Path]) -> int:
        cmd = lint_command(task.tool_path, batch)
        logger.debug(format_command(cmd))
        result = run_step(cmd, capture=True)
        output = (result.stdout + result.stderr).strip()
        if output:
            log_detail(output, indent=0)
        return result.returncode

    with ThreadPoolExecutor(max_workers=LINT_MAX_WORKERS) as executor:
        codes = list(executor.map(lint_batch, batches))

    failed = sum(1 for code in codes if code != 0)
    if failed:
        log_error(f"{CHECK_LINT}: {failed} of {len(batches)} batches reported violations")
        return 1
    log(f"{CHECK_LINT}: {len(files)} files OK")
    return 0


def tidy_sources(compile_db: Path, scope: Sequence[Path]) -> list[Path]:
    """Translation units from the compile database that lie under the task scope."""
    entries = json.loads(compile_db.read_text(encoding="utf-8"))
    sources: set[Path] = set()
    for entry in entries:
        path = Path(entry["file"])
        if not path.is_absolute():
            path = Path(entry.get("directory", ".")) / path
        path = path.resolve()
        if any(root.resolve() in path.parents for root in scope):
            sources.add(path)
    return sorted(sources)


def run_tidy(
    task: VerificationTask,
    build_dir: Path,
    imported: Mapping[str, ImportedTarget],
    workers: Optional[int] = None,
) -> int:
    """Run clang-tidy against the compile database.

    Returns:
        1 on any finding or when prerequisites are missing, else 0
    """
    compile_db = build_dir / DATABASE_NAME
    if not compile_db.is_file():
        log_error(f"{CHECK_CLANG_TIDY}: {compile_db} not found, run gbuild configure first")
        return 1
    for name in task.requires:
        sub_target = imported.get(name)
        if sub_target is None or not all(d.is_dir() for d in sub_target.include_dirs):
            log_error(f"{CHECK_CLANG_TIDY}: headers of {name} are not available")
            return 1

    sources = tidy_sources(compile_db, task.scope)

    def tidy_one(source: Path) -> bool:
        result = run_step([task.tool_path, "-p", build_dir, "--quiet", source], capture=True)
        output = (result.stdout or "").strip()
        if result.returncode != 0 or "warning:" in output or "error:" in output:
            log_detail(output or f"{source}: {result.stderr.strip()}", indent=0)
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers or default_workers()) as executor:
        results = list(executor.map(tidy_one, sources))

    findings = results.count(False)
    if findings:
        log_error(f"{CHECK_CLANG_TIDY}: findings in {findings} of {len(sources)} files")
        return 1
    log(f"{CHECK_CLANG_TIDY}: {len(sources)} files OK")
    return 0


def run_task(
    task: VerificationTask,
    build_dir: Path,
    imported: Mapping[str, ImportedTarget],
    workers: Optional[int] = None,
) -> int:
    """Dispatch a task to its runner and return the exit status."""
    if task.name == CHECK_LINT:
        return run_lint(task)
    if task.name == CHECK_CLANG_TIDY:
        return run_tidy(task, build_dir, imported, workers)
    return run_format(task, workers)
