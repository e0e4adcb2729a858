"""Verification Task Registrar.

Turns located tools into named, runnable tasks:

    clang-format  ->  format (fix in place), check-format (check only)
    cpplint       ->  check-lint
    clang-tidy    ->  check-clang-tidy

A tool that was not found contributes no tasks at all; its absence is logged
as a warning and the task name simply does not exist in the registry.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from ..build.source_scanner import FORMAT_DIRS, SourceCollection, load_exclusions
from ..config import ProjectConfig
from ..exceptions import ConfigurationError
from ..output import log_task_added, log_task_missing
from .tool_locator import CLANG_FORMAT, CLANG_TIDY, CPPLINT, ToolRecord

logger = logging.getLogger(__name__)

FORMAT = "format"
CHECK_FORMAT = "check-format"
CHECK_LINT = "check-lint"
CHECK_CLANG_TIDY = "check-clang-tidy"

FORMAT_EXCLUSIONS_FILE = "clang_format_exclusions.txt"

# Source trees analyzed by clang-tidy
TIDY_DIRS = ("src", "test", "benchmark")


class TaskMode(Enum):
    """Whether a task rewrites files or only reports."""

    FIX = "fix"
    CHECK = "check"


@dataclass(frozen=True)
class VerificationTask:
    """A runnable, tool-backed check.

    Attributes:
        name: Task name (format, check-format, check-lint, check-clang-tidy)
        tool: Located tool backing the task
        mode: FIX rewrites files in place, CHECK only sets the exit status
        scope: Directories (format, tidy) or files (lint) the task processes
        exclusions: Files or directories skipped
        requires: Imported sub-targets whose headers must be present
    """

    name: str
    tool: ToolRecord
    mode: TaskMode
    scope: tuple[Path, ...]
    exclusions: tuple[Path, ...] = ()
    requires: tuple[str, ...] = ()

    @property
    def tool_path(self) -> Path:
        if self.tool.path is None:
            raise ConfigurationError(f"Task {self.name} has no located {self.tool.name}")
        return self.tool.path

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tool": self.tool.to_dict(),
            "mode": self.mode.value,
            "scope": [str(p) for p in self.scope],
            "exclusions": [str(p) for p in self.exclusions],
            "requires": list(self.requires),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationTask":
        return cls(
            name=data["name"],
            tool=ToolRecord.from_dict(data["tool"]),
            mode=TaskMode(data["mode"]),
            scope=tuple(Path(p) for p in data.get("scope", [])),
            exclusions=tuple(Path(p) for p in data.get("exclusions", [])),
            requires=tuple(data.get("requires", [])),
        )


class TaskRegistrar:
    """Registers verification tasks for the tools that were found."""

    def __init__(self, project: ProjectConfig, tools: Mapping[str, ToolRecord], sources: SourceCollection):
        self.project = project
        self.tools = tools
        self.sources = sources

    def register(self) -> dict[str, VerificationTask]:
        """Build the task registry.

        Returns:
            Task name -> VerificationTask, containing only tasks whose tool was found
        """
        tasks: dict[str, VerificationTask] = {}
        for task in self.lint_tasks() + self.format_tasks() + self.tidy_tasks():
            tasks[task.name] = task
            log_task_added(task.name, str(task.tool_path))
        logger.debug(f"Registered tasks: {sorted(tasks)}")
        return tasks

    def _found(self, tool_name: str, omitted: str) -> Optional[ToolRecord]:
        record = self.tools.get(tool_name)
        if record is None or not record.found:
            log_task_missing(tool_name, omitted)
            return None
        return record

    def format_tasks(self) -> list[VerificationTask]:
        record = self._found(CLANG_FORMAT, f"{FORMAT} and no {CHECK_FORMAT}")
        if record is None:
            return []
        root = self.project.project_dir
        scope = tuple(root / d for d in FORMAT_DIRS)
        exclusions = load_exclusions(self.project.build_support_dir / FORMAT_EXCLUSIONS_FILE)
        return [
            VerificationTask(FORMAT, record, TaskMode.FIX, scope, exclusions),
            VerificationTask(CHECK_FORMAT, record, TaskMode.CHECK, scope, exclusions),
        ]

    def lint_tasks(self) -> list[VerificationTask]:
        record = self._found(CPPLINT, CHECK_LINT)
        if record is None:
            return []
        return [VerificationTask(CHECK_LINT, record, TaskMode.CHECK, self.sources.lint.files)]

    def tidy_tasks(self) -> list[VerificationTask]:
        record = self._found(CLANG_TIDY, CHECK_CLANG_TIDY)
        if record is None:
            return []
        root = self.project.project_dir
        requires = tuple(dep.link for dep in self.project.dependencies)
        return [
            VerificationTask(
                CHECK_CLANG_TIDY,
                record,
                TaskMode.CHECK,
                tuple(root / d for d in TIDY_DIRS),
                requires=requires,
            )
        ]
