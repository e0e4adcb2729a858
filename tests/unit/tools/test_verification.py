"""Tests for verification task registration."""

from pathlib import Path

import pytest

from graphbuild.build.source_scanner import SourceScanner
from graphbuild.exceptions import ConfigurationError
from graphbuild.tools.tool_locator import CLANG_FORMAT, CLANG_TIDY, CPPLINT, ToolRecord
from graphbuild.tools.verification import (
    CHECK_CLANG_TIDY,
    CHECK_FORMAT,
    CHECK_LINT,
    FORMAT,
    TaskMode,
    TaskRegistrar,
    VerificationTask,
)


def _tools(found: set[str]) -> dict[str, ToolRecord]:
    return {
        name: ToolRecord(name, Path(f"/usr/bin/{name}") if name in found else None)
        for name in (CLANG_FORMAT, CLANG_TIDY, CPPLINT)
    }


def _register(project, found):
    sources = SourceScanner(project.project_dir).scan()
    return TaskRegistrar(project, _tools(found), sources).register()


class TestRegistration:
    """Tasks exist exactly for the tools that were found."""

    def test_all_tools_found(self, project, captured_output):
        tasks = _register(project, {CLANG_FORMAT, CLANG_TIDY, CPPLINT})
        assert sorted(tasks) == [CHECK_CLANG_TIDY, CHECK_FORMAT, CHECK_LINT, FORMAT]
        assert f"[ADDED] {CHECK_LINT} (/usr/bin/cpplint)" in captured_output.getvalue()

    def test_no_tools_found(self, project, captured_output):
        assert _register(project, set()) == {}
        text = captured_output.getvalue()
        assert "[MISSING] clang-format not found, no format and no check-format." in text
        assert "[ADDED]" not in text

    def test_only_cpplint(self, project):
        assert list(_register(project, {CPPLINT})) == [CHECK_LINT]

    def test_missing_clang_format_omits_both_format_tasks(self, project):
        tasks = _register(project, {CLANG_TIDY, CPPLINT})
        assert FORMAT not in tasks
        assert CHECK_FORMAT not in tasks
        assert CHECK_CLANG_TIDY in tasks


class TestTaskScopes:
    """What each task processes."""

    def test_format_modes_and_scope(self, project):
        tasks = _register(project, {CLANG_FORMAT})
        root = project.project_dir
        assert tasks[FORMAT].mode is TaskMode.FIX
        assert tasks[CHECK_FORMAT].mode is TaskMode.CHECK
        assert tasks[FORMAT].scope == (root / "benchmark", root / "src", root / "test")

    def test_format_exclusions(self, project):
        (project.build_support_dir / "clang_format_exclusions.txt").write_text("src/util\n")
        tasks = _register(project, {CLANG_FORMAT})
        assert tasks[CHECK_FORMAT].exclusions == ((project.project_dir / "src" / "util").resolve(),)

    def test_lint_scope_is_lint_manifest(self, project):
        tasks = _register(project, {CPPLINT})
        sources = SourceScanner(project.project_dir).scan()
        assert tasks[CHECK_LINT].scope == sources.lint.files

    def test_tidy_requires_framework_sub_targets(self, project):
        tasks = _register(project, {CLANG_TIDY})
        assert tasks[CHECK_CLANG_TIDY].requires == ("gtest", "benchmark")


def test_task_round_trip(project):
    tasks = _register(project, {CLANG_FORMAT, CLANG_TIDY, CPPLINT})
    for task in tasks.values():
        assert VerificationTask.from_dict(task.to_dict()) == task


def test_task_without_tool_path_raises():
    task = VerificationTask(CHECK_LINT, ToolRecord(CPPLINT, None), TaskMode.CHECK, ())
    with pytest.raises(ConfigurationError, match="Task check-lint has no located cpplint"):
        task.tool_path
