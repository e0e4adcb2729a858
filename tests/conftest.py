"""Pytest configuration and fixtures for graphbuild tests.

Fixtures build a small fake C++ project under tmp_path. Nothing here needs a
compiler, cmake, or network access: the dependency bootstrapper is replaced
by FakeBootstrapper and tool lookups are pointed at empty directories.
"""

import io
from pathlib import Path

import pytest

from graphbuild import output
from graphbuild.build.build_profiles import resolve_profile
from graphbuild.build.source_scanner import SourceScanner
from graphbuild.build.target_graph import TargetGraphBuilder
from graphbuild.build.targets import ImportedTarget
from graphbuild.config import ProjectConfig
from graphbuild.packages.external_deps import DependencyScope
from graphbuild.tools.tool_locator import ToolLocator

GBUILD_INI = """\
[project]
name = BiscuitDB
version = 1.0.0.0
description = A small key-value store
entry_point = src/main/main.cpp
compiler = clang++
archiver = ar
"""

PROJECT_FILES = {
    "src/include/biscuit/db.h": "#pragma once\nint open_db();\n",
    "src/db.cpp": '#include "biscuit/db.h"\nint open_db() { return 0; }\n',
    "src/util/hash.cpp": "int hash(int x) { return x * 31; }\n",
    "src/main/main.cpp": '#include "biscuit/db.h"\nint main() { return open_db(); }\n',
    "third_party/murmur/murmur.cpp": "int murmur() { return 1; }\n",
    "third_party/murmur/murmur.h": "int murmur();\n",
    "test/db_test.cpp": "#include <gtest/gtest.h>\nTEST(Db, Opens) {}\n",
    "benchmark/db_benchmark.cpp": "#include <benchmark/benchmark.h>\n",
    "build_support/run_clang_format.py": "print('format')\n",
}

SUB_TARGETS = {
    "googletest": ("gtest", "gtest_main", "gmock", "gmock_main"),
    "benchmark": ("benchmark", "benchmark_main"),
}


@pytest.fixture(autouse=True)
def captured_output(monkeypatch):
    """Send graphbuild.output lines to a buffer instead of stdout."""
    stream = io.StringIO()
    monkeypatch.setattr(output, "_output_stream", stream)
    monkeypatch.setattr(output, "_verbose", True)
    return stream


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in ("CXX", "AR", "GBUILD_TOOLS_PATH", "GBUILD_NO_NETWORK"):
        monkeypatch.delenv(name, raising=False)


def write_project(root: Path, files: dict[str, str] = PROJECT_FILES, ini: str = GBUILD_INI) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "gbuild.ini").write_text(ini)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def project_dir(tmp_path):
    """A fake project tree with library, main, test and benchmark sources."""
    return write_project(tmp_path / "biscuitdb")


@pytest.fixture
def build_dir(project_dir):
    path = project_dir / "build"
    path.mkdir()
    return path


@pytest.fixture
def project(project_dir):
    return ProjectConfig.load(project_dir)


def make_imported(root: Path) -> dict[str, ImportedTarget]:
    imported = {}
    for dependency, names in SUB_TARGETS.items():
        include = root / f"{dependency}-src" / "include"
        for name in names:
            imported[name] = ImportedTarget(
                name=name,
                dependency=dependency,
                archive=root / f"{dependency}-build" / "lib" / f"lib{name}.a",
                include_dirs=(include,),
            )
    return imported


@pytest.fixture
def imported(build_dir):
    """Imported sub-targets as a successful bootstrap would expose them."""
    return make_imported(build_dir)


@pytest.fixture
def make_graph(project, build_dir, imported):
    """Build a validated graph for the fixture project with the given profile."""

    def _make(profile=None):
        sources = SourceScanner(project.project_dir, project.entry_point).scan()
        return TargetGraphBuilder(project, resolve_profile(profile), sources, imported, build_dir).build()

    return _make


class FakeBootstrapper:
    """Stands in for DependencyBootstrapper; records how often it ran."""

    def __init__(self, build_dir: Path, verbose: bool = False):
        self.build_dir = build_dir
        self.verbose = verbose
        self.calls = 0

    def bootstrap_all(self, specs):
        self.calls += 1
        imported = make_imported(self.build_dir)
        return DependencyScope(t for t in imported.values() if any(t.dependency == s.name for s in specs))


@pytest.fixture
def fake_bootstrapper():
    """Factory suitable for ConfigureOrchestrator(bootstrapper_factory=...); keeps created instances."""
    created = []

    def factory(build_dir, verbose):
        bootstrapper = FakeBootstrapper(build_dir, verbose)
        created.append(bootstrapper)
        return bootstrapper

    factory.created = created
    return factory


@pytest.fixture
def empty_locator(tmp_path):
    """A locator that can find nothing."""
    empty = tmp_path / "no-tools"
    empty.mkdir()
    return ToolLocator(override_paths=(), default_paths=(empty,), use_path_env=False)


def make_tool(directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path
