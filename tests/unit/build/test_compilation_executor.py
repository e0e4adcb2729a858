"""Tests for the parallel compile/archive/link executor.

The compiler and archiver are replaced by a fake run_step that records each
command and creates the output file it names.
"""

import os
import subprocess
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from graphbuild.build.build_context import BuildContext
from graphbuild.build.build_profiles import resolve_profile
from graphbuild.build.build_state import BuildState
from graphbuild.build.compilation_executor import CompilationExecutor, is_up_to_date, parse_depfile
from graphbuild.build.source_scanner import SourceScanner
from graphbuild.build.target_graph import TargetGraphBuilder
from graphbuild.config import ProjectConfig
from graphbuild.exceptions import BuildError

from conftest import make_imported, write_project


class FakeToolchain:
    """Records commands; creates the file after -o (or the archive for ar)."""

    def __init__(self, fail_on: str = ""):
        self.commands: list[list[str]] = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def __call__(self, cmd, cwd=None, timeout=None, capture=False):
        cmd = [str(c) for c in cmd]
        with self._lock:
            self.commands.append(cmd)
        if self.fail_on and any(part.endswith(self.fail_on) for part in cmd):
            return subprocess.CompletedProcess(cmd, 1, "", f"{self.fail_on}:1:1: error: expected ';'")
        output = Path(cmd[2]) if cmd[1] == "rcs" else Path(cmd[cmd.index("-o") + 1])
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text("binary")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def compiles(self) -> list[list[str]]:
        return [c for c in self.commands if "-c" in c]

    def links(self) -> list[list[str]]:
        return [c for c in self.commands if "-c" not in c]


@pytest.fixture
def context(make_graph, project, build_dir, imported):
    for target in imported.values():
        target.archive.parent.mkdir(parents=True, exist_ok=True)
        target.archive.write_text("archive")
    graph = make_graph("debug")
    state = BuildState(str(project.project_dir), "debug", "clang++", "ar", "")
    return BuildContext(project.project_dir, build_dir, "clang++", "ar", graph, {}, ("biscuitdb_test",), state)


def _build(context, toolchain, names=None):
    with patch("graphbuild.build.compilation_executor.run_step", toolchain):
        return CompilationExecutor(context, jobs=4, show_progress=False).build(names)


class TestFullBuild:
    """A build from scratch."""

    def test_library_sources_compiled_once(self, context):
        toolchain = FakeToolchain()
        summary = _build(context, toolchain)

        compiled = [c[c.index("-c") + 1] for c in toolchain.compiles()]
        assert len(compiled) == len(set(compiled)) == 6
        for source in context.graph.object_set.sources:
            assert compiled.count(str(source)) == 1
        assert summary.compiled == 6

    def test_every_artifact_linked(self, context):
        toolchain = FakeToolchain()
        summary = _build(context, toolchain)

        assert sorted(summary.linked) == sorted(
            ["biscuitdb_static", "biscuitdb_shared", "biscuitdb", "biscuitdb_test", "biscuitdb_benchmark"]
        )
        for name in summary.linked:
            assert context.graph[name].output_path.is_file()

    def test_archive_before_programs(self, context):
        toolchain = FakeToolchain()
        _build(context, toolchain)

        links = toolchain.links()
        assert links[0][:2] == ["ar", "rcs"]
        # the archive holds exactly the object set's objects
        assert len(links[0]) == 3 + len(context.graph.object_set.sources)
        static = str(context.graph["biscuitdb_static"].output_path)
        exe = next(c for c in links if c[-1].endswith("/bin/biscuitdb"))
        assert static in exe
        assert exe.index(static) < exe.index("-o")

    def test_compile_commands_write_depfiles(self, context):
        toolchain = FakeToolchain()
        _build(context, toolchain)
        for cmd in toolchain.compiles():
            assert "-MMD" in cmd
            assert cmd[cmd.index("-MF") + 1].endswith(".d")

    def test_shared_library_reuses_objects(self, context):
        toolchain = FakeToolchain()
        _build(context, toolchain)
        shared = next(c for c in toolchain.links() if "-shared" in c)
        archive = next(c for c in toolchain.links() if c[1] == "rcs")
        assert sorted(p for p in shared if p.endswith(".o")) == sorted(archive[3:])


class TestIncremental:
    """Rebuild decisions."""

    def test_second_build_is_a_no_op(self, context):
        _build(context, FakeToolchain())
        toolchain = FakeToolchain()
        summary = _build(context, toolchain)

        assert toolchain.commands == []
        assert summary.compiled == 0
        assert summary.up_to_date == 6
        assert summary.linked == []

    def test_touched_source_recompiles_only_itself(self, context, project):
        _build(context, FakeToolchain())
        source = (project.project_dir / "src" / "db.cpp").resolve()
        future = source.stat().st_mtime + 100
        os.utime(source, (future, future))

        toolchain = FakeToolchain()
        summary = _build(context, toolchain)

        assert [c[c.index("-c") + 1] for c in toolchain.compiles()] == [str(source)]
        assert summary.compiled == 1
        assert "biscuitdb_static" in summary.linked

    def test_changed_header_from_depfile_recompiles(self, context, project):
        _build(context, FakeToolchain())
        source = (project.project_dir / "src" / "db.cpp").resolve()
        header = (project.project_dir / "src" / "include" / "biscuit" / "db.h").resolve()
        obj = context.graph.object_set.object_path(context.build_dir, source, context.project_dir)
        obj.with_suffix(".d").write_text(f"{obj}: {source} \\\n {header}\n")
        future = obj.stat().st_mtime + 100
        os.utime(header, (future, future))

        toolchain = FakeToolchain()
        _build(context, toolchain)

        assert [c[c.index("-c") + 1] for c in toolchain.compiles()] == [str(source)]


class TestFailures:
    """Compiler and linker errors."""

    def test_compile_error_raises(self, context, captured_output):
        toolchain = FakeToolchain(fail_on="hash.cpp")
        with pytest.raises(BuildError, match="1 of 6 translation units failed"):
            _build(context, toolchain)
        assert "hash.cpp" in captured_output.getvalue()
        # nothing is linked after a failed compile
        assert toolchain.links() == []


class TestSelection:
    """Building named targets."""

    def test_named_target_builds_its_dependencies_only(self, context):
        toolchain = FakeToolchain()
        summary = _build(context, toolchain, ["biscuitdb"])

        assert summary.linked == ["biscuitdb_static", "biscuitdb"]
        compiled = [Path(c[c.index("-c") + 1]).name for c in toolchain.compiles()]
        assert "db_test.cpp" not in compiled
        assert "main.cpp" in compiled


def test_parse_depfile(tmp_path):
    depfile = tmp_path / "db.cpp.d"
    depfile.write_text("obj/db.cpp.o: src/db.cpp \\\n  src/include/my\\ header.h /usr/include/stdio.h\n")
    assert parse_depfile(depfile) == [
        Path("src/db.cpp"),
        Path("src/include/my header.h"),
        Path("/usr/include/stdio.h"),
    ]
    assert parse_depfile(tmp_path / "missing.d") == []


def test_is_up_to_date_requires_matching_command(tmp_path):
    output = tmp_path / "a.o"
    output.write_text("o")
    assert not is_up_to_date(output, [], ["cc", "-c", "a.cpp"])
    (tmp_path / "a.o.cmd").write_text("cc -c a.cpp")
    assert is_up_to_date(output, [], ["cc", "-c", "a.cpp"])
    assert not is_up_to_date(output, [], ["cc", "-O2", "-c", "a.cpp"])
    assert not is_up_to_date(output, [tmp_path / "gone.h"], ["cc", "-c", "a.cpp"])


def test_empty_library_manifest_builds(tmp_path):
    root = write_project(tmp_path / "tiny", {"src/main/main.cpp": "int main() { return 0; }\n"})
    project = ProjectConfig.load(root)
    build_dir = root / "build"
    build_dir.mkdir()
    sources = SourceScanner(project.project_dir, project.entry_point).scan()
    graph = TargetGraphBuilder(project, resolve_profile("release"), sources, make_imported(build_dir), build_dir).build()
    state = BuildState(str(project.project_dir), "release", "clang++", "ar", "")
    context = BuildContext(project.project_dir, build_dir, "clang++", "ar", graph, {}, (), state)
    toolchain = FakeToolchain()

    summary = _build(context, toolchain)

    assert summary.compiled == 1
    assert summary.linked == ["biscuitdb_static", "biscuitdb"]
    assert sorted(summary.skipped) == ["biscuitdb_benchmark", "biscuitdb_shared", "biscuitdb_test"]
    assert not any("-shared" in c for c in toolchain.links())
