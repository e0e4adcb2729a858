"""Tests for target graph construction."""

from pathlib import Path

import pytest

from graphbuild.build.build_profiles import resolve_profile
from graphbuild.build.source_scanner import SourceScanner
from graphbuild.build.target_graph import TargetGraph, TargetGraphBuilder
from graphbuild.build.targets import Target, TargetKind
from graphbuild.exceptions import GraphError, MissingSubTargetError

from conftest import write_project


class TestGraphShape:
    """Targets declared for the fixture project."""

    def test_declared_targets(self, make_graph):
        graph = make_graph()
        assert graph.names == [
            "biscuitdb_objlib",
            "biscuitdb_static",
            "biscuitdb_shared",
            "biscuitdb",
            "biscuitdb_test",
            "biscuitdb_benchmark",
        ]
        assert graph["biscuitdb_objlib"].kind is TargetKind.OBJECT_SET
        assert graph["biscuitdb_static"].kind is TargetKind.STATIC_LIBRARY
        assert graph["biscuitdb_shared"].kind is TargetKind.SHARED_LIBRARY
        assert graph["biscuitdb"].kind is TargetKind.EXECUTABLE
        assert graph["biscuitdb_test"].kind is TargetKind.TEST_BINARY
        assert graph["biscuitdb_benchmark"].kind is TargetKind.BENCHMARK_BINARY

    def test_every_target_reaches_object_set(self, make_graph):
        graph = make_graph()
        assert graph.object_set.dependencies == ()
        for target in graph:
            if target is not graph.object_set:
                assert "biscuitdb_objlib" in graph.transitive_dependencies(target.name)

    def test_topological_order(self, make_graph):
        graph = make_graph()
        position = {t.name: i for i, t in enumerate(graph.topological_order())}
        for target in graph:
            for dep in target.dependencies:
                assert position[dep] < position[target.name]

    def test_output_layout(self, make_graph, build_dir):
        graph = make_graph()
        assert graph["biscuitdb_objlib"].output_path is None
        assert graph["biscuitdb_static"].output_path == build_dir / "lib" / "libbiscuitdb_static.a"
        assert graph["biscuitdb_shared"].output_path == build_dir / "lib" / "libbiscuitdb_shared.so"
        assert graph["biscuitdb"].output_path == build_dir / "bin" / "biscuitdb"
        assert graph["biscuitdb_test"].output_path == build_dir / "bin" / "biscuitdb_test"

    def test_executable_compiles_only_entry_point(self, make_graph, project_dir):
        graph = make_graph()
        assert graph["biscuitdb"].sources == ((project_dir / "src" / "main" / "main.cpp").resolve(),)


class TestSingleCompilation:
    """Library sources are compiled once, by the object set."""

    def test_libraries_consume_object_set(self, make_graph):
        graph = make_graph()
        assert graph["biscuitdb_static"].objects_from == "biscuitdb_objlib"
        assert graph["biscuitdb_shared"].objects_from == "biscuitdb_objlib"
        assert graph["biscuitdb_static"].sources == ()

    def test_each_library_source_has_one_compile_job(self, make_graph):
        graph = make_graph()
        jobs = graph.compile_jobs()
        compiled = [source for _, source in jobs]
        assert len(compiled) == len(set(compiled))
        for source in graph.object_set.sources:
            owners = [t.name for t, s in jobs if s == source]
            assert owners == ["biscuitdb_objlib"]

    def test_jobs_follow_dependency_order(self, make_graph):
        jobs = make_graph().compile_jobs()
        assert jobs[0][0].name == "biscuitdb_objlib"


class TestFlags:
    """Flag propagation through the graph."""

    def test_debug_object_set_flags(self, make_graph, project):
        graph = make_graph("debug")
        flags = graph.compile_flags("biscuitdb_objlib")
        assert flags[0] == "-fPIC"
        for flag in ("-Werror", "-Wall", "-std=c++17", "-march=native", "-mcx16", "-ggdb", "-O0", "--coverage"):
            assert flag in flags
        assert "-DNDEBUG" not in flags
        assert f"-I{project.project_dir / 'src' / 'include'}" in flags

    def test_release_flags_reach_every_target(self, make_graph):
        graph = make_graph("release")
        for target in graph:
            flags = graph.compile_flags(target.name)
            assert "-O3" in flags
            assert "-DNDEBUG" in flags
            assert "--coverage" not in flags

    def test_release_executable_link_has_no_coverage(self, make_graph):
        graph = make_graph("release")
        assert "--coverage" not in graph.link_flags("biscuitdb")

    def test_debug_executable_link_has_coverage(self, make_graph):
        graph = make_graph("debug")
        assert "--coverage" in graph.link_flags("biscuitdb")

    @pytest.mark.parametrize("profile", ["debug", "fastdebug", "release", "relwithdebinfo"])
    def test_test_and_benchmark_always_link_coverage(self, make_graph, profile):
        graph = make_graph(profile)
        assert "--coverage" in graph.link_flags("biscuitdb_test")
        assert "--coverage" in graph.link_flags("biscuitdb_benchmark")

    def test_static_visibility_inherited(self, make_graph):
        graph = make_graph()
        assert "-fvisibility=hidden" in graph.compile_flags("biscuitdb")
        assert "-fvisibility=hidden" in graph.link_flags("biscuitdb_test")
        assert "-fvisibility=hidden" not in graph.compile_flags("biscuitdb_objlib")

    def test_warnings_are_private(self, make_graph):
        graph = make_graph()
        assert "-Werror" in graph.compile_flags("biscuitdb")
        assert "-Werror" not in graph.compile_flags("biscuitdb_test")

    def test_shared_library_links_shared(self, make_graph):
        graph = make_graph()
        assert "-shared" in graph.link_flags("biscuitdb_shared")
        assert "-shared" not in graph.link_flags("biscuitdb")

    def test_framework_includes_and_libraries(self, make_graph, imported, build_dir):
        graph = make_graph()
        flags = graph.compile_flags("biscuitdb_test")
        include = imported["gtest"].include_dirs[0]
        index = flags.index(str(include))
        assert flags[index - 1] == "-isystem"
        assert graph.link_libraries("biscuitdb_test") == [
            build_dir / "lib" / "libbiscuitdb_static.a",
            imported["gtest"].archive,
        ]
        assert "-pthread" in graph.link_flags("biscuitdb_test")
        assert graph.link_libraries("biscuitdb_benchmark")[-1] == imported["benchmark"].archive


class TestEdgeCases:
    """Degenerate inputs and invalid declarations."""

    def test_empty_library_manifest(self, tmp_path, imported):
        from graphbuild.config import ProjectConfig

        root = write_project(tmp_path / "empty", files={"src/main/main.cpp": "int main() { return 0; }\n"})
        project = ProjectConfig.load(root)
        sources = SourceScanner(root).scan()
        graph = TargetGraphBuilder(project, resolve_profile(None), sources, imported, root / "build").build()

        assert graph.object_set.sources == ()
        assert graph["biscuitdb_test"].sources == ()
        assert [s.name for _, s in graph.compile_jobs()] == ["main.cpp"]

    def test_missing_framework_sub_target(self, project, build_dir, imported):
        sources = SourceScanner(project.project_dir).scan()
        partial = {name: t for name, t in imported.items() if t.dependency != "benchmark"}
        builder = TargetGraphBuilder(project, resolve_profile(None), sources, partial, build_dir)
        with pytest.raises(MissingSubTargetError) as exc_info:
            builder.build()
        assert exc_info.value.sub_target == "benchmark"
        assert exc_info.value.target == "biscuitdb_benchmark"

    def test_duplicate_target(self):
        graph = TargetGraph(resolve_profile(None))
        graph.declare(Target("core", TargetKind.OBJECT_SET))
        with pytest.raises(GraphError, match="declared twice"):
            graph.declare(Target("core", TargetKind.OBJECT_SET))

    def test_undeclared_dependency(self):
        graph = TargetGraph(resolve_profile(None))
        with pytest.raises(GraphError, match="undeclared"):
            graph.declare(Target("app", TargetKind.EXECUTABLE, dependencies=("core",)))

    def test_unknown_target_lookup(self):
        with pytest.raises(GraphError, match="Unknown target"):
            TargetGraph(resolve_profile(None))["nope"]

    def test_orphan_target_fails_validation(self):
        graph = TargetGraph(resolve_profile(None))
        graph.declare(Target("core", TargetKind.OBJECT_SET))
        graph.declare(Target("tool", TargetKind.EXECUTABLE, output_dir=Path("bin")))
        with pytest.raises(GraphError, match="does not depend on core"):
            graph.validate()

    def test_cycle_in_loaded_graph(self):
        data = {
            "profile": "debug",
            "targets": [
                Target("core", TargetKind.OBJECT_SET).to_dict(),
                Target("a", TargetKind.STATIC_LIBRARY, dependencies=("core",)).to_dict(),
            ],
            "imported": [],
        }
        graph = TargetGraph.from_dict(data)
        # Force a cycle the declaration API would reject
        graph._targets["core"] = Target("core", TargetKind.OBJECT_SET, dependencies=("a",))
        with pytest.raises(GraphError, match="cycle"):
            graph.topological_order()


def test_graph_round_trips_through_dict(make_graph):
    graph = make_graph("relwithdebinfo")
    restored = TargetGraph.from_dict(graph.to_dict())

    assert restored.names == graph.names
    assert restored.configuration == graph.configuration
    assert restored.compile_flags("biscuitdb_test") == graph.compile_flags("biscuitdb_test")
    assert restored.link_libraries("biscuitdb") == graph.link_libraries("biscuitdb")
