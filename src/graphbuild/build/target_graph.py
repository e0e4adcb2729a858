"""Target graph construction.

TargetGraphBuilder declares the project's targets in dependency order:

    <name>_objlib     compiled object set (library sources, compiled once)
    <name>_static     static archive of the object set's objects
    <name>_shared     shared library linked from the same objects
    <name>            executable: entry point + <name>_static
    <name>_test       test sources + <name>_static + test framework
    <name>_benchmark  benchmark sources + <name>_static + benchmark framework

A target can only depend on targets declared before it, so the graph is
acyclic by construction; validate() re-checks this for graphs loaded from
disk. Imported sub-targets are checked at declaration time: a link against a
sub-target no dependency provides is a configuration error, never a link
error later on.
"""

import logging
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from ..config import ProjectConfig
from ..exceptions import GraphError, MissingSubTargetError
from .build_profiles import COVERAGE_FLAG, BuildConfiguration, get_profile, BuildProfile
from .source_scanner import SourceCollection, SourceManifest
from .targets import ImportedTarget, Target, TargetKind

logger = logging.getLogger(__name__)

# Options applied to in-project code only
WARNING_OPTIONS = ("-Werror", "-Wall")
# Machine-specific codegen and CMPXCHG16B (16-byte compare and exchange)
ARCH_OPTIONS = ("-march=native", "-mcx16")
VISIBILITY_OPTIONS = ("-fvisibility=hidden",)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class TargetGraph:
    """Declared targets plus the imported sub-targets they may link."""

    def __init__(self, configuration: BuildConfiguration, imported: Optional[Mapping[str, ImportedTarget]] = None):
        self.configuration = configuration
        self.imported: dict[str, ImportedTarget] = dict(imported or {})
        self._targets: dict[str, Target] = {}

    def declare(self, target: Target) -> Target:
        """Add a target to the graph.

        Raises:
            GraphError: If the name is taken or a dependency is not declared yet
            MissingSubTargetError: If an imported sub-target is unknown
        """
        if target.name in self._targets:
            raise GraphError(f"Target {target.name} declared twice")
        for dep in target.dependencies:
            if dep not in self._targets:
                raise GraphError(f"Target {target.name} depends on undeclared target {dep}")
        for sub_target in target.imported:
            if sub_target not in self.imported:
                raise MissingSubTargetError(target.name, sub_target)
        if target.objects_from is not None and target.objects_from not in target.dependencies:
            raise GraphError(f"Target {target.name} consumes objects of {target.objects_from} without depending on it")
        self._targets[target.name] = target
        logger.debug(f"Declared {target.kind.value} {target.name}")
        return target

    def __getitem__(self, name: str) -> Target:
        try:
            return self._targets[name]
        except KeyError:
            raise GraphError(f"Unknown target: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    @property
    def names(self) -> list[str]:
        return list(self._targets)

    @property
    def object_set(self) -> Target:
        for target in self._targets.values():
            if target.kind is TargetKind.OBJECT_SET:
                return target
        raise GraphError("Graph has no compiled object set")

    def transitive_dependencies(self, name: str) -> list[str]:
        """All in-project targets `name` depends on, nearest first, without duplicates."""
        order: list[str] = []
        queue = list(self[name].dependencies)
        while queue:
            dep = queue.pop(0)
            if dep in order:
                continue
            order.append(dep)
            queue.extend(self[dep].dependencies)
        return order

    def topological_order(self) -> list[Target]:
        """Targets ordered so every target follows its dependencies.

        Raises:
            GraphError: If the graph contains a cycle
        """
        visiting: set[str] = set()
        done: set[str] = set()
        order: list[Target] = []

        def visit(name: str, path: list[str]) -> None:
            if name in done:
                return
            if name in visiting:
                raise GraphError(f"Dependency cycle: {' -> '.join(path + [name])}")
            visiting.add(name)
            for dep in self[name].dependencies:
                visit(dep, path + [name])
            visiting.discard(name)
            done.add(name)
            order.append(self._targets[name])

        for name in self._targets:
            visit(name, [])
        return order

    def validate(self) -> None:
        """Check acyclicity and that every target reaches the object set.

        Raises:
            GraphError: On a cycle, a dependent object set, or an orphan target
            MissingSubTargetError: If an imported sub-target is unknown
        """
        self.topological_order()
        object_set = self.object_set
        if object_set.dependencies or object_set.imported:
            raise GraphError(f"Object set {object_set.name} must not depend on other targets")
        for target in self._targets.values():
            for sub_target in target.imported:
                if sub_target not in self.imported:
                    raise MissingSubTargetError(target.name, sub_target)
            if target is object_set:
                continue
            if object_set.name not in self.transitive_dependencies(target.name):
                raise GraphError(f"Target {target.name} does not depend on {object_set.name}")

    def compile_jobs(self) -> list[tuple[Target, Path]]:
        """Every (target, source) pair that has to be compiled.

        Targets built from another target's objects contribute no jobs, which
        is what keeps the library sources compiled exactly once.
        """
        jobs = []
        for target in self.topological_order():
            if target.objects_from is not None:
                continue
            jobs.extend((target, source) for source in target.sources)
        return jobs

    def compile_flags(self, name: str) -> list[str]:
        """Full compiler flag list for the sources of `name`."""
        target = self[name]
        deps = [self[d] for d in self.transitive_dependencies(name)]

        flags: list[str] = []
        if target.position_independent:
            flags.append("-fPIC")
        flags.extend(target.private_compile_options)
        flags.extend(target.public_compile_options)
        for dep in deps:
            flags.extend(dep.public_compile_options)

        for definition in list(target.public_definitions) + [d for dep in deps for d in dep.public_definitions]:
            flags.append(f"-D{definition}")
        for include in list(target.public_include_dirs) + [i for dep in deps for i in dep.public_include_dirs]:
            flags.append(f"-I{include}")
        for sub_target in target.imported:
            for include in self.imported[sub_target].include_dirs:
                flags.extend(["-isystem", str(include)])
        return _dedupe_pairs(flags)

    def link_flags(self, name: str) -> list[str]:
        """Linker options for `name` (own options, inherited public options, imported interfaces)."""
        target = self[name]
        flags = list(target.private_link_options) + list(target.public_link_options)
        for dep in self.transitive_dependencies(name):
            flags.extend(self[dep].public_link_options)
        for sub_target in target.imported:
            flags.extend(self.imported[sub_target].link_options)
        return _dedupe(flags)

    def link_libraries(self, name: str) -> list[Path]:
        """Archives linked into `name`: in-project static libraries, then imported archives."""
        libraries: list[Path] = []
        for dep in self.transitive_dependencies(name):
            dep_target = self[dep]
            if dep_target.kind is TargetKind.STATIC_LIBRARY and dep_target.output_path is not None:
                libraries.append(dep_target.output_path)
        for sub_target in self[name].imported:
            libraries.append(self.imported[sub_target].archive)
        return libraries

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.configuration.name,
            "targets": [t.to_dict() for t in self._targets.values()],
            "imported": [t.to_dict() for t in self.imported.values()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetGraph":
        """Rebuild a graph persisted by to_dict(), re-validating it."""
        configuration = get_profile(BuildProfile(data["profile"]))
        imported = {t["name"]: ImportedTarget.from_dict(t) for t in data.get("imported", [])}
        graph = cls(configuration, imported)
        for target_data in data.get("targets", []):
            graph.declare(Target.from_dict(target_data))
        graph.validate()
        return graph


def _dedupe_pairs(flags: list[str]) -> list[str]:
    """Dedupe flags, keeping '-isystem <dir>' pairs together."""
    result: list[str] = []
    seen: set[str] = set()
    i = 0
    while i < len(flags):
        flag = flags[i]
        if flag == "-isystem" and i + 1 < len(flags):
            key = f"{flag} {flags[i + 1]}"
            if key not in seen:
                seen.add(key)
                result.extend([flag, flags[i + 1]])
            i += 2
            continue
        if flag not in seen:
            seen.add(flag)
            result.append(flag)
        i += 1
    return result


class TargetGraphBuilder:
    """Declares the project's targets from manifests, a profile and imported sub-targets."""

    def __init__(
        self,
        project: ProjectConfig,
        configuration: BuildConfiguration,
        sources: SourceCollection,
        imported: Mapping[str, ImportedTarget],
        build_dir: Path,
    ):
        self.project = project
        self.configuration = configuration
        self.sources = sources
        self.imported = imported
        self.lib_dir = build_dir / "lib"
        self.bin_dir = build_dir / "bin"
        self.prefix = project.target_prefix

    def build(self) -> TargetGraph:
        """Declare every target and return the validated graph.

        Raises:
            MissingSubTargetError: If a framework sub-target was not bootstrapped
            GraphError: If the resulting graph is inconsistent
        """
        graph = TargetGraph(self.configuration, self.imported)
        object_set = graph.declare(self.object_set_target())
        static = graph.declare(self.static_library_target(object_set))
        graph.declare(self.shared_library_target(object_set))
        graph.declare(self.executable_target(static))
        graph.declare(self.framework_binary_target(static, TargetKind.TEST_BINARY, self.sources.test))
        graph.declare(self.framework_binary_target(static, TargetKind.BENCHMARK_BINARY, self.sources.benchmark))
        graph.validate()
        return graph

    def object_set_target(self) -> Target:
        config = self.configuration
        return Target(
            name=f"{self.prefix}_objlib",
            kind=TargetKind.OBJECT_SET,
            role=self.sources.library.role.value,
            sources=self.sources.library.compile_units,
            private_compile_options=WARNING_OPTIONS,
            public_compile_options=(f"-std=c++{self.project.cxx_standard}",) + ARCH_OPTIONS + config.compile_flags,
            public_definitions=config.definitions,
            public_include_dirs=(self.project.project_dir / "src" / "include",),
            public_link_options=config.link_flags,
            position_independent=True,
        )

    def static_library_target(self, object_set: Target) -> Target:
        return Target(
            name=f"{self.prefix}_static",
            kind=TargetKind.STATIC_LIBRARY,
            dependencies=(object_set.name,),
            objects_from=object_set.name,
            public_compile_options=VISIBILITY_OPTIONS,
            public_link_options=VISIBILITY_OPTIONS,
            output_dir=self.lib_dir,
        )

    def shared_library_target(self, object_set: Target) -> Target:
        return Target(
            name=f"{self.prefix}_shared",
            kind=TargetKind.SHARED_LIBRARY,
            dependencies=(object_set.name,),
            objects_from=object_set.name,
            private_link_options=("-shared",),
            output_dir=self.lib_dir,
        )

    def executable_target(self, static: Target) -> Target:
        return Target(
            name=self.prefix,
            kind=TargetKind.EXECUTABLE,
            role=self.sources.main.role.value,
            sources=self.sources.main.compile_units,
            dependencies=(static.name,),
            private_compile_options=WARNING_OPTIONS,
            output_dir=self.bin_dir,
        )

    def framework_binary_target(self, static: Target, kind: TargetKind, manifest: SourceManifest) -> Target:
        role = "test" if kind is TargetKind.TEST_BINARY else "benchmark"
        name = f"{self.prefix}_{role}"
        dependency = self.project.dependency_for_role(role)
        if dependency is None:
            raise MissingSubTargetError(name, f"<{role} framework>")
        return Target(
            name=name,
            kind=kind,
            role=manifest.role.value,
            sources=manifest.compile_units,
            dependencies=(static.name,),
            imported=(dependency.link,),
            # coverage at link time regardless of profile
            private_link_options=(COVERAGE_FLAG,),
            output_dir=self.bin_dir,
        )
