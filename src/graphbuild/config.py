"""Project descriptor (gbuild.ini) parsing.

The descriptor is an INI file at the project root. It is the "top-level
build descriptor": a build directory containing one is the project root
itself, which configure refuses to use.

Example:
    [project]
    name = BiscuitDB
    version = 1.0.0.0
    entry_point = src/main/main.cpp

    [dependency:googletest]
    url = https://github.com/google/googletest/archive/refs/tags/release-1.10.0.tar.gz
    version = release-1.10.0
    role = test
    targets = gtest gtest_main
    link = gtest
    cmake_args = gtest_force_shared_crt=ON

    [tools]
    search_paths = /opt/llvm/bin
    clang_versions = 11

    [coverage]
    command = bash -c "bash <(curl -s https://codecov.io/bash)"
"""

import configparser
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ProjectConfigError

logger = logging.getLogger(__name__)

DESCRIPTOR_NAME = "gbuild.ini"

# Extra tool directories, os.pathsep separated
TOOLS_PATH_ENV = "GBUILD_TOOLS_PATH"

DEPENDENCY_SECTION_PREFIX = "dependency:"


@dataclass(frozen=True)
class DependencySpec:
    """One [dependency:<name>] section.

    Attributes:
        name: Dependency name (e.g. "googletest"); names the staging directories
        url: Source archive URL (tar.gz or zip)
        version: Version or git ref the archive corresponds to
        role: Which in-project target links it ("test" or "benchmark")
        targets: Sub-target names the dependency exposes (e.g. gtest, gtest_main)
        link: Sub-target linked by the role's target
        sha256: Optional archive checksum
        cmake_args: Cache definitions passed to the nested configure step
        build_config: Configuration passed to the nested build step
        timeout: Optional per-step timeout in seconds (None waits forever)
    """

    name: str
    url: str
    version: str
    role: str
    targets: tuple[str, ...]
    link: str
    sha256: str = ""
    cmake_args: tuple[str, ...] = ()
    build_config: str = "Release"
    timeout: Optional[float] = None


DEFAULT_DEPENDENCIES: tuple[DependencySpec, ...] = (
    DependencySpec(
        name="googletest",
        url="https://github.com/google/googletest/archive/refs/tags/release-1.10.0.tar.gz",
        version="release-1.10.0",
        role="test",
        targets=("gtest", "gtest_main", "gmock", "gmock_main"),
        link="gtest",
        # don't override our compiler/linker options when building gtest
        cmake_args=("gtest_force_shared_crt=ON",),
        build_config="Debug",
    ),
    DependencySpec(
        name="benchmark",
        url="https://github.com/google/benchmark/archive/refs/tags/v1.5.2.tar.gz",
        version="v1.5.2",
        role="benchmark",
        targets=("benchmark", "benchmark_main"),
        link="benchmark",
        cmake_args=("BENCHMARK_ENABLE_TESTING=OFF", "benchmark_force_shared_crt=ON"),
        build_config="Release",
    ),
)


@dataclass(frozen=True)
class ProjectConfig:
    """Parsed project descriptor."""

    project_dir: Path
    name: str
    version: str
    description: str
    entry_point: Path
    compiler: str
    archiver: str
    cxx_standard: str
    dependencies: tuple[DependencySpec, ...]
    tool_search_paths: tuple[Path, ...]
    clang_versions: tuple[str, ...]
    coverage_command: tuple[str, ...] = field(default=())

    @property
    def descriptor_path(self) -> Path:
        return self.project_dir / DESCRIPTOR_NAME

    @property
    def target_prefix(self) -> str:
        """Lower-case project name used to name targets (biscuitdb_static, ...)."""
        return self.name.lower().replace(" ", "_").replace("-", "_")

    @property
    def build_support_dir(self) -> Path:
        return self.project_dir / "build_support"

    def dependency_for_role(self, role: str) -> Optional[DependencySpec]:
        for dep in self.dependencies:
            if dep.role == role:
                return dep
        return None

    @classmethod
    def load(cls, project_dir: Path) -> "ProjectConfig":
        """Parse <project_dir>/gbuild.ini.

        Raises:
            ProjectConfigError: If the descriptor is missing or malformed
        """
        project_dir = project_dir.resolve()
        ini_path = project_dir / DESCRIPTOR_NAME
        if not ini_path.exists():
            raise ProjectConfigError(f"{DESCRIPTOR_NAME} not found in {project_dir}")

        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to parse {ini_path}: {e}") from e

        if not parser.has_section("project"):
            raise ProjectConfigError(f"{ini_path} has no [project] section")
        project = parser["project"]

        name = project.get("name", "").strip()
        if not name:
            raise ProjectConfigError(f"{ini_path}: [project] name is required")

        dependencies = tuple(
            _parse_dependency(section[len(DEPENDENCY_SECTION_PREFIX):], parser[section], ini_path)
            for section in parser.sections()
            if section.startswith(DEPENDENCY_SECTION_PREFIX)
        )
        if not dependencies:
            logger.debug("No [dependency:*] sections, using default test/benchmark frameworks")
            dependencies = DEFAULT_DEPENDENCIES

        tools = parser["tools"] if parser.has_section("tools") else {}
        search_paths = [Path(p) for p in _split(tools.get("search_paths", ""))]
        env_paths = os.environ.get(TOOLS_PATH_ENV, "")
        search_paths = [Path(p) for p in env_paths.split(os.pathsep) if p] + search_paths

        coverage_command: tuple[str, ...] = ()
        if parser.has_section("coverage"):
            coverage_command = tuple(shlex.split(parser["coverage"].get("command", "")))

        return cls(
            project_dir=project_dir,
            name=name,
            version=project.get("version", "0.0.0"),
            description=project.get("description", ""),
            entry_point=Path(project.get("entry_point", "src/main/main.cpp")),
            compiler=os.environ.get("CXX") or project.get("compiler", "c++"),
            archiver=os.environ.get("AR") or project.get("archiver", "ar"),
            cxx_standard=project.get("cxx_standard", "17"),
            dependencies=dependencies,
            tool_search_paths=tuple(search_paths),
            clang_versions=tuple(_split(tools.get("clang_versions", "11"))),
            coverage_command=coverage_command,
        )


def _split(value: str) -> list[str]:
    return [part for part in value.replace(",", " ").split() if part]


def _parse_dependency(name: str, section: configparser.SectionProxy, ini_path: Path) -> DependencySpec:
    url = section.get("url", "").strip()
    if not url:
        raise ProjectConfigError(f"{ini_path}: [dependency:{name}] url is required")
    role = section.get("role", "").strip()
    if role not in ("test", "benchmark"):
        raise ProjectConfigError(f"{ini_path}: [dependency:{name}] role must be 'test' or 'benchmark', got '{role}'")
    targets = tuple(_split(section.get("targets", name)))
    link = section.get("link", targets[0] if targets else name).strip()
    timeout_raw = section.get("timeout", "").strip()
    try:
        timeout = float(timeout_raw) if timeout_raw else None
    except ValueError as e:
        raise ProjectConfigError(f"{ini_path}: [dependency:{name}] timeout must be a number") from e

    return DependencySpec(
        name=name,
        url=url,
        version=section.get("version", "").strip() or "unversioned",
        role=role,
        targets=targets,
        link=link,
        sha256=section.get("sha256", "").strip(),
        cmake_args=tuple(_split(section.get("cmake_args", ""))),
        build_config=section.get("build_config", "Release").strip(),
        timeout=timeout,
    )
