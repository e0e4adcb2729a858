"""External Dependency Bootstrapper.

Fetches and builds the external test and benchmark frameworks at
configuration time, then exposes their libraries as importable sub-targets.

Staging layout (relative to the build directory), per dependency NAME:
    NAME-download/descriptor.json   nested build descriptor
    NAME-download/fetch.stamp       written after a completed fetch
    NAME-src/                       extracted sources
    NAME-build/                     nested CMake build tree

Bootstrap steps:
    1. materialize the descriptor
    2. fetch sources, unless fetch.stamp matches the descriptor
    3. configure: cmake -S NAME-src -B NAME-build [-G Ninja] -D...
       (skipped when NAME-build is configured for the same descriptor)
    4. build: cmake --build NAME-build --config CFG
       (always run; an up-to-date tree makes it a no-op)

Any non-zero step aborts configuration with DependencyBootstrapError.
"""

import hashlib
import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from ..build.targets import ImportedTarget
from ..config import DependencySpec
from ..exceptions import DependencyBootstrapError
from ..output import log_detail
from ..subprocess_utils import format_command, run_step
from .downloader import DownloadError, ExtractionError, PackageDownloader

logger = logging.getLogger(__name__)

# Set to 1 to forbid network access; a missing fetch then fails configuration
NO_NETWORK_ENV = "GBUILD_NO_NETWORK"

DESCRIPTOR_FILE = "descriptor.json"
STAMP_FILE = "fetch.stamp"
CONFIGURE_STAMP_FILE = "configure.stamp"


@dataclass(frozen=True)
class ExternalDependency:
    """A dependency placed in its staging directories.

    Attributes:
        spec: Descriptor section this dependency came from
        staging_dir: Holds the nested descriptor and stamps
        source_dir: Extracted sources
        build_dir: Nested build tree
    """

    spec: DependencySpec
    staging_dir: Path
    source_dir: Path
    build_dir: Path

    @classmethod
    def for_spec(cls, spec: DependencySpec, build_root: Path) -> "ExternalDependency":
        return cls(
            spec=spec,
            staging_dir=build_root / f"{spec.name}-download",
            source_dir=build_root / f"{spec.name}-src",
            build_dir=build_root / f"{spec.name}-build",
        )

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def descriptor_path(self) -> Path:
        return self.staging_dir / DESCRIPTOR_FILE

    @property
    def stamp_path(self) -> Path:
        return self.staging_dir / STAMP_FILE

    @property
    def configure_stamp_path(self) -> Path:
        return self.staging_dir / CONFIGURE_STAMP_FILE

    def descriptor(self, generator: Optional[str]) -> dict[str, Any]:
        return {
            "name": self.spec.name,
            "url": self.spec.url,
            "version": self.spec.version,
            "sha256": self.spec.sha256,
            "cmake_args": list(self.spec.cmake_args),
            "build_config": self.spec.build_config,
            "generator": generator,
            "source_dir": str(self.source_dir),
            "build_dir": str(self.build_dir),
        }

    def fetch_key(self) -> str:
        """Identity of the fetched sources; a change forces a re-fetch."""
        return hashlib.sha256(f"{self.spec.url}\0{self.spec.version}\0{self.spec.sha256}".encode("utf-8")).hexdigest()


class DependencyScope:
    """Sub-targets made linkable by name after a successful bootstrap."""

    def __init__(self, targets: Iterable[ImportedTarget] = ()):
        self._targets: dict[str, ImportedTarget] = {}
        for target in targets:
            self.add(target)

    def add(self, target: ImportedTarget) -> None:
        self._targets[target.name] = target

    def get(self, name: str) -> Optional[ImportedTarget]:
        return self._targets.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self) -> Iterator[ImportedTarget]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def as_mapping(self) -> dict[str, ImportedTarget]:
        return dict(self._targets)

    def provided_by(self, dependency: str) -> list[ImportedTarget]:
        return [t for t in self._targets.values() if t.dependency == dependency]


def default_generator() -> Optional[str]:
    """Prefer Ninja for nested builds when it is installed."""
    if shutil.which("ninja"):
        return "Ninja"
    return None


class DependencyBootstrapper:
    """Fetches, configures and builds external dependencies."""

    def __init__(
        self,
        build_root: Path,
        downloader: Optional[PackageDownloader] = None,
        generator: Optional[str] = None,
        cmake: Optional[str] = None,
        verbose: bool = False,
    ):
        """Initialize the bootstrapper.

        Args:
            build_root: Outer build directory the staging directories live in
            downloader: Archive downloader (a default one is created if None)
            generator: CMake generator for nested builds (None lets CMake choose)
            cmake: cmake executable (defaults to the one on PATH)
            verbose: Show nested tool output
        """
        self.build_root = build_root
        self.downloader = downloader or PackageDownloader(show_progress=verbose)
        self.generator = generator
        self.cmake = cmake or shutil.which("cmake") or "cmake"
        self.verbose = verbose

    def bootstrap_all(self, specs: Iterable[DependencySpec]) -> DependencyScope:
        """Bootstrap every dependency in order.

        Raises:
            DependencyBootstrapError: On the first failing dependency
        """
        scope = DependencyScope()
        for spec in specs:
            for target in self.bootstrap(spec):
                scope.add(target)
        return scope

    def bootstrap(self, spec: DependencySpec) -> list[ImportedTarget]:
        """Fetch, configure and build one dependency.

        Returns:
            The sub-targets whose libraries were found in the build tree

        Raises:
            DependencyBootstrapError: If any step fails
        """
        dep = ExternalDependency.for_spec(spec, self.build_root)
        descriptor = self.materialize(dep)
        self.fetch(dep)
        self.configure(dep, descriptor)
        self.build(dep)
        return self.collect(dep)

    def materialize(self, dep: ExternalDependency) -> dict[str, Any]:
        """Write the nested build descriptor; unchanged content is left untouched."""
        dep.staging_dir.mkdir(parents=True, exist_ok=True)
        descriptor = dep.descriptor(self.generator)
        content = json.dumps(descriptor, indent=2, sort_keys=True)
        if not dep.descriptor_path.exists() or dep.descriptor_path.read_text(encoding="utf-8") != content:
            dep.descriptor_path.write_text(content, encoding="utf-8")
        return descriptor

    def is_fetched(self, dep: ExternalDependency) -> bool:
        """True if a completed fetch of the same sources is already staged."""
        if not dep.stamp_path.is_file() or not dep.source_dir.is_dir():
            return False
        return dep.stamp_path.read_text(encoding="utf-8").strip() == dep.fetch_key()

    def fetch(self, dep: ExternalDependency) -> None:
        """Retrieve the dependency sources unless already staged.

        Raises:
            DependencyBootstrapError: On download/extraction failure or when offline
        """
        if self.is_fetched(dep):
            logger.debug(f"{dep.name}: sources already fetched, skipping download")
            return
        if os.environ.get(NO_NETWORK_ENV) == "1":
            raise DependencyBootstrapError(dep.name, "fetch", f"sources missing and {NO_NETWORK_ENV}=1")

        log_detail(f"Fetching {dep.name} {dep.spec.version}")
        dep.stamp_path.unlink(missing_ok=True)
        try:
            self.downloader.download_and_extract(
                url=dep.spec.url,
                cache_dir=dep.staging_dir,
                extract_dir=dep.source_dir,
                sha256=dep.spec.sha256,
            )
        except (DownloadError, ExtractionError) as e:
            raise DependencyBootstrapError(dep.name, "fetch", str(e)) from e
        dep.stamp_path.write_text(dep.fetch_key(), encoding="utf-8")

    def configure_command(self, dep: ExternalDependency) -> list[str]:
        cmd = [self.cmake, "-S", str(dep.source_dir), "-B", str(dep.build_dir)]
        if self.generator:
            cmd.extend(["-G", self.generator])
        cmd.append(f"-DCMAKE_BUILD_TYPE={dep.spec.build_config}")
        cmd.extend(f"-D{arg}" for arg in dep.spec.cmake_args)
        return cmd

    def build_command(self, dep: ExternalDependency) -> list[str]:
        return [self.cmake, "--build", str(dep.build_dir), "--config", dep.spec.build_config]

    def configure(self, dep: ExternalDependency, descriptor: dict[str, Any]) -> None:
        """Run the nested configure step (skipped when already configured identically).

        Raises:
            DependencyBootstrapError: "configuration step failed for dependency NAME"
        """
        key = hashlib.sha256(json.dumps(descriptor, sort_keys=True).encode("utf-8")).hexdigest()
        cache_file = dep.build_dir / "CMakeCache.txt"
        if (
            cache_file.is_file()
            and dep.configure_stamp_path.is_file()
            and dep.configure_stamp_path.read_text(encoding="utf-8").strip() == key
        ):
            logger.debug(f"{dep.name}: nested build already configured")
            return

        dep.configure_stamp_path.unlink(missing_ok=True)
        self._run(dep, "configuration", self.configure_command(dep))
        dep.configure_stamp_path.write_text(key, encoding="utf-8")

    def build(self, dep: ExternalDependency) -> None:
        """Run the nested build step.

        Raises:
            DependencyBootstrapError: "build step failed for dependency NAME"
        """
        self._run(dep, "build", self.build_command(dep))

    def _run(self, dep: ExternalDependency, step: str, cmd: list[str]) -> None:
        logger.debug(f"{dep.name}: {format_command(cmd)}")
        try:
            result = run_step(cmd, cwd=dep.staging_dir, timeout=dep.spec.timeout, capture=not self.verbose)
        except OSError as e:
            raise DependencyBootstrapError(dep.name, step, str(e)) from e
        if result.returncode != 0:
            detail = f"exit status {result.returncode}"
            output = (result.stderr or result.stdout or "").strip() if not self.verbose else ""
            if output:
                detail = f"{detail}\n{output}"
            raise DependencyBootstrapError(dep.name, step, detail)

    def collect(self, dep: ExternalDependency) -> list[ImportedTarget]:
        """Locate the exposed sub-target archives in the nested build tree."""
        include_dirs = self.include_dirs(dep)
        imported = []
        for name in dep.spec.targets:
            archive = self.find_archive(dep.build_dir, name)
            if archive is None:
                logger.warning(f"{dep.name}: no library for sub-target {name} under {dep.build_dir}")
                continue
            imported.append(ImportedTarget(name=name, dependency=dep.name, archive=archive, include_dirs=include_dirs))
        return imported

    @staticmethod
    def find_archive(build_dir: Path, name: str) -> Optional[Path]:
        """Find lib<name>.a (or the debug-postfixed lib<name>d.a) in a build tree."""
        if not build_dir.is_dir():
            return None
        for candidate in (f"lib{name}.a", f"lib{name}d.a", f"{name}.lib", f"{name}d.lib"):
            matches = sorted(build_dir.rglob(candidate))
            if matches:
                return matches[0].resolve()
        return None

    @staticmethod
    def include_dirs(dep: ExternalDependency) -> tuple[Path, ...]:
        """Public header directories: include/ at the source root or one level down."""
        if not dep.source_dir.is_dir():
            return ()
        candidates = [dep.source_dir / "include"] + sorted(dep.source_dir.glob("*/include"))
        return tuple(p.resolve() for p in candidates if p.is_dir())
