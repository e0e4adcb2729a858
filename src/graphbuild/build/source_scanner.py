"""Source set discovery.

Scans the project's fixed directory roles and produces one SourceManifest per
logical source root. Discovery is never cached between runs: every configure
(and every build/run, to detect staleness) rescans the tree, so a file added
or removed under a watched root is reflected in the next manifest without
anyone editing a file list.

Directory roles (relative to the project root):
    src/                library sources (.cpp), headers under src/include (.h)
    src/main/main.cpp   executable entry point, excluded from the library set
    third_party/        vendored sources and headers, compiled into the library
    test/               unit test sources
    benchmark/          benchmark sources
    build_support/      helper scripts (.py, .sh, .pl)
"""

import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# Suffixes that produce an object file; everything else in a manifest is a header
COMPILE_SUFFIXES = (".cpp", ".cc", ".cxx")


class SourceRole(Enum):
    """Logical role of a manifest."""

    LIBRARY = "library"
    MAIN = "main"
    TEST = "test"
    BENCHMARK = "benchmark"
    LINT = "lint"
    BUILD_SUPPORT = "build_support"


@dataclass(frozen=True)
class SourcePattern:
    """A recursive glob: every file under root whose suffix is listed."""

    root: str
    suffixes: tuple[str, ...]


ROLE_PATTERNS: dict[SourceRole, tuple[SourcePattern, ...]] = {
    SourceRole.LIBRARY: (
        SourcePattern("src", (".cpp",)),
        SourcePattern("src/include", (".h",)),
        SourcePattern("third_party", (".cpp", ".h")),
    ),
    SourceRole.TEST: (SourcePattern("test", (".cpp",)),),
    SourceRole.BENCHMARK: (SourcePattern("benchmark", (".cpp",)),),
    SourceRole.LINT: (
        SourcePattern("src", (".h", ".cpp")),
        SourcePattern("test", (".h", ".cpp")),
        SourcePattern("benchmark", (".h", ".cpp")),
    ),
    SourceRole.BUILD_SUPPORT: (SourcePattern("build_support", (".pl", ".py", ".sh")),),
}

# Directories scanned by the format tasks
FORMAT_DIRS = ("benchmark", "src", "test")


@dataclass(frozen=True)
class SourceManifest:
    """Files discovered for one role.

    Attributes:
        role: Logical role of the manifest
        files: Absolute file paths, sorted
    """

    role: SourceRole
    files: tuple[Path, ...] = ()

    @property
    def compile_units(self) -> tuple[Path, ...]:
        """Files that are compiled (headers excluded)."""
        return tuple(f for f in self.files if f.suffix in COMPILE_SUFFIXES)

    @property
    def fingerprint(self) -> str:
        """sha256 over the sorted path list; changes whenever a file is added or removed."""
        digest = hashlib.sha256()
        digest.update(self.role.value.encode("utf-8"))
        for path in self.files:
            digest.update(b"\0")
            digest.update(str(path).encode("utf-8"))
        return digest.hexdigest()

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self.files


@dataclass
class SourceCollection:
    """All manifests produced by one discovery pass."""

    manifests: dict[SourceRole, SourceManifest] = field(default_factory=dict)

    def get(self, role: SourceRole) -> SourceManifest:
        return self.manifests.get(role, SourceManifest(role))

    @property
    def library(self) -> SourceManifest:
        return self.get(SourceRole.LIBRARY)

    @property
    def main(self) -> SourceManifest:
        return self.get(SourceRole.MAIN)

    @property
    def test(self) -> SourceManifest:
        return self.get(SourceRole.TEST)

    @property
    def benchmark(self) -> SourceManifest:
        return self.get(SourceRole.BENCHMARK)

    @property
    def lint(self) -> SourceManifest:
        return self.get(SourceRole.LINT)

    @property
    def build_support(self) -> SourceManifest:
        return self.get(SourceRole.BUILD_SUPPORT)

    def fingerprints(self) -> dict[str, str]:
        """Role name -> manifest fingerprint, used to detect stale configurations."""
        return {role.value: manifest.fingerprint for role, manifest in self.manifests.items()}


class SourceScanner:
    """Discovers source manifests under a project root."""

    def __init__(self, project_dir: Path, entry_point: Path = Path("src/main/main.cpp")):
        """Initialize the scanner.

        Args:
            project_dir: Project root directory
            entry_point: Executable entry point, relative to project_dir
        """
        self.project_dir = project_dir.resolve()
        self.entry_point = (self.project_dir / entry_point).resolve()

    def scan(self) -> SourceCollection:
        """Run a full discovery pass.

        Returns:
            SourceCollection with one manifest per SourceRole
        """
        collection = SourceCollection()
        for role, patterns in ROLE_PATTERNS.items():
            files = self.glob(patterns)
            if role is SourceRole.LIBRARY:
                files = [f for f in files if f != self.entry_point]
            collection.manifests[role] = SourceManifest(role, tuple(files))

        main_files = (self.entry_point,) if self.entry_point.is_file() else ()
        collection.manifests[SourceRole.MAIN] = SourceManifest(SourceRole.MAIN, main_files)

        for role, manifest in collection.manifests.items():
            logger.debug(f"Discovered {len(manifest)} {role.value} files")
        return collection

    def glob(self, patterns: Iterable[SourcePattern]) -> list[Path]:
        """Recursively collect files matching any pattern, deduplicated and sorted."""
        found: set[Path] = set()
        for pattern in patterns:
            root = self.project_dir / pattern.root
            if not root.is_dir():
                continue
            for path in root.rglob("*"):
                if path.suffix in pattern.suffixes and path.is_file():
                    found.add(path.resolve())
        return sorted(found)


def find_stale_roles(previous: dict[str, str], current: SourceCollection) -> list[str]:
    """Compare stored fingerprints with a fresh discovery pass.

    Args:
        previous: Fingerprints stored at the last configure
        current: Fresh discovery result

    Returns:
        Names of roles whose file set changed (empty if up to date)
    """
    current_prints = current.fingerprints()
    roles = sorted(set(previous) | set(current_prints))
    return [role for role in roles if previous.get(role) != current_prints.get(role)]


def load_exclusions(exclusion_file: Optional[Path]) -> tuple[Path, ...]:
    """Read a format exclusion list (one path per line, '#' comments).

    Relative entries are resolved against the file's project (its parent's parent,
    i.e. build_support/..).
    """
    if exclusion_file is None or not exclusion_file.is_file():
        return ()
    base = exclusion_file.parent.parent
    entries: list[Path] = []
    for line in exclusion_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        path = Path(line)
        entries.append((path if path.is_absolute() else base / path).resolve())
    return tuple(entries)
