"""Tool Locator.

Finds the optional verification tools (clang-format, clang-tidy, cpplint).

Search order for each tool:
    1. override directories (GBUILD_TOOLS_PATH, [tools] search_paths)
    2. tool-specific hints (build_support/ for cpplint.py)
    3. default hints: /usr/local/bin, /usr/bin, /usr/local/opt/llvm/bin
    4. PATH

Within each directory, accepted names are tried in priority order, so a
version-qualified binary (clang-format-11) wins over an unqualified one in
the same directory. A tool that is not found never fails configuration; it
is recorded as missing.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ..config import ProjectConfig

logger = logging.getLogger(__name__)

CLANG_FORMAT = "clang-format"
CLANG_TIDY = "clang-tidy"
CPPLINT = "cpplint"

DEFAULT_SEARCH_PATHS: tuple[Path, ...] = (
    Path("/usr/local/bin"),
    Path("/usr/bin"),
    Path("/usr/local/opt/llvm/bin"),
)


@dataclass(frozen=True)
class ToolRecord:
    """Result of looking up one tool.

    Attributes:
        name: Tool name (clang-format, clang-tidy, cpplint)
        path: Resolved absolute path, or None when not found
        search_paths: Directories searched, in order
        names: Accepted binary names, in priority order
    """

    name: str
    path: Optional[Path]
    search_paths: tuple[Path, ...] = ()
    names: tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return self.path is not None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path) if self.path else None,
            "search_paths": [str(p) for p in self.search_paths],
            "names": list(self.names),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ToolRecord":
        return cls(
            name=data["name"],
            path=Path(data["path"]) if data.get("path") else None,
            search_paths=tuple(Path(p) for p in data.get("search_paths", [])),
            names=tuple(data.get("names", [])),
        )


def versioned_names(base: str, versions: Iterable[str]) -> tuple[str, ...]:
    """clang-format + ("11", "12") -> ("clang-format-11", "clang-format-12", "clang-format")"""
    return tuple(f"{base}-{v}" for v in versions if v) + (base,)


def _is_executable(path: Path) -> bool:
    if not path.is_file():
        return False
    if path.suffix == ".py":
        # Run through the interpreter, so the exec bit is not required
        return True
    return sys.platform == "win32" or os.access(path, os.X_OK)


class ToolLocator:
    """Searches prioritized directories for tool binaries."""

    def __init__(self, override_paths: Sequence[Path] = (), default_paths: Sequence[Path] = DEFAULT_SEARCH_PATHS, use_path_env: bool = True):
        """Initialize the locator.

        Args:
            override_paths: Directories searched before the defaults
            default_paths: Well-known install locations
            use_path_env: Also search the PATH environment variable last
        """
        self.override_paths = tuple(override_paths)
        self.default_paths = tuple(default_paths)
        self.use_path_env = use_path_env

    def search_paths(self, hints: Sequence[Path] = ()) -> tuple[Path, ...]:
        """Ordered, de-duplicated directory list for one lookup."""
        paths: list[Path] = []
        candidates = list(self.override_paths) + list(hints) + list(self.default_paths)
        if self.use_path_env:
            candidates.extend(Path(p) for p in os.environ.get("PATH", "").split(os.pathsep) if p)
        for path in candidates:
            if path not in paths:
                paths.append(path)
        return tuple(paths)

    def find(self, tool: str, names: Sequence[str], hints: Sequence[Path] = ()) -> ToolRecord:
        """Find the first matching binary.

        Args:
            tool: Tool name for the record
            names: Accepted binary names, highest priority first
            hints: Tool-specific directories searched after the overrides

        Returns:
            ToolRecord whose path is None if nothing matched
        """
        search_paths = self.search_paths(hints)
        # each name is tried in every directory before the next name
        for name in names:
            for directory in search_paths:
                for ext in ([".exe", ""] if sys.platform == "win32" else [""]):
                    candidate = directory / f"{name}{ext}"
                    if _is_executable(candidate):
                        resolved = candidate.absolute()
                        logger.debug(f"Found {tool} at {resolved}")
                        return ToolRecord(tool, resolved, search_paths, tuple(names))
        logger.debug(f"{tool} not found (names: {', '.join(names)})")
        return ToolRecord(tool, None, search_paths, tuple(names))

    def locate_all(self, project: ProjectConfig) -> dict[str, ToolRecord]:
        """Look up clang-format, clang-tidy and cpplint for a project.

        Returns:
            Mapping tool name -> ToolRecord (found or not)
        """
        versions = project.clang_versions
        return {
            CLANG_FORMAT: self.find(CLANG_FORMAT, versioned_names(CLANG_FORMAT, versions)),
            CLANG_TIDY: self.find(CLANG_TIDY, versioned_names(CLANG_TIDY, versions)),
            CPPLINT: self.find(CPPLINT, ("cpplint", "cpplint.py"), hints=(project.build_support_dir,)),
        }

    @classmethod
    def for_project(cls, project: ProjectConfig) -> "ToolLocator":
        return cls(override_paths=project.tool_search_paths)

