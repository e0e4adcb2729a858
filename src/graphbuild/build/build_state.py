"""Persisted configuration state.

`gbuild configure` writes <build>/gbuild_state.json once every configuration
step has succeeded. Later commands (build, run, test) load it instead of
reconfiguring, and use the stored manifest fingerprints and descriptor hash
to decide whether the configuration went stale.

A failed configure never writes the file, so a build directory either holds
a complete graph or none.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .. import __version__
from .source_scanner import SourceCollection, find_stale_roles

logger = logging.getLogger(__name__)

STATE_FILE = "gbuild_state.json"


def hash_file(path: Path) -> str:
    """sha256 of a file's contents ("" if it does not exist)."""
    if not path.is_file():
        return ""
    return hashlib.sha256(path.read_bytes()).hexdigest()


@dataclass
class BuildState:
    """Everything `gbuild configure` resolved.

    Attributes:
        project_dir: Project root
        profile: Active profile name
        compiler: C++ compiler used for every compile and link
        archiver: Static archiver
        descriptor_hash: sha256 of gbuild.ini at configure time
        fingerprints: Manifest fingerprints by role
        graph: Serialized TargetGraph
        tasks: Serialized verification tasks by name
        tests: Names of programs run by `gbuild test`
        version: graphbuild version that wrote the state
    """

    project_dir: str
    profile: str
    compiler: str
    archiver: str
    descriptor_hash: str
    fingerprints: dict[str, str] = field(default_factory=dict)
    graph: dict[str, Any] = field(default_factory=dict)
    tasks: dict[str, Any] = field(default_factory=dict)
    tests: list[str] = field(default_factory=list)
    version: str = __version__

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "project_dir": self.project_dir,
            "profile": self.profile,
            "compiler": self.compiler,
            "archiver": self.archiver,
            "descriptor_hash": self.descriptor_hash,
            "fingerprints": dict(self.fingerprints),
            "graph": self.graph,
            "tasks": self.tasks,
            "tests": list(self.tests),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildState":
        return cls(
            project_dir=data["project_dir"],
            profile=data["profile"],
            compiler=data["compiler"],
            archiver=data["archiver"],
            descriptor_hash=data.get("descriptor_hash", ""),
            fingerprints=data.get("fingerprints", {}),
            graph=data.get("graph", {}),
            tasks=data.get("tasks", {}),
            tests=data.get("tests", []),
            version=data.get("version", ""),
        )

    def save(self, path: Path) -> None:
        """Write atomically (temp file + rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp = path.with_suffix(".tmp")
        temp.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        temp.replace(path)

    @classmethod
    def load(cls, path: Path) -> Optional["BuildState"]:
        """Load a saved state; None if missing or unreadable."""
        if not path.is_file():
            return None
        try:
            return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, OSError) as e:
            logger.warning(f"Ignoring unreadable build state {path}: {e}")
            return None

    def stale_reasons(self, descriptor: Path, sources: SourceCollection) -> list[str]:
        """Why this state no longer matches the project (empty if current).

        Args:
            descriptor: Path to the project's gbuild.ini
            sources: Fresh discovery pass
        """
        reasons = []
        if self.version != __version__:
            reasons.append(f"written by graphbuild {self.version or 'unknown'}, running {__version__}")
        if hash_file(descriptor) != self.descriptor_hash:
            reasons.append(f"{descriptor.name} changed")
        for role in find_stale_roles(self.fingerprints, sources):
            reasons.append(f"{role} sources added or removed")
        return reasons
