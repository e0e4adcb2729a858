"""Target data model.

A Target is a named, buildable unit of the graph. Options follow the usual
native-build visibility rules:

    private   only used when building the target itself
    public    used by the target and inherited by every target linking it

ImportedTarget is a prebuilt archive exposed by a bootstrapped external
dependency; in-project targets link it by name.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class TargetKind(Enum):
    """Kind of a target."""

    OBJECT_SET = "object_set"
    STATIC_LIBRARY = "static_library"
    SHARED_LIBRARY = "shared_library"
    EXECUTABLE = "executable"
    TEST_BINARY = "test_binary"
    BENCHMARK_BINARY = "benchmark_binary"

    @property
    def is_program(self) -> bool:
        return self in (TargetKind.EXECUTABLE, TargetKind.TEST_BINARY, TargetKind.BENCHMARK_BINARY)


@dataclass(frozen=True)
class Target:
    """A node of the target graph.

    Attributes:
        name: Unique target name
        kind: Target kind
        role: Role of the manifest the sources came from ("" when none)
        sources: Translation units compiled for this target
        dependencies: In-project targets this one links (by name)
        imported: Imported sub-targets this one links (by name)
        objects_from: Object set whose objects this target consumes instead of compiling
        private_compile_options: Options used only for this target's own sources
        public_compile_options: Options inherited by dependents
        public_definitions: Preprocessor definitions inherited by dependents (no -D)
        public_include_dirs: Include directories inherited by dependents
        private_link_options: Link options used only for this target
        public_link_options: Link options inherited by dependents
        output_dir: Directory the artifact is written to (None for the object set)
        position_independent: Compile with -fPIC
    """

    name: str
    kind: TargetKind
    role: str = ""
    sources: tuple[Path, ...] = ()
    dependencies: tuple[str, ...] = ()
    imported: tuple[str, ...] = ()
    objects_from: Optional[str] = None
    private_compile_options: tuple[str, ...] = ()
    public_compile_options: tuple[str, ...] = ()
    public_definitions: tuple[str, ...] = ()
    public_include_dirs: tuple[Path, ...] = ()
    private_link_options: tuple[str, ...] = ()
    public_link_options: tuple[str, ...] = ()
    output_dir: Optional[Path] = None
    position_independent: bool = False

    @property
    def output_path(self) -> Optional[Path]:
        """Final artifact path (lib/libNAME.a, lib/libNAME.so, bin/NAME)."""
        if self.output_dir is None or self.kind is TargetKind.OBJECT_SET:
            return None
        if self.kind is TargetKind.STATIC_LIBRARY:
            return self.output_dir / f"lib{self.name}.a"
        if self.kind is TargetKind.SHARED_LIBRARY:
            return self.output_dir / f"lib{self.name}.so"
        return self.output_dir / self.name

    def object_path(self, build_dir: Path, source: Path, project_dir: Path) -> Path:
        """Object file for one of this target's sources: <build>/obj/<target>/<rel>.o"""
        try:
            rel = source.relative_to(project_dir)
        except ValueError:
            rel = Path(source.name)
        return build_dir / "obj" / self.name / rel.with_suffix(rel.suffix + ".o")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, TargetKind):
                value = value.value
            elif isinstance(value, Path):
                value = str(value)
            elif isinstance(value, tuple):
                value = [str(v) for v in value]
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Target":
        """Deserialize from dictionary."""
        output_dir = data.get("output_dir")
        return cls(
            name=data["name"],
            kind=TargetKind(data["kind"]),
            role=data.get("role", ""),
            sources=tuple(Path(p) for p in data.get("sources", [])),
            dependencies=tuple(data.get("dependencies", [])),
            imported=tuple(data.get("imported", [])),
            objects_from=data.get("objects_from"),
            private_compile_options=tuple(data.get("private_compile_options", [])),
            public_compile_options=tuple(data.get("public_compile_options", [])),
            public_definitions=tuple(data.get("public_definitions", [])),
            public_include_dirs=tuple(Path(p) for p in data.get("public_include_dirs", [])),
            private_link_options=tuple(data.get("private_link_options", [])),
            public_link_options=tuple(data.get("public_link_options", [])),
            output_dir=Path(output_dir) if output_dir else None,
            position_independent=data.get("position_independent", False),
        )


@dataclass(frozen=True)
class ImportedTarget:
    """A prebuilt library exposed by an external dependency.

    Attributes:
        name: Sub-target name (e.g. "gtest")
        dependency: Name of the dependency that produced it
        archive: Path to the built static archive
        include_dirs: Header directories consumers compile against
        link_options: Interface link options (e.g. -pthread)
    """

    name: str
    dependency: str
    archive: Path
    include_dirs: tuple[Path, ...] = ()
    link_options: tuple[str, ...] = field(default=("-pthread",))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "dependency": self.dependency,
            "archive": str(self.archive),
            "include_dirs": [str(p) for p in self.include_dirs],
            "link_options": list(self.link_options),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportedTarget":
        return cls(
            name=data["name"],
            dependency=data["dependency"],
            archive=Path(data["archive"]),
            include_dirs=tuple(Path(p) for p in data.get("include_dirs", [])),
            link_options=tuple(data.get("link_options", ["-pthread"])),
        )
