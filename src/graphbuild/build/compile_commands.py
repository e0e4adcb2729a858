"""Compile command generation and the compile_commands.json database.

The same command lines are used by the build executor and written to
<build>/compile_commands.json for clang-tidy and editors.
"""

import json
from pathlib import Path
from typing import Any

from .target_graph import TargetGraph
from .targets import Target

DATABASE_NAME = "compile_commands.json"


def compile_command(compiler: str, graph: TargetGraph, target: Target, source: Path, obj: Path) -> list[str]:
    """Compiler invocation producing obj from source for target."""
    return [compiler] + graph.compile_flags(target.name) + ["-c", str(source), "-o", str(obj)]


def build_database(compiler: str, graph: TargetGraph, build_dir: Path, project_dir: Path) -> list[dict[str, Any]]:
    """One entry per compiled translation unit."""
    entries = []
    for target, source in graph.compile_jobs():
        obj = target.object_path(build_dir, source, project_dir)
        entries.append(
            {
                "directory": str(build_dir),
                "arguments": compile_command(compiler, graph, target, source, obj),
                "file": str(source),
                "output": str(obj),
            }
        )
    return entries


def write_database(compiler: str, graph: TargetGraph, build_dir: Path, project_dir: Path) -> Path:
    """Write compile_commands.json atomically and return its path."""
    path = build_dir / DATABASE_NAME
    temp = path.with_suffix(".tmp")
    temp.write_text(json.dumps(build_database(compiler, graph, build_dir, project_dir), indent=2), encoding="utf-8")
    temp.replace(path)
    return path
