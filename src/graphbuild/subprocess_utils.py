"""Subprocess utilities for running external build tools.

Every external program graphbuild starts (cmake, the C++ compiler, ar,
clang-format, cpplint, clang-tidy, test binaries) goes through these wrappers
so that platform flags, stdin handling and command echoing stay consistent.
"""

import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, Union

CommandArg = Union[str, Path]


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def format_command(cmd: Sequence[CommandArg]) -> str:
    """Render a command as a copy-pasteable shell string for logs."""
    return " ".join(shlex.quote(str(part)) for part in cmd)


def _apply_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    # Child tools must never wait on the terminal
    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return kwargs


def safe_run(cmd: Sequence[CommandArg], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Path arguments are converted to strings. stdin is redirected to DEVNULL
    unless given explicitly, and CREATE_NO_WINDOW is OR'd into creationflags
    on Windows.

    Args:
        cmd: Command and arguments
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run
    """
    return subprocess.run([str(part) for part in cmd], **_apply_defaults(kwargs))


def run_step(
    cmd: Sequence[CommandArg],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    capture: bool = False,
    text: bool = True,
) -> subprocess.CompletedProcess:
    """Run a blocking tool invocation and return its result without raising.

    A timeout (if given) is reported as returncode -1 with the timeout
    message in stderr, so callers only have to check the exit status.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Optional timeout in seconds (None waits forever)
        capture: Capture stdout/stderr instead of inheriting them
        text: Decode captured output as text (False keeps raw bytes)

    Returns:
        CompletedProcess with the exit status
    """
    kwargs: dict[str, Any] = {"cwd": str(cwd) if cwd else None, "timeout": timeout}
    if capture:
        kwargs.update(capture_output=True, text=text)
    try:
        return safe_run(cmd, **kwargs)
    except subprocess.TimeoutExpired as e:
        message = f"timed out after {e.timeout}s"
        return subprocess.CompletedProcess(
            args=[str(part) for part in cmd],
            returncode=-1,
            stdout="" if text else b"",
            stderr=message if text else message.encode(),
        )
