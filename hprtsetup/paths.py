"""Locating files that ship alongside the program."""

from __future__ import annotations

import sys
from pathlib import Path


def _executable() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable)
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0])
    return Path(sys.executable)


def executable_dir() -> Path:
    """Return the directory of the running program, symbolic links resolved.

    Raises OSError when the program's file cannot be found.
    """
    return _executable().resolve(strict=True).parent


def resource_path(filename: str | Path) -> Path:
    """Find a resource next to the program, falling back to the working directory.

    When the file exists in neither place, the path next to the program is
    returned, or the working-directory path if the program's directory is unknown.
    """
    try:
        exec_dir: Path | None = executable_dir()
    except OSError:
        exec_dir = None

    if exec_dir is not None:
        beside_program = exec_dir / filename
        if beside_program.exists():
            return beside_program

    in_workdir = Path.cwd() / filename
    if in_workdir.exists():
        return in_workdir

    if exec_dir is not None:
        return exec_dir / filename
    return in_workdir