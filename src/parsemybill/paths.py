import os
from typing import Optional

from .logging import get_logger

log = get_logger("paths")

_ROOT_MARKERS = ("pyproject.toml", "README.md")


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def find_project_root(start_dir: Optional[str] = None) -> str:
    """Find the repository root by walking upward from start_dir.

    Looks for common markers: .git/, pyproject.toml, README.md.
    Falls back to absolute(start_dir) if nothing found.
    """
    start = os.path.abspath(start_dir or os.getcwd() or ".")
    d = start
    while True:
        if os.path.isdir(os.path.join(d, ".git")):
            return d
        for marker in _ROOT_MARKERS:
            if os.path.isfile(os.path.join(d, marker)):
                return d
        parent = os.path.dirname(d)
        if parent == d:
            log.debug(f"No project root marker found above {start}; using it as root")
            return start
        d = parent


def var_dir(root_dir: str) -> str:
    """Return the absolute var directory under the project root."""
    return os.path.join(os.path.abspath(root_dir), "var")


def safe_join(base_dir: str, relative: str) -> str:
    """Join ``relative`` onto ``base_dir`` refusing paths that escape it."""
    base = os.path.abspath(base_dir)
    candidate = os.path.abspath(os.path.join(base, relative.lstrip("/\\")))
    if candidate != base and not candidate.startswith(base + os.sep):
        raise ValueError(f"Path escapes storage root: {relative!r}")
    return candidate
