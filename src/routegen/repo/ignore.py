from __future__ import annotations

from pathlib import Path

DEFAULT_IGNORES = {
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
    "dist",
    "build",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".tox",
    ".eggs",
}


def should_ignore_dir(dir_path: Path, extra: frozenset[str] = frozenset()) -> bool:
    name = dir_path.name
    return name in DEFAULT_IGNORES or name in extra or name.endswith(".egg-info")
