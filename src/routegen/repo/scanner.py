from __future__ import annotations

import os
from pathlib import Path

from routegen.repo.ignore import should_ignore_dir


def scan_python_files(
    repo_path: Path,
    max_files: int | None = None,
    exclude: frozenset[str] = frozenset(),
) -> list[str]:
    """
    Return absolute paths (as strings) of .py files under repo_path.

    Directory and file order is sorted so repeated runs enumerate classes in
    the same order.
    """
    out: list[str] = []
    for root, dirs, files in _walk(repo_path):
        root_p = Path(root)

        # prune ignored dirs, in place so os.walk skips them
        dirs[:] = sorted(d for d in dirs if not should_ignore_dir(root_p / d, exclude))

        for f in sorted(files):
            if f.endswith(".py"):
                out.append(str((root_p / f).resolve()))
                if max_files is not None and len(out) >= max_files:
                    return out
    return out


def _walk(repo_path: Path):
    # Separate helper to make unit testing easier (can be mocked)
    return os.walk(repo_path)
