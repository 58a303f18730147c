"""Collapse directory chains that hold a single subdirectory.

``a/b/c/file`` where ``a`` and ``b`` contain nothing but one directory
becomes ``a.b.c/file``. Name collisions get a ``_N`` suffix. The root
passed in is walked but never renamed itself.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog

logger = structlog.get_logger()


def _unique_sibling(parent: Path, name: str) -> Path:
    candidate = parent / name
    counter = 1
    while candidate.exists():
        candidate = parent / f"{name}_{counter}"
        counter += 1
    return candidate


def collapse(directory: Path) -> Path:
    """Collapse directory while its only entry is one subdirectory.

    Returns:
        The directory's final path
    """
    while True:
        entries = list(directory.iterdir())
        if len(entries) != 1 or not entries[0].is_dir() or entries[0].is_symlink():
            return directory

        child = entries[0]
        target = _unique_sibling(directory.parent, f"{directory.name}.{child.name}")
        # Move the child out first so its name cannot clash with the parent
        os.replace(child, target)
        directory.rmdir()
        logger.debug("directory_collapsed", old=str(directory), new=str(target))
        directory = target


def flatten_tree(root: Path) -> list[Path]:
    """Collapse single-child chains everywhere below root.

    Args:
        root: Tree to flatten; not renamed itself

    Returns:
        Final paths of the directories that were collapsed

    Raises:
        ValueError: If root is not a directory
    """
    if not root.is_dir():
        raise ValueError(f"Not a directory: {root}")

    collapsed: list[Path] = []

    def walk(directory: Path) -> None:
        for entry in sorted(p for p in directory.iterdir() if p.is_dir() and not p.is_symlink()):
            final = collapse(entry)
            if final != entry:
                collapsed.append(final)
            walk(final)

    walk(root)
    logger.info("flatten_complete", root=str(root), collapsed=len(collapsed))
    return collapsed
