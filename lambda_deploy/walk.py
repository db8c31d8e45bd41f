"""
Directory walking shared by the hasher and the archive builder.

Yields files under a bundle root in a stable order so that both the content
hash and the archive layout are independent of filesystem traversal order.
"""

import logging
import os
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

# Dependency caches never contribute to the bundle hash
DEPENDENCY_CACHE_DIRS = frozenset({"node_modules"})

BundleFile = Tuple[str, Path]


def _raise(error: OSError) -> None:
    raise error


def _is_ignored(rel_path: str, patterns: Sequence[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    return any(
        fnmatchcase(rel_path, pattern) or fnmatchcase(name, pattern)
        for pattern in patterns
    )


def _dir_key(path: str) -> Tuple[int, int]:
    stat = os.stat(path)
    return stat.st_dev, stat.st_ino


def iter_bundle_files(
    root: Path,
    *,
    ignore: Sequence[str] = (),
    follow_symlinks: bool = True,
    exclude_dirs: Optional[Iterable[str]] = None,
) -> List[BundleFile]:
    """
    Collect (relative posix path, absolute path) pairs under root.

    - Dotfiles are included.
    - Directories named in exclude_dirs are pruned.
    - Patterns are fnmatch globs tested against the relative path and name.
    - With follow_symlinks, linked files and directories are walked as if
      they were real; a link back to one of its own ancestors is skipped.
      Without it, symlinks are left out entirely.

    Raises:
        OSError: If a directory cannot be listed or a path cannot be stat'd.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Bundle directory {root} does not exist")

    excluded = set(exclude_dirs or ())
    files: List[BundleFile] = []
    ancestors = {str(root): {_dir_key(str(root))}}

    for dirpath, dirnames, filenames in os.walk(
        root, followlinks=follow_symlinks, onerror=_raise
    ):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else Path(rel_dir).as_posix() + "/"
        seen: Set[Tuple[int, int]] = ancestors.pop(dirpath, set())

        kept = []
        for dirname in sorted(dirnames):
            full = os.path.join(dirpath, dirname)
            if dirname in excluded or _is_ignored(rel_dir + dirname, ignore):
                continue
            if os.path.islink(full):
                if not follow_symlinks:
                    continue
                key = _dir_key(full)
                if key in seen:
                    logger.debug("Skipping symlink cycle at %s", full)
                    continue
                ancestors[full] = seen | {key}
            else:
                ancestors[full] = seen | {_dir_key(full)}
            kept.append(dirname)
        dirnames[:] = kept

        for filename in filenames:
            full = os.path.join(dirpath, filename)
            rel_path = rel_dir + filename
            if _is_ignored(rel_path, ignore):
                continue
            if os.path.islink(full) and not follow_symlinks:
                continue
            files.append((rel_path, Path(full)))

    files.sort(key=lambda item: item[0])
    return files
