"""
Deterministic zip archives of bundle directories.

Package managers such as pnpm leave symlinks in node_modules. Lambda does not
understand links inside a deployment package, so every link is resolved and
the target's content is stored under the link's path. Entries are written in
sorted order with fixed timestamps and normalized permissions, which makes the
archive byte-identical for byte-identical trees.
"""

import logging
import os
import shutil
import stat
import zipfile
from pathlib import Path

from lambda_deploy.errors import BundleIOError
from lambda_deploy.types import Archive
from lambda_deploy.walk import iter_bundle_files

logger = logging.getLogger(__name__)

# Earliest timestamp the zip format can represent
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_CHUNK_SIZE = 1024 * 1024
_UNIX_SYSTEM = 3


def _zip_info(rel_path: str, mode: int) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(rel_path, date_time=_FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = _UNIX_SYSTEM
    permissions = 0o755 if mode & 0o111 else 0o644
    info.external_attr = (stat.S_IFREG | permissions) << 16
    return info


def build_archive(bundle_path: Path, dest: Path) -> Archive:
    """
    Zip everything under bundle_path into dest.

    Dotfiles and dependency directories are included. Each file is streamed
    from disk into its entry. The archive is written to a temporary sibling
    and only renamed into place once the zip has been fully closed.

    Args:
        bundle_path: Bundle root directory
        dest: Destination zip path (parent directories are created)

    Returns:
        Archive with the final path, byte size and entry count

    Raises:
        BundleIOError: If a file vanishes or cannot be read, or the archive
            cannot be written. No partial archive is left behind.
    """
    bundle_path = Path(bundle_path)
    dest = Path(dest)
    partial = dest.with_name(dest.name + ".partial")
    entry_count = 0

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        files = iter_bundle_files(bundle_path, follow_symlinks=True)
        with zipfile.ZipFile(partial, "w", zipfile.ZIP_DEFLATED) as zf:
            for rel_path, file_path in files:
                with open(file_path, "rb") as src:
                    file_stat = os.fstat(src.fileno())
                    info = _zip_info(rel_path, file_stat.st_mode)
                    with zf.open(
                        info,
                        "w",
                        force_zip64=file_stat.st_size >= zipfile.ZIP64_LIMIT,
                    ) as dst:
                        shutil.copyfileobj(src, dst, _CHUNK_SIZE)
                entry_count += 1
        os.replace(partial, dest)
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise BundleIOError(
            f"Failed to archive bundle {bundle_path}: {e}",
            resource_name=str(bundle_path),
        ) from e

    size = dest.stat().st_size
    logger.info(
        "Archived %s -> %s (%d entries, %d bytes)",
        bundle_path,
        dest,
        entry_count,
        size,
    )
    return Archive(path=dest, size=size, entry_count=entry_count)
