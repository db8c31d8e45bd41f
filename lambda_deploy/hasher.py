"""
Deterministic content hashing for bundle directories.

The hash is a pure function of the (relative path, byte content) pairs under
the bundle root. Entries are sorted by relative path before hashing so the
result does not depend on the order the filesystem returns them in.
"""

import hashlib
import logging
import os
from typing import Sequence

from lambda_deploy.errors import BundleIOError
from lambda_deploy.types import BundleDescriptor, ContentHash
from lambda_deploy.walk import DEPENDENCY_CACHE_DIRS, iter_bundle_files

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def hash_bundle(
    descriptor: BundleDescriptor,
    *,
    extra_ignore: Sequence[str] = (),
) -> ContentHash:
    """
    Compute the SHA256 content hash of a bundle.

    Each file contributes its relative path, its size and its bytes, framed
    so that moving bytes between a path and the content cannot produce the
    same digest.

    Args:
        descriptor: Bundle root, ignore globs and symlink handling
        extra_ignore: Additional ignore globs (e.g. from config)

    Returns:
        Hex digest

    Raises:
        BundleIOError: If the tree cannot be walked or a file cannot be read.
            A half-written bundle must not produce a hash, so this is never
            retried.
    """
    root = descriptor.root_path
    hash_obj = hashlib.sha256()

    try:
        files = iter_bundle_files(
            root,
            ignore=tuple(descriptor.ignore) + tuple(extra_ignore),
            follow_symlinks=descriptor.follow_symlinks,
            exclude_dirs=DEPENDENCY_CACHE_DIRS,
        )
        for rel_path, file_path in files:
            with open(file_path, "rb") as handle:
                size = os.fstat(handle.fileno()).st_size
                hash_obj.update(rel_path.encode("utf-8"))
                hash_obj.update(b"\0")
                hash_obj.update(str(size).encode("ascii"))
                hash_obj.update(b"\0")
                for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                    hash_obj.update(chunk)
    except OSError as e:
        raise BundleIOError(
            f"Failed to hash bundle {root}: {e}", resource_name=str(root)
        ) from e

    digest = hash_obj.hexdigest()
    logger.info(
        "Hashed bundle %s (%d files): %s", root, len(files), digest[:12]
    )
    return digest
