"""File handler module: working-folder path validation and materialization.

The target reads the content of pended Add, Edit and Rename operations
from the workspace's working folder.  These helpers put blob bytes there
(and clear the folder between deltas) without ever writing outside it.
"""

import logging
import os
import shutil
import stat
from collections.abc import Callable
from pathlib import Path

from revbridge.sync.models import (
    AddOperation,
    EditOperation,
    FileMode,
    OperationSet,
    RenameOperation,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Path Validation
# =============================================================================


def validate_working_path(root: Path, relative: str) -> Path:
    """Resolve *relative* below the working folder *root*.

    Args:
        root: Working folder.
        relative: ``/``-separated path from the bridged server path.

    Returns:
        Resolved absolute path.

    Raises:
        ValueError: If *relative* is absolute or escapes *root*.
    """
    if not relative or relative.startswith("/"):
        raise ValueError(f"Path must be relative: {relative!r}")
    base = root.resolve()
    resolved = (base / relative).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(
            f"Path is outside working folder: {resolved} not under {base}"
        )
    return resolved


# =============================================================================
# File Read/Write
# =============================================================================


def write_file(path: Path, data: bytes, mode: FileMode = FileMode.REGULAR) -> int:
    """Write *data* to *path*, creating parent directories as needed.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    current = path.stat().st_mode
    if mode == FileMode.EXECUTABLE:
        path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    else:
        path.chmod(current & ~(stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
    return len(data)


def read_working_file(root: Path, relative: str) -> bytes:
    """Read the materialized content of *relative*."""
    return validate_working_path(root, relative).read_bytes()


def clear_working_folder(root: Path) -> int:
    """Remove everything inside *root*, keeping the folder itself.

    Returns:
        Number of top-level entries removed.
    """
    root.mkdir(parents=True, exist_ok=True)
    removed = 0
    for child in root.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            os.unlink(child)
        removed += 1
    return removed


# =============================================================================
# Materialization
# =============================================================================


def materialize_operations(
    root: Path,
    op_set: OperationSet,
    read_blob: Callable[[str], bytes],
) -> int:
    """Write the content every operation of *op_set* needs.

    Adds and Edits land at their path; file Renames land at the new
    path.  Deletes and folder Renames need no content.

    Args:
        root: Working folder.
        op_set: Operations about to be pended.
        read_blob: Returns the bytes of a content id.

    Returns:
        Total number of bytes written.
    """
    written = 0
    for op in op_set.ordered():
        match op:
            case AddOperation():
                path, cid, mode = op.path, op.content_id, op.mode
            case EditOperation():
                path, cid, mode = op.path, op.content_id, op.new_mode
            case RenameOperation(content_id=str()):
                path, cid = op.new_path, op.content_id
                mode = op.mode or FileMode.REGULAR
            case _:
                continue
        written += write_file(
            validate_working_path(root, path), read_blob(cid), mode
        )
    logger.debug("Materialized %d bytes into %s", written, root)
    return written
