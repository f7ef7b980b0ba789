"""Operation ordering and in-memory application.

``apply_operations`` replays an ``OperationSet`` against a flat
``{path: (content_id, mode)}`` map exactly as the target is expected to:
Deletes, then Edits, then Adds, then all Renames as one batch (deepest
source path first).  The engine uses it for previews; tests use it to
check that ``analyze_difference(A, B)`` applied to ``A`` yields ``B``.
"""

from __future__ import annotations

from collections.abc import Mapping

from revbridge.sync import paths
from revbridge.sync.models import (
    AddOperation,
    DeleteOperation,
    EditOperation,
    EntryKind,
    FileMode,
    Operation,
    OperationSet,
    RenameOperation,
)

FileIndex = dict[str, tuple[str, FileMode]]


def ordered_operations(op_set: OperationSet) -> list[Operation]:
    """Operations of *op_set* in submission order."""
    return op_set.ordered()


def apply_operations(
    files: Mapping[str, tuple[str, FileMode]], op_set: OperationSet
) -> FileIndex:
    """Return a copy of *files* with *op_set* applied.

    Raises:
        KeyError: If an operation refers to a path that does not exist.
    """
    result: FileIndex = dict(files)
    for op in ordered_operations(op_set):
        apply_operation(result, op)
    return result


def apply_operation(files: FileIndex, op: Operation) -> None:
    """Apply a single operation to *files* in place."""
    match op:
        case DeleteOperation(kind=EntryKind.TREE):
            doomed = [p for p in files if paths.is_under(p, op.path)]
            if not doomed:
                raise KeyError(op.path)
            for path in doomed:
                del files[path]
        case DeleteOperation():
            del files[op.path]
        case EditOperation():
            if op.path not in files:
                raise KeyError(op.path)
            files[op.path] = (op.content_id, op.new_mode)
        case AddOperation():
            files[op.path] = (op.content_id, op.mode)
        case RenameOperation(content_id=None):
            moved = [p for p in files if paths.is_under(p, op.old_path)]
            for path in moved:
                files[op.new_path + path[len(op.old_path):]] = files.pop(path)
        case RenameOperation():
            content_id, mode = files.pop(op.old_path)
            files[op.new_path] = (op.content_id, op.mode or mode)
