"""Tree difference analysis.

Computes the ``OperationSet`` that turns one tree snapshot into another in
terms a case-insensitive, path-versioned target can replay:

1. **Walk** -- both trees are traversed in sorted-name order and compared
   entry by entry.  Blobs produce Add/Delete/Edit operations; a path whose
   kind changed produces a Delete of the old kind plus Adds for the new
   side.
2. **Case-rename extraction** -- an Add and a Delete whose paths differ
   only by case become a Rename (file name changed) or are folded into
   the containing folder's rename (only an ancestor changed).
3. **Folder pass** -- every folder that lost a file is either matched to
   a case-renamed folder (emit folder Renames) or collapsed into one
   Delete of its shallowest vanished ancestor.

The analyzer reads trees through ``TreeReader`` and performs no other I/O.
"""

from __future__ import annotations

import logging

from revbridge.sync import paths
from revbridge.sync.errors import CaseCollisionError
from revbridge.sync.interfaces import TreeReader
from revbridge.sync.models import (
    AddOperation,
    DeleteOperation,
    EditOperation,
    EntryKind,
    OperationSet,
    RenameOperation,
    Tree,
    TreeEntry,
)

logger = logging.getLogger(__name__)


def analyze_difference(
    reader: TreeReader, from_tree: Tree | None, to_tree: Tree
) -> OperationSet:
    """Compute the operations that turn *from_tree* into *to_tree*.

    Args:
        reader: Used to descend into subtrees.
        from_tree: Snapshot already on the target, or ``None`` for the
            empty snapshot.
        to_tree: Snapshot to reproduce.

    Returns:
        The operation set; apply it in ``OperationSet.ordered()`` order.

    Raises:
        CaseCollisionError: If *to_tree* holds two paths that differ only
            by case.
    """
    to_paths = validate_case_sensitivity(reader, to_tree)

    walk = _DifferenceWalk(reader)
    walk.compare("", from_tree, to_tree)
    op_set = walk.finish(to_paths)

    logger.debug("Tree difference: %s", op_set.summary())
    return op_set


# ------------------------------------------------------------------
# Precondition
# ------------------------------------------------------------------


def list_paths(reader: TreeReader, tree: Tree) -> dict[str, EntryKind]:
    """Every path of *tree* (files and folders) mapped to its kind."""
    result: dict[str, EntryKind] = {}
    pending: list[tuple[str, Tree]] = [("", tree)]
    while pending:
        prefix, current = pending.pop()
        for entry in current.entries:
            path = paths.join(prefix, entry.name)
            result[path] = entry.kind
            if entry.is_tree:
                pending.append((path, reader.read_tree(entry.content_id)))
    return result


def validate_case_sensitivity(
    reader: TreeReader, to_tree: Tree
) -> dict[str, EntryKind]:
    """Reject snapshots the target cannot hold.

    Returns:
        The path index of *to_tree* (see ``list_paths``).

    Raises:
        CaseCollisionError: On the first pair of paths that differ only
            by case.
    """
    index = list_paths(reader, to_tree)
    seen: dict[str, str] = {}
    for path in sorted(index):
        key = paths.case_key(path)
        if key in seen:
            raise CaseCollisionError(seen[key], path)
        seen[key] = path
    return index


# ------------------------------------------------------------------
# Walk and post-passes
# ------------------------------------------------------------------


class _DifferenceWalk:
    """Accumulates operations for one comparison."""

    def __init__(self, reader: TreeReader) -> None:
        self.reader = reader
        self.adds: list[AddOperation] = []
        self.edits: list[EditOperation] = []
        self.deletes: list[DeleteOperation] = []
        self.deleted_blobs: dict[str, TreeEntry] = {}
        self.candidate_renamed: set[str] = set()
        self.candidate_deleted: set[str] = set()

    def compare(
        self, prefix: str, old: Tree | None, new: Tree | None
    ) -> None:
        old_entries = old.by_name() if old is not None else {}
        new_entries = new.by_name() if new is not None else {}

        for name in sorted(old_entries.keys() | new_entries.keys()):
            path = paths.join(prefix, name)
            before = old_entries.get(name)
            after = new_entries.get(name)

            if before is None:
                self._added(path, after)
            elif after is None:
                self._deleted(path, before)
            elif before.kind != after.kind:
                self.deletes.append(
                    DeleteOperation(path=path, kind=before.kind)
                )
                self._added(path, after)
            elif after.is_tree:
                if before.content_id != after.content_id:
                    self.compare(
                        path,
                        self.reader.read_tree(before.content_id),
                        self.reader.read_tree(after.content_id),
                    )
            elif (
                before.content_id != after.content_id
                or before.mode != after.mode
            ):
                self.edits.append(
                    EditOperation(
                        path=path,
                        content_id=after.content_id,
                        content_modified=before.content_id
                        != after.content_id,
                        old_mode=before.mode,
                        new_mode=after.mode,
                    )
                )

    def _added(self, path: str, entry: TreeEntry) -> None:
        if entry.is_tree:
            self.compare(path, None, self.reader.read_tree(entry.content_id))
            return
        self.adds.append(
            AddOperation(path=path, content_id=entry.content_id, mode=entry.mode)
        )
        self.candidate_renamed.add(paths.parent_of(path))

    def _deleted(self, path: str, entry: TreeEntry) -> None:
        if entry.is_tree:
            self.compare(path, self.reader.read_tree(entry.content_id), None)
            return
        self.deletes.append(DeleteOperation(path=path, kind=EntryKind.BLOB))
        self.deleted_blobs[path] = entry
        self.candidate_deleted.add(paths.parent_of(path))

    def finish(self, to_paths: dict[str, EntryKind]) -> OperationSet:
        adds, edits, deletes, renames = (
            self.adds,
            list(self.edits),
            self.deletes,
            [],
        )
        if adds and deletes:
            adds, deletes, file_renames, folded = self._pair_case_renames()
            renames.extend(file_renames)
            edits.extend(folded)

        folder_renames, deletes = self._resolve_folders(deletes, to_paths)
        renames.extend(folder_renames)

        return OperationSet(
            adds=tuple(adds),
            edits=tuple(edits),
            deletes=tuple(deletes),
            renames=tuple(_unique_renames(renames)),
        )

    def _pair_case_renames(
        self,
    ) -> tuple[
        list[AddOperation],
        list[DeleteOperation],
        list[RenameOperation],
        list[EditOperation],
    ]:
        """Turn Add/Delete pairs that differ only by case into renames."""
        deletes_by_key: dict[str, list[DeleteOperation]] = {}
        for delete in self.deletes:
            if delete.path in self.deleted_blobs:
                deletes_by_key.setdefault(
                    paths.case_key(delete.path), []
                ).append(delete)

        paired: set[str] = set()
        remaining_adds: list[AddOperation] = []
        renames: list[RenameOperation] = []
        folded: list[EditOperation] = []

        for add in self.adds:
            match = next(
                (
                    d
                    for d in deletes_by_key.get(paths.case_key(add.path), [])
                    if d.path != add.path and d.path not in paired
                ),
                None,
            )
            if match is None:
                remaining_adds.append(add)
                continue

            paired.add(match.path)
            old_entry = self.deleted_blobs[match.path]
            if paths.file_name(match.path) != paths.file_name(add.path):
                renames.append(
                    RenameOperation(
                        old_path=match.path,
                        new_path=add.path,
                        content_id=add.content_id,
                        is_parent_only_renamed=False,
                        mode=add.mode,
                    )
                )
            elif (
                old_entry.content_id != add.content_id
                or old_entry.mode != add.mode
            ):
                # the folder rename moves the file; only content remains
                folded.append(
                    EditOperation(
                        path=match.path,
                        content_id=add.content_id,
                        content_modified=old_entry.content_id
                        != add.content_id,
                        old_mode=old_entry.mode,
                        new_mode=add.mode,
                    )
                )

        remaining_deletes = [d for d in self.deletes if d.path not in paired]
        return remaining_adds, remaining_deletes, renames, folded

    def _resolve_folders(
        self,
        deletes: list[DeleteOperation],
        to_paths: dict[str, EntryKind],
    ) -> tuple[list[RenameOperation], list[DeleteOperation]]:
        """Emit folder renames and collapse leaf deletes into folder deletes."""
        renamed_by_key = {
            paths.case_key(folder): folder
            for folder in self.candidate_renamed
            if folder
        }
        # folders that only gained subfolders are not rename candidates
        to_folders = {
            paths.case_key(path): path
            for path, kind in to_paths.items()
            if kind == EntryKind.TREE
        }
        renames: list[RenameOperation] = []
        folder_deletes: set[str] = set()

        for folder in sorted(self.candidate_deleted):
            if not folder or folder in to_paths:
                continue

            key = paths.case_key(folder)
            match = renamed_by_key.get(key) or to_folders.get(key)
            if match is not None:
                renames.extend(_folder_renames(folder, match))
                continue

            vanished = folder
            for ancestor in paths.ancestors(folder):
                if paths.case_key(ancestor) in to_folders:
                    break
                vanished = ancestor
            folder_deletes.add(vanished)

        if not folder_deletes:
            return renames, deletes

        kept = [
            d
            for d in deletes
            if not any(paths.is_under(d.path, f) for f in folder_deletes)
        ]
        collapsed = [
            DeleteOperation(path=f, kind=EntryKind.TREE)
            for f in sorted(folder_deletes)
            if not any(
                paths.is_under(f, other) and f != other
                for other in folder_deletes
            )
        ]
        return renames, collapsed + kept


def _folder_renames(old: str, new: str) -> list[RenameOperation]:
    """Renames for every level of *old* whose own name changed case."""
    result: list[RenameOperation] = []
    while old != new:
        if paths.file_name(old) != paths.file_name(new):
            result.append(
                RenameOperation(
                    old_path=old,
                    new_path=new,
                    content_id=None,
                    is_parent_only_renamed=True,
                )
            )
        old, new = paths.parent_of(old), paths.parent_of(new)
    return result


def _unique_renames(renames: list[RenameOperation]) -> list[RenameOperation]:
    """First rename per case-insensitive source path, deepest first."""
    unique: dict[str, RenameOperation] = {}
    for rename in renames:
        unique.setdefault(paths.case_key(rename.old_path), rename)
    return sorted(unique.values(), key=lambda r: -paths.depth(r.old_path))
