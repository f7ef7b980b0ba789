"""Hierarchical tree building from flat path lists.

The fetch direction receives a target snapshot as a flat list of file
paths.  ``TreeBuilder`` groups them per folder and writes the folders
deepest-first, so every subtree id is known before its parent is
written.

Non-root folders without entries are omitted unless
``keep_empty_folders`` is set; the root is always written (as the empty
tree when nothing was added).
"""

from __future__ import annotations

from collections.abc import Iterable

from revbridge.sync import paths
from revbridge.sync.interfaces import ObjectWriter
from revbridge.sync.models import EntryKind, FileMode, TreeEntry


class TreeBuilder:
    """Collects files and folders, then writes them as nested trees.

    Args:
        keep_empty_folders: Materialize folders that end up empty as
            empty tree objects instead of dropping them.
    """

    def __init__(self, *, keep_empty_folders: bool = False) -> None:
        self.keep_empty_folders = keep_empty_folders
        self._folders: dict[str, dict[str, TreeEntry]] = {"": {}}

    def add_file(
        self,
        path: str,
        content_id: str,
        mode: FileMode = FileMode.REGULAR,
    ) -> None:
        """Register a blob at *path* (relative, ``/``-separated).

        Raises:
            ValueError: If *path* is empty or already used as a folder.
        """
        if not path or path.startswith(paths.SEPARATOR):
            raise ValueError(f"Invalid file path: {path!r}")
        if path in self._folders:
            raise ValueError(f"{path!r} is already a folder")

        folder = paths.parent_of(path)
        self._ensure_folder(folder)
        name = paths.file_name(path)
        self._folders[folder][name] = TreeEntry(
            name=name, kind=EntryKind.BLOB, content_id=content_id, mode=mode
        )

    def add_folder(self, path: str) -> None:
        """Register a folder at *path* even if no file lands in it."""
        self._ensure_folder(path)

    def _ensure_folder(self, path: str) -> None:
        while path not in self._folders:
            parent = paths.parent_of(path)
            existing = self._folders.get(parent, {}).get(paths.file_name(path))
            if existing is not None and not existing.is_tree:
                raise ValueError(f"{path!r} is already a file")
            self._folders[path] = {}
            path = parent

    def write(self, store: ObjectWriter) -> str:
        """Write all folders through *store* and return the root tree id."""
        for folder in sorted(self._folders, key=paths.depth, reverse=True):
            if not folder:
                continue
            entries = self._folders[folder]
            if not entries and not self.keep_empty_folders:
                continue
            tree_id = store.insert_tree(entries.values())
            name = paths.file_name(folder)
            self._folders[paths.parent_of(folder)][name] = TreeEntry(
                name=name, kind=EntryKind.TREE, content_id=tree_id
            )
        return store.insert_tree(self._folders[""].values())


def build_tree(
    store: ObjectWriter,
    files: Iterable[tuple[str, str, FileMode]],
    *,
    folders: Iterable[str] = (),
    keep_empty_folders: bool = False,
) -> str:
    """Build a tree from ``(path, content_id, mode)`` triples.

    Returns:
        The root tree id.
    """
    builder = TreeBuilder(keep_empty_folders=keep_empty_folders)
    for folder in folders:
        builder.add_folder(folder)
    for path, content_id, mode in files:
        builder.add_file(path, content_id, mode)
    return builder.write(store)
