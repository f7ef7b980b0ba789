"""Shared pytest fixtures for revbridge tests."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

from revbridge.config_schema import BridgeConfig
from revbridge.file_handler import read_working_file
from revbridge.sync import paths
from revbridge.sync.builder import build_tree
from revbridge.sync.interfaces import WorkspaceHandle
from revbridge.sync.models import (
    AddOperation,
    Commit,
    DeleteOperation,
    EditOperation,
    EntryKind,
    FileMode,
    RenameOperation,
    RevisionInfo,
    TargetItem,
    Tree,
)
from revbridge.sync.source import DulwichSourceStore

load_dotenv()

TARGET_PATH = "$/Project/Main"


# ---------------------------------------------------------------------------
# Fake target system
# ---------------------------------------------------------------------------


def _find(keys, path: str) -> str | None:
    """Existing key equal to *path* ignoring case (the target's rule)."""
    for key in keys:
        if paths.equals_ignore_case(key, path):
            return key
    return None


def _under(path: str, folder: str) -> bool:
    return path.casefold().startswith(folder.casefold() + "/")


class FakeTargetService:
    """In-memory, case-insensitive centralized revision store.

    Files are kept per revision as ``{server_path: (data, mode, stamp)}``.
    Content for pended operations is read from the workspace's working
    folder, as a real client would upload it.
    """

    def __init__(self) -> None:
        self.latest = 0
        self.files: dict[int, dict[str, tuple[bytes, FileMode, int]]] = {0: {}}
        self.folders: dict[int, set[str]] = {0: set()}
        self.infos: dict[int, RevisionInfo] = {}
        self.touched: dict[int, set[str]] = {}
        self.pending: dict[str, list] = {}
        self.commits: list[tuple[int, list, str]] = []
        self.commit_meta: list[Commit] = []
        self.lock_calls: list[str] = []
        self.unlock_calls: list[str] = []
        self.disposed: list[str] = []
        self.workspaces: list[WorkspaceHandle] = []
        self.downloads: list[tuple[str, int]] = []
        self.undo_calls = 0
        self.fail_create = False
        self.fail_dispose = False
        self.accept_limit: int | None = None
        self.concurrent_commits = 0

    # -- seeding ------------------------------------------------------------

    def seed(
        self,
        files: dict[str, bytes] | None = None,
        folders: tuple[str, ...] = (),
        comment: str = "seeded",
        owner: str = "someone",
        deleted: tuple[str, ...] = (),
    ) -> int:
        """Create a revision directly, as another client would."""
        current = dict(self.files[self.latest])
        current_folders = set(self.folders[self.latest])
        touched = set(folders) | set(deleted)
        revision = self.latest + 1
        for path in deleted:
            current = {k: v for k, v in current.items() if k != path and not _under(k, path)}
            current_folders = {
                f for f in current_folders if f != path and not _under(f, path)
            }
        for path, data in (files or {}).items():
            current[path] = (data, FileMode.REGULAR, revision)
            touched.add(path)
        current_folders |= set(folders)
        self._record(revision, current, current_folders, touched, comment, owner)
        return revision

    def _record(self, revision, files, folders, touched, comment, owner) -> None:
        self.latest = revision
        self.files[revision] = files
        self.folders[revision] = folders
        self.touched[revision] = touched
        self.infos[revision] = RevisionInfo(
            revision=revision,
            owner=owner,
            comment=comment,
            timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    # -- queries ------------------------------------------------------------

    def _exists(self, path: str, revision: int) -> bool:
        candidates = list(self.files[revision]) + list(self.folders[revision])
        return any(
            paths.equals_ignore_case(p, path) or _under(p, path)
            for p in candidates
        )

    def latest_revision(self, path: str | None = None) -> int | None:
        if path is None:
            return self.latest
        if not self._exists(path, self.latest):
            return None
        touching = [
            rev
            for rev, touched in self.touched.items()
            if any(paths.equals_ignore_case(t, path) or _under(t, path) for t in touched)
        ]
        return max(touching) if touching else None

    def snapshot(self, path: str, revision: int) -> list[TargetItem]:
        items: dict[str, TargetItem] = {}
        files = self.files[revision]
        folder_paths = set(self.folders[revision])
        for file_path in files:
            folder_paths.update(
                a for a in paths.ancestors(file_path) if len(a) > 1
            )
        for folder in sorted(folder_paths):
            if paths.equals_ignore_case(folder, path) or _under(folder, path):
                items[folder.casefold()] = TargetItem(path=folder, kind=EntryKind.TREE)
        for file_path, (data, mode, stamp) in sorted(files.items()):
            if _under(file_path, path):
                items[file_path.casefold()] = TargetItem(
                    path=file_path,
                    kind=EntryKind.BLOB,
                    content_id=hashlib.sha1(data).hexdigest(),
                    mode=mode,
                    stamp=stamp,
                )
        return list(items.values())

    def history(self, path: str, after: int | None) -> list[RevisionInfo]:
        return [
            self.infos[rev]
            for rev in sorted(self.touched)
            if (after is None or rev > after)
            and any(
                paths.equals_ignore_case(t, path) or _under(t, path)
                for t in self.touched[rev]
            )
        ]

    def download(self, path: str, revision: int) -> bytes:
        self.downloads.append((path, revision))
        return self.files[revision][path][0]

    # -- workspace ----------------------------------------------------------

    def create_workspace(self, server_path: str, working_folder: str) -> WorkspaceHandle:
        if self.fail_create:
            raise RuntimeError("workspace quota exceeded")
        name = f"revbridge-{len(self.workspaces) + 1}"
        self.pending[name] = []
        handle = WorkspaceHandle(
            name=name, server_path=server_path, working_folder=working_folder
        )
        self.workspaces.append(handle)
        return handle

    def pend(self, workspace: WorkspaceHandle, operations) -> int:
        ops = list(operations)
        if self.accept_limit is not None:
            ops = ops[: self.accept_limit]
        self.pending[workspace.name].extend(ops)
        return len(ops)

    def query_pending(self, workspace: WorkspaceHandle, path_prefix: str) -> list:
        return [
            op
            for op in self.pending[workspace.name]
            if _under(
                paths.combine_server_path(
                    workspace.server_path, getattr(op, "path", None) or op.old_path
                ),
                path_prefix,
            )
        ]

    def undo(self, workspace: WorkspaceHandle, path_prefix: str) -> int:
        self.undo_calls += 1
        count = len(self.pending[workspace.name])
        self.pending[workspace.name] = []
        return count

    def commit(
        self, workspace: WorkspaceHandle, operations, comment: str, meta: Commit
    ) -> int:
        for _ in range(self.concurrent_commits):
            self.seed({"$/Other/file.txt": b"x"}, comment="concurrent")
        self.concurrent_commits = 0

        revision = self.latest + 1
        files = dict(self.files[self.latest])
        folders = set(self.folders[self.latest])
        touched: set[str] = set()
        root = Path(workspace.working_folder)

        def full(relative: str) -> str:
            return paths.combine_server_path(workspace.server_path, relative)

        for op in operations:
            if isinstance(op, DeleteOperation):
                target = full(op.path)
                files = {
                    k: v
                    for k, v in files.items()
                    if not paths.equals_ignore_case(k, target) and not _under(k, target)
                }
                folders = {
                    f
                    for f in folders
                    if not paths.equals_ignore_case(f, target) and not _under(f, target)
                }
                touched.add(target)
            elif isinstance(op, EditOperation):
                key = _find(files, full(op.path))
                data = read_working_file(root, op.path)
                files[key] = (data, op.new_mode, revision)
                touched.add(key)
            elif isinstance(op, AddOperation):
                data = read_working_file(root, op.path)
                files[full(op.path)] = (data, op.mode, revision)
                touched.add(full(op.path))
            elif isinstance(op, RenameOperation) and op.content_id is None:
                old, new = full(op.old_path), full(op.new_path)
                moved = {}
                for k, v in files.items():
                    if _under(k, old):
                        moved[new + k[len(old):]] = (v[0], v[1], revision)
                    else:
                        moved[k] = v
                files = moved
                touched.update({old, new})
            elif isinstance(op, RenameOperation):
                key = _find(files, full(op.old_path))
                del files[key]
                data = read_working_file(root, op.new_path)
                files[full(op.new_path)] = (data, op.mode or FileMode.REGULAR, revision)
                touched.update({key, full(op.new_path)})

        if not self._exists(workspace.server_path, self.latest):
            folders.add(workspace.server_path)
            touched.add(workspace.server_path)
        self._record(revision, files, folders, touched, comment, "revbridge")
        self.commits.append((revision, list(operations), comment))
        self.commit_meta.append(meta)
        self.pending[workspace.name] = []
        return revision

    def lock(self, workspace: WorkspaceHandle, path: str) -> None:
        self.lock_calls.append(path)

    def unlock(self, workspace: WorkspaceHandle, path: str) -> None:
        self.unlock_calls.append(path)

    def dispose_workspace(self, workspace: WorkspaceHandle) -> None:
        if self.fail_dispose:
            raise RuntimeError("server went away")
        self.disposed.append(workspace.name)

    # -- helpers for assertions ---------------------------------------------

    def contents(self, revision: int | None = None) -> dict[str, bytes]:
        """Files under the bridged path, keyed by relative path."""
        rev = self.latest if revision is None else revision
        return {
            paths.make_relative(k, TARGET_PATH): v[0]
            for k, v in self.files[rev].items()
            if _under(k, TARGET_PATH)
        }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_target():
    """A fresh in-memory target system."""
    return FakeTargetService()


@pytest.fixture
def source():
    """A source store over an empty in-memory git repository."""
    return DulwichSourceStore.in_memory()


@pytest.fixture
def make_tree(source):
    """Factory: ``{path: bytes | (bytes, FileMode)}`` -> ``Tree``."""

    def _make(files: dict, folders: tuple[str, ...] = ()) -> Tree:
        triples = []
        for path, value in files.items():
            data, mode = value if isinstance(value, tuple) else (value, FileMode.REGULAR)
            triples.append((path, source.insert_blob(data), mode))
        tree_id = build_tree(
            source, triples, folders=folders, keep_empty_folders=bool(folders)
        )
        return source.read_tree(tree_id)

    return _make


@pytest.fixture
def commit_files(source, make_tree):
    """Factory: create a commit holding *files* on top of *parents*."""
    counter = {"n": 0}

    def _commit(
        files: dict, parents: tuple[str, ...] = (), message: str | None = None
    ) -> str:
        counter["n"] += 1
        tree = make_tree(files)
        return source.insert_commit(
            tree.id,
            list(parents),
            message or f"commit {counter['n']}",
            author="Dev <dev@example.com>",
            commit_time=1_700_000_000 + counter["n"],
        )

    return _commit


@pytest.fixture
def flatten(source):
    """Factory: ``Tree`` -> ``{path: (content_id, mode)}`` for its blobs."""

    def _flatten(tree: Tree | None) -> dict:
        if tree is None:
            return {}
        result = {}
        pending = [("", tree)]
        while pending:
            prefix, current = pending.pop()
            for entry in current.entries:
                path = paths.join(prefix, entry.name)
                if entry.is_tree:
                    pending.append((path, source.read_tree(entry.content_id)))
                else:
                    result[path] = (entry.content_id, entry.mode)
        return result

    return _flatten


@pytest.fixture
def bridge_config(tmp_path):
    """Factory: a ``BridgeConfig`` with state and working folder in tmp."""

    def _config(**overrides) -> BridgeConfig:
        values = {
            "target_path": TARGET_PATH,
            "state_dir": str(tmp_path / "state"),
            "working_folder": str(tmp_path / "work"),
        }
        values.update(overrides)
        return BridgeConfig(**values)

    return _config
