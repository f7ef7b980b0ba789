"""Protocols for the collaborators the engine drives.

The reconciliation core never talks to a repository directly:

- ``CommitGraph`` and ``TreeReader`` are the read-only views the delta
  resolver and the difference analyzer need.
- ``ObjectWriter`` is what the tree builder writes through.
- ``SourceStore`` is the full source repository (implemented by
  ``DulwichSourceStore`` in ``source``).
- ``TargetService`` is the centralized revision store.  No concrete
  network client ships; tests use an in-memory fake.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from revbridge.sync.models import (
    Commit,
    Operation,
    RevisionInfo,
    TargetItem,
    Tree,
    TreeEntry,
)


class WorkspaceHandle(BaseModel):
    """A disposable target workspace.

    Attributes:
        name: Workspace name as known to the target.
        server_path: Server path the workspace maps.
        working_folder: Local folder mapped to ``server_path``.  Content
            for Add, Edit and Rename operations is read from here.
    """

    name: str
    server_path: str
    working_folder: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------


class CommitGraph(Protocol):
    """Parent links of a commit DAG."""

    def parents(self, commit_id: str) -> list[str]:
        """Return the parent ids of *commit_id* in declared order."""
        ...  # pragma: no cover


class TreeReader(Protocol):
    """Random access to tree snapshots."""

    def read_tree(self, tree_id: str) -> Tree:
        """Return the tree stored under *tree_id*."""
        ...  # pragma: no cover


class ObjectWriter(Protocol):
    """Content-addressed insertion of trees."""

    def insert_tree(self, entries: Iterable[TreeEntry]) -> str:
        """Store a tree made of *entries* and return its id."""
        ...  # pragma: no cover


class SourceStore(CommitGraph, TreeReader, ObjectWriter, Protocol):
    """The content-addressed source repository."""

    @property
    def control_dir(self) -> Path | None:
        """Directory for per-repository state, if the store has one."""
        ...  # pragma: no cover

    def resolve(self, ref_or_id: str) -> Commit:
        """Return the commit named by a ref, a full id or a unique prefix."""
        ...  # pragma: no cover

    def commit(self, commit_id: str) -> Commit:
        ...  # pragma: no cover

    def tree(self, commit_id: str) -> Tree:
        """Return the root tree of *commit_id*."""
        ...  # pragma: no cover

    def blob(self, blob_id: str) -> bytes:
        ...  # pragma: no cover

    def has_object(self, object_id: str) -> bool:
        ...  # pragma: no cover

    def insert_blob(self, data: bytes) -> str:
        ...  # pragma: no cover

    def insert_commit(
        self,
        tree_id: str,
        parents: Sequence[str],
        message: str,
        author: str,
        commit_time: int,
    ) -> str:
        """Store a commit and return its id."""
        ...  # pragma: no cover

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        ...  # pragma: no cover

    def set_ref(self, name: str, commit_id: str) -> None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Target side
# ---------------------------------------------------------------------------


class TargetService(Protocol):
    """The centralized, path-versioned revision store."""

    def latest_revision(self, path: str | None = None) -> int | None:
        """Latest revision of the repository, or of *path*.

        Returns ``None`` when *path* does not exist at the latest revision.
        """
        ...  # pragma: no cover

    def snapshot(self, path: str, revision: int) -> list[TargetItem]:
        """Every item at or below *path* as of *revision*."""
        ...  # pragma: no cover

    def history(self, path: str, after: int | None) -> list[RevisionInfo]:
        """Revisions touching *path* after *after*, oldest first."""
        ...  # pragma: no cover

    def download(self, path: str, revision: int) -> bytes:
        ...  # pragma: no cover

    def create_workspace(
        self, server_path: str, working_folder: str
    ) -> WorkspaceHandle:
        ...  # pragma: no cover

    def pend(
        self, workspace: WorkspaceHandle, operations: Sequence[Operation]
    ) -> int:
        """Pend *operations* in order; return how many were accepted."""
        ...  # pragma: no cover

    def query_pending(
        self, workspace: WorkspaceHandle, path_prefix: str
    ) -> list[Operation]:
        """Pending operations strictly under *path_prefix*."""
        ...  # pragma: no cover

    def undo(self, workspace: WorkspaceHandle, path_prefix: str) -> int:
        """Discard pending operations under *path_prefix*."""
        ...  # pragma: no cover

    def commit(
        self,
        workspace: WorkspaceHandle,
        operations: Sequence[Operation],
        comment: str,
        meta: Commit,
    ) -> int:
        """Atomically commit *operations*; return the new revision.

        *meta* is the source commit the revision represents.
        """
        ...  # pragma: no cover

    def lock(self, workspace: WorkspaceHandle, path: str) -> None:
        ...  # pragma: no cover

    def unlock(self, workspace: WorkspaceHandle, path: str) -> None:
        ...  # pragma: no cover

    def dispose_workspace(self, workspace: WorkspaceHandle) -> None:
        ...  # pragma: no cover
