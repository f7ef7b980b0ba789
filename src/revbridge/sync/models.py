"""Pydantic models for the reconciliation engine.

Defines the data contracts shared by every sync module:

- ``EntryKind``, ``FileMode``: tree-entry classification.
- ``TreeEntry``, ``Tree``, ``Commit``: source snapshots.
- ``RevisionInfo``, ``TargetItem``: target-side revisions and snapshots.
- ``AddOperation``, ``EditOperation``, ``DeleteOperation``,
  ``RenameOperation`` (the ``Operation`` union) and ``OperationSet``.
- ``CommitDelta``: one (from, to) pair to synchronize.
- ``SyncPhase``, ``SyncStatus``, ``WarningCode``, ``SyncWarning``,
  ``DeltaResult``, ``SyncReport``: orchestrator progress and outcome.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class EntryKind(str, Enum):
    """Kind of a tree entry or target item."""

    BLOB = "blob"
    TREE = "tree"


class FileMode(str, Enum):
    """File modes the target system can represent."""

    REGULAR = "regular"
    EXECUTABLE = "executable"


class TreeEntry(BaseModel):
    """One named entry of a tree snapshot.

    Attributes:
        name: Entry name (single path component).
        kind: Blob or tree.
        content_id: Object id of the blob or subtree.
        mode: File mode for blobs; ``None`` for trees.
    """

    name: str
    kind: EntryKind
    content_id: str
    mode: FileMode | None = None

    model_config = {"frozen": True}

    @property
    def is_tree(self) -> bool:
        return self.kind == EntryKind.TREE


class Tree(BaseModel):
    """A tree snapshot: content id plus entries sorted by name."""

    id: str
    entries: tuple[TreeEntry, ...] = ()

    model_config = {"frozen": True}

    def by_name(self) -> dict[str, TreeEntry]:
        return {e.name: e for e in self.entries}


class Commit(BaseModel):
    """An immutable source commit.

    Attributes:
        id: 40-char lowercase hex content hash.
        parents: Parent commit ids in declared order.
        tree_id: Root tree id.
        author: Author identity (``Name <email>``).
        committer: Committer identity.
        author_time: Author timestamp (seconds since the epoch).
        commit_time: Commit timestamp (seconds since the epoch).
        message: Full commit message.
    """

    id: str
    parents: tuple[str, ...] = ()
    tree_id: str
    author: str = ""
    committer: str = ""
    author_time: int = 0
    commit_time: int = 0
    message: str = ""

    model_config = {"frozen": True}

    @property
    def short_id(self) -> str:
        return self.id[:7]

    @property
    def summary(self) -> str:
        """First line of the commit message."""
        return self.message.strip().split("\n", 1)[0]


class RevisionInfo(BaseModel):
    """A numbered revision of the target system.

    Attributes:
        revision: Sequential revision number.
        owner: Account that committed the revision.
        comment: Check-in comment.
        timestamp: Commit time (UTC).
    """

    revision: int
    owner: str = ""
    comment: str = ""
    timestamp: datetime | None = None

    model_config = {"frozen": True}


class TargetItem(BaseModel):
    """One row of a target snapshot.

    Attributes:
        path: Server path of the item.
        kind: Blob (file) or tree (folder).
        content_id: Content hash reported by the target; ``None`` for
            folders.
        mode: File mode; ``None`` for folders.
        stamp: Revision at which the item last changed.
    """

    path: str
    kind: EntryKind
    content_id: str | None = None
    mode: FileMode | None = None
    stamp: int = 0

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class AddOperation(BaseModel):
    """Create a file at *path*."""

    op: Literal["add"] = "add"
    path: str
    content_id: str
    mode: FileMode = FileMode.REGULAR

    model_config = {"frozen": True}


class EditOperation(BaseModel):
    """Change the content and/or mode of the file at *path*.

    Attributes:
        path: File path.
        content_id: New content id.
        content_modified: ``False`` when only the mode changed.
        old_mode: Mode before the edit.
        new_mode: Mode after the edit.
    """

    op: Literal["edit"] = "edit"
    path: str
    content_id: str
    content_modified: bool = True
    old_mode: FileMode = FileMode.REGULAR
    new_mode: FileMode = FileMode.REGULAR

    model_config = {"frozen": True}


class DeleteOperation(BaseModel):
    """Remove the file or folder at *path*."""

    op: Literal["delete"] = "delete"
    path: str
    kind: EntryKind = EntryKind.BLOB

    model_config = {"frozen": True}


class RenameOperation(BaseModel):
    """Move *old_path* to *new_path*.

    Attributes:
        old_path: Path before the rename.
        new_path: Path after the rename.
        content_id: New content for file renames; ``None`` for folders.
        is_parent_only_renamed: ``True`` when the last component kept its
            spelling and only an ancestor changed (folder renames).
        mode: File mode for file renames; ``None`` for folders.
    """

    op: Literal["rename"] = "rename"
    old_path: str
    new_path: str
    content_id: str | None = None
    is_parent_only_renamed: bool = False
    mode: FileMode | None = None

    model_config = {"frozen": True}


Operation = Annotated[
    Union[AddOperation, EditOperation, DeleteOperation, RenameOperation],
    Field(discriminator="op"),
]


class OperationSet(BaseModel):
    """The operations that turn one snapshot into another.

    Submission order is Delete -> Edit -> Add -> Rename (see ``ordered``).
    """

    adds: tuple[AddOperation, ...] = ()
    edits: tuple[EditOperation, ...] = ()
    deletes: tuple[DeleteOperation, ...] = ()
    renames: tuple[RenameOperation, ...] = ()

    model_config = {"frozen": True}

    def is_empty(self) -> bool:
        return not (self.adds or self.edits or self.deletes or self.renames)

    def __len__(self) -> int:
        return (
            len(self.adds)
            + len(self.edits)
            + len(self.deletes)
            + len(self.renames)
        )

    def ordered(self) -> list[Operation]:
        """Operations in submission order."""
        return [*self.deletes, *self.edits, *self.adds, *self.renames]

    def summary(self) -> str:
        return (
            f"{len(self.adds)} added, {len(self.edits)} edited, "
            f"{len(self.deletes)} deleted, {len(self.renames)} renamed"
        )


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------


class CommitDelta(BaseModel):
    """A pair of commits to compare.

    Attributes:
        from_commit: Older commit, or ``None`` to compare against the
            empty snapshot.  When present it is an ancestor of
            *to_commit*.
        to_commit: Newer commit.
    """

    from_commit: str | None = None
    to_commit: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Orchestrator outcome
# ---------------------------------------------------------------------------


class SyncPhase(str, Enum):
    """States of a synchronization run."""

    INIT = "init"
    WORKSPACE_READY = "workspace_ready"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    APPLYING_DELTA = "applying_delta"
    COMMITTED = "committed"
    CLEANUP = "cleanup"
    DONE = "done"
    ERROR = "error"


class SyncDirection(str, Enum):
    """Which way a run moves history."""

    CHECK_IN = "check_in"
    FETCH = "fetch"


class SyncStatus(str, Enum):
    """Overall outcome of a run."""

    CHECKED_IN = "checked_in"
    FETCHED = "fetched"
    ALREADY_UP_TO_DATE = "already_up_to_date"
    PREVIEW = "preview"


class WarningCode(str, Enum):
    """Non-fatal conditions reported alongside a successful run."""

    CONCURRENT_WRITER_DETECTED = "concurrent_writer_detected"
    CLEANUP_FAILED = "cleanup_failed"


class SyncWarning(BaseModel):
    """A non-fatal condition observed during a run."""

    code: WarningCode
    message: str

    model_config = {"frozen": True}


class DeltaResult(BaseModel):
    """Outcome of one unit of work.

    Attributes:
        from_commit: Older commit of the delta (check-in only).
        to_commit: Commit checked in, or commit created by a fetch.
        revision: Revision produced (check-in) or consumed (fetch);
            ``None`` for previews and skipped deltas.
        operations: Operations submitted (or that would be submitted).
        skipped: ``True`` when the delta produced no operations.
    """

    from_commit: str | None = None
    to_commit: str | None = None
    revision: int | None = None
    operations: OperationSet = Field(default_factory=OperationSet)
    skipped: bool = False

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one run.

    Attributes:
        direction: Check-in or fetch.
        target_path: Server path being synchronized.
        status: Overall outcome.
        dry_run: Whether this was a preview (no changes applied).
        results: Per-delta results in processing order.
        warnings: Non-fatal conditions.
        final_revision: Last revision produced or fetched.
        final_commit: Commit mapped to ``final_revision``.
        phase: Phase the run finished in.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    direction: SyncDirection
    target_path: str
    status: SyncStatus
    dry_run: bool = False
    results: list[DeltaResult] = []
    warnings: list[SyncWarning] = []
    final_revision: int | None = None
    final_commit: str | None = None
    phase: SyncPhase = SyncPhase.DONE
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def applied(self) -> list[DeltaResult]:
        """Results that produced (or would produce) a revision or commit."""
        return [r for r in self.results if not r.skipped]

    @property
    def skipped(self) -> list[DeltaResult]:
        """Results with nothing to submit."""
        return [r for r in self.results if r.skipped]

    @property
    def revisions(self) -> list[int]:
        """Revisions produced or fetched, in order."""
        return [r.revision for r in self.results if r.revision is not None]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts.
        """
        lines = [
            f"{self.direction.value} report for '{self.target_path}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Status:   {self.status.value}",
            f"  Applied:  {len(self.applied)}",
            f"  Skipped:  {len(self.skipped)}",
            f"  Warnings: {len(self.warnings)}",
        ]
        if self.final_revision is not None:
            lines.append(
                f"  Final:    {self.final_revision} -> {self.final_commit}"
            )
        return "\n".join(lines)
