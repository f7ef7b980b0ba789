"""Error taxonomy for the reconciliation engine.

Every fatal condition is a ``BridgeError`` subclass with a stable ``code``
string that reports and callers can match on.  The resolver, analyzer and
builder raise; only the engine decides what aborts a run.  Non-fatal
conditions are not exceptions: see ``SyncWarning`` in ``models``.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all reconciliation errors."""

    code = "bridge_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Target-state guards
# ---------------------------------------------------------------------------


class NotEmptyTargetError(BridgeError):
    """First check-in into a target path that already holds items."""

    code = "not_empty_target"


class FastForwardRequiredError(BridgeError):
    """The latest target revision is not mapped to any source commit."""

    code = "fast_forward_required"


class TargetDeletedError(BridgeError):
    """The target path vanished although mappings exist."""

    code = "target_deleted"


# ---------------------------------------------------------------------------
# History shape
# ---------------------------------------------------------------------------


class HistoryError(BridgeError):
    """The commit graph cannot be reduced to a linear delta sequence.

    Attributes:
        commit_id: Commit at which the walk stopped.
    """

    def __init__(self, message: str, commit_id: str | None = None) -> None:
        super().__init__(message)
        self.commit_id = commit_id


class NonLinearHistoryError(HistoryError):
    """A merge has more than one parent outside the squash set."""

    code = "non_linear_history"


class NonLinearOriginError(HistoryError):
    """The walk reached a root (or dead end) without meeting ``since``."""

    code = "non_linear_origin"


class AllParentsSquashedError(HistoryError):
    """Every parent of a merge is in the squash set."""

    code = "all_parents_squashed"


class CommitSquashedButIsSoleParentError(HistoryError):
    """A squashed commit is the only parent of its child."""

    code = "commit_squashed_but_is_sole_parent"


# ---------------------------------------------------------------------------
# Snapshot and submission
# ---------------------------------------------------------------------------


class CaseCollisionError(BridgeError):
    """Two paths of a snapshot differ only by case.

    Attributes:
        first: The path seen first.
        second: The colliding path.
    """

    code = "case_collision"

    def __init__(self, first: str, second: str) -> None:
        super().__init__(
            f"Paths {first!r} and {second!r} differ only by case"
        )
        self.first = first
        self.second = second


class PendRejectedError(BridgeError):
    """The target accepted fewer operations than were submitted."""

    code = "pend_rejected"

    def __init__(self, submitted: int, accepted: int) -> None:
        super().__init__(
            f"Target accepted {accepted} of {submitted} pending operations"
        )
        self.submitted = submitted
        self.accepted = accepted


class WorkspaceCreationError(BridgeError):
    """A disposable workspace could not be created."""

    code = "workspace_creation_failed"
