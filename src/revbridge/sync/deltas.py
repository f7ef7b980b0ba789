"""Delta resolution: which commit pairs must be compared.

Given a commit graph, the last synchronized commit (``since``) and a
target commit, produce the ordered ``CommitDelta`` sequence (oldest
first) that carries the target system from ``since`` to ``target``.

Two modes:

* ``DeltaMode.LINEAR`` -- walk the first-parent-like chain backward,
  following the single non-squashed parent at merges.
* ``DeltaMode.SQUASH`` -- take any one ancestry path and, by default,
  collapse it into a single delta (shallow sync).

Neither mode touches a repository; the graph is read through
``CommitGraph.parents``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from itertools import pairwise

from revbridge.sync.errors import (
    AllParentsSquashedError,
    CommitSquashedButIsSoleParentError,
    NonLinearHistoryError,
    NonLinearOriginError,
)
from revbridge.sync.interfaces import CommitGraph
from revbridge.sync.models import CommitDelta

logger = logging.getLogger(__name__)

SHALLOW_DEPTH = 1


class DeltaMode(str, Enum):
    """How history between two commits is turned into deltas."""

    LINEAR = "linear"
    SQUASH = "squash"


def resolve_deltas(
    graph: CommitGraph,
    since: str | None,
    target: str,
    *,
    mode: DeltaMode = DeltaMode.LINEAR,
    squash_ids: Iterable[str] = (),
    auto_squash: bool = False,
    max_depth: int | None = None,
) -> list[CommitDelta]:
    """Compute the deltas from *since* (exclusive) to *target*.

    Args:
        graph: Parent lookup for the commit DAG.
        since: Last synchronized commit, or ``None`` for a first sync.
        target: Commit to synchronize up to.
        mode: Linear-preserving or single-squash.
        squash_ids: Commit ids (or unique prefixes) already folded into
            history.  Linear mode only.
        auto_squash: In linear mode, fall back to a single-squash path at
            merges that would otherwise be non-linear.
        max_depth: Keep at most this many deltas, folding the oldest into
            one.  Squash mode defaults to ``SHALLOW_DEPTH``.

    Returns:
        Deltas ordered oldest -> newest.  Empty when *target* equals
        *since*.

    Raises:
        HistoryError: When the history cannot be linearised.
        ValueError: If *max_depth* is less than 1.
    """
    if mode == DeltaMode.SQUASH:
        deltas = squash_deltas(graph, since, target)
        depth = max_depth if max_depth is not None else SHALLOW_DEPTH
    else:
        deltas = linear_deltas(
            graph, since, target, squash_ids, auto_squash=auto_squash
        )
        depth = max_depth

    if depth is not None:
        deltas = prune_to_depth(deltas, depth)

    logger.debug(
        "Resolved %d delta(s) from %s to %s (%s)",
        len(deltas),
        since,
        target,
        mode.value,
    )
    return deltas


# ------------------------------------------------------------------
# Linear-preserving walk
# ------------------------------------------------------------------


def matches_squash(commit_id: str, squash_ids: Iterable[str]) -> bool:
    """Return ``True`` if *commit_id* starts with any (abbreviated) id."""
    return any(commit_id.startswith(s.lower()) for s in squash_ids if s)


def linear_deltas(
    graph: CommitGraph,
    since: str | None,
    target: str,
    squash_ids: Iterable[str] = (),
    *,
    auto_squash: bool = False,
) -> list[CommitDelta]:
    """Walk back from *target* to *since*, one delta per commit."""
    squash = tuple(squash_ids)
    newest_first: list[CommitDelta] = []
    current = target

    while current != since:
        parents = graph.parents(current)

        if not parents:
            if since is not None:
                raise NonLinearOriginError(
                    f"Reached root commit {current} without meeting {since}",
                    commit_id=current,
                )
            newest_first.append(CommitDelta(to_commit=current))
            break

        if len(parents) == 1:
            parent = parents[0]
            if parent != since and matches_squash(parent, squash):
                raise CommitSquashedButIsSoleParentError(
                    f"Commit {parent} is squashed but is the only parent "
                    f"of {current}",
                    commit_id=parent,
                )
        elif since is not None and since in parents:
            parent = since
        else:
            candidates = [p for p in parents if not matches_squash(p, squash)]
            if not candidates:
                raise AllParentsSquashedError(
                    f"All parents of merge {current} are squashed",
                    commit_id=current,
                )
            if len(candidates) > 1:
                if not auto_squash:
                    raise NonLinearHistoryError(
                        f"Merge {current} has {len(candidates)} parents "
                        "that are not squashed",
                        commit_id=current,
                    )
                logger.info(
                    "Auto-squashing non-linear history below %s", current
                )
                newest_first.extend(
                    reversed(squash_deltas(graph, since, current))
                )
                break
            parent = candidates[0]

        newest_first.append(CommitDelta(from_commit=parent, to_commit=current))
        current = parent

    newest_first.reverse()
    return newest_first


# ------------------------------------------------------------------
# Single-squash path
# ------------------------------------------------------------------


def find_squash_path(
    graph: CommitGraph, since: str | None, target: str
) -> list[str | None]:
    """Find one ancestry path from *since* to *target*.

    Depth-first, exploring the last declared parent first.  When *since*
    is ``None`` any root ends the search and the path starts with a
    ``None`` placeholder for the empty snapshot.

    Returns:
        Commit ids ordered oldest -> newest, ending with *target*.

    Raises:
        NonLinearOriginError: If *since* is not an ancestor of *target*.
    """
    came_from: dict[str, str | None] = {target: None}
    stack = [target]

    while stack:
        commit = stack.pop()
        if commit == since:
            return _trace(came_from, commit)

        parents = graph.parents(commit)
        if not parents and since is None:
            return [None, *_trace(came_from, commit)]

        for parent in parents:
            if parent not in came_from:
                came_from[parent] = commit
                stack.append(parent)

    raise NonLinearOriginError(
        f"No ancestry path from {since} to {target}", commit_id=target
    )


def _trace(came_from: dict[str, str | None], start: str) -> list[str | None]:
    """Follow child links from *start* back up to the search origin."""
    path: list[str | None] = []
    current: str | None = start
    while current is not None:
        path.append(current)
        current = came_from[current]
    return path


def squash_deltas(
    graph: CommitGraph, since: str | None, target: str
) -> list[CommitDelta]:
    """Consecutive deltas along the path from ``find_squash_path``."""
    if target == since:
        return []
    path = find_squash_path(graph, since, target)
    return [
        CommitDelta(from_commit=older, to_commit=newer)
        for older, newer in pairwise(path)
    ]


# ------------------------------------------------------------------
# Depth pruning
# ------------------------------------------------------------------


def prune_to_depth(
    deltas: list[CommitDelta], max_depth: int
) -> list[CommitDelta]:
    """Fold the oldest deltas so at most *max_depth* remain.

    The newest ``max_depth - 1`` deltas are kept as-is; everything older
    collapses into one synthetic delta from the oldest ``from`` to the
    boundary commit.

    Raises:
        ValueError: If *max_depth* is less than 1.
    """
    if max_depth < 1:
        raise ValueError(f"max_depth must be at least 1, got {max_depth}")
    if len(deltas) <= max_depth:
        return list(deltas)

    kept = deltas[len(deltas) - max_depth + 1:]
    boundary = kept[0].from_commit if kept else deltas[-1].to_commit
    synthetic = CommitDelta(
        from_commit=deltas[0].from_commit, to_commit=boundary
    )
    return [synthetic, *kept]
