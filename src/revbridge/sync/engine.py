"""Synchronization engine: drives the reconciliation against both systems.

``SyncEngine`` owns one bridged (repository, target path) pair and offers
two runs:

``check_in``
    1. Creates a disposable workspace and, for deep check-ins, locks the
       target path.  Without a lock it remembers the revision number it
       expects to produce.
    2. Loads the revision map and refuses to run when the target is not
       empty, has moved ahead of the map, or was deleted.
    3. Resolves the commit deltas from the last mapped commit to the
       source head.
    4. Per delta: computes the operation set, materializes content into
       the working folder, pends the operations, commits, and persists
       the new mapping immediately.
    5. Always unlocks and disposes the workspace; failures there become
       warnings.

``fetch``
    Replays target revisions newer than the last mapping as source
    commits, reusing stored blobs whose target revision stamp is
    unchanged.

Both runs return a ``SyncReport``.  Fatal conditions are ``BridgeError``
subclasses, raised after cleanup.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from revbridge import file_handler
from revbridge.config_schema import BridgeConfig
from revbridge.sync import paths
from revbridge.sync.analyzer import analyze_difference
from revbridge.sync.builder import TreeBuilder
from revbridge.sync.deltas import SHALLOW_DEPTH, DeltaMode, resolve_deltas
from revbridge.sync.errors import (
    BridgeError,
    FastForwardRequiredError,
    NotEmptyTargetError,
    PendRejectedError,
    TargetDeletedError,
    WorkspaceCreationError,
)
from revbridge.sync.interfaces import SourceStore, TargetService, WorkspaceHandle
from revbridge.sync.models import (
    Commit,
    CommitDelta,
    DeltaResult,
    EntryKind,
    FileMode,
    RevisionInfo,
    SyncDirection,
    SyncPhase,
    SyncReport,
    SyncStatus,
    SyncWarning,
    Tree,
    WarningCode,
)
from revbridge.sync.state import RevisionMap
from revbridge.validators import validate_relative_path

logger = logging.getLogger(__name__)


def build_comment(
    commit: Commit, delta: CommitDelta, include_metadata: bool = False
) -> str:
    """Check-in comment for *delta*, whose newer side is *commit*."""
    parts: list[str] = []
    if include_metadata:
        parts.append(
            f"Commit: {commit.short_id}\n"
            f"Author: {commit.author}\n"
            f"Committer: {commit.committer}"
        )

    direct = (
        delta.from_commit in commit.parents
        if delta.from_commit is not None
        else not commit.parents
    )
    if not direct:
        start = delta.from_commit[:7] if delta.from_commit else "root"
        parts.append(f"Squashed {start}..{commit.short_id}")

    parts.append(commit.message.strip() or f"Commit {commit.short_id}")
    return "\n\n".join(parts)


class SyncEngine:
    """Synchronize one source repository with one target path.

    Args:
        source: The source repository.
        target: The centralized target system.
        config: Bridge settings; ``target_path`` is required.
        revision_map: Map to use; by default one is created under
            ``config.state_dir`` (inside the repository's control dir when
            relative) with commit validation against *source*.
    """

    def __init__(
        self,
        source: SourceStore,
        target: TargetService,
        config: BridgeConfig,
        revision_map: RevisionMap | None = None,
    ) -> None:
        if not config.target_path:
            raise ValueError("config.target_path is required")
        self.source = source
        self.target = target
        self.config = config
        self.target_path: str = config.target_path
        self.revision_map = revision_map or RevisionMap(
            self._state_dir(),
            config.map_name,
            commit_exists=source.has_object,
        )

        self.phase = SyncPhase.INIT
        self.phase_history: list[SyncPhase] = []
        self.warnings: list[SyncWarning] = []
        self._workspace: WorkspaceHandle | None = None
        self._locked = False
        self._working_folder: Path | None = None
        self._owns_working_folder = False

    def _state_dir(self) -> Path:
        """Relative state dirs live in the source repository's control dir."""
        state_dir = Path(self.config.state_dir)
        control_dir = self.source.control_dir
        if state_dir.is_absolute() or control_dir is None:
            return state_dir
        return control_dir / state_dir

    # ------------------------------------------------------------------
    # Phase and warning bookkeeping
    # ------------------------------------------------------------------

    def _begin(self) -> str:
        self.phase_history = []
        self.warnings = []
        self._workspace = None
        self._locked = False
        self._working_folder = None
        self._owns_working_folder = False
        self._enter(SyncPhase.INIT)
        return datetime.now(timezone.utc).isoformat()

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug("Phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        self.phase_history.append(phase)

    def _warn(self, code: WarningCode, message: str) -> None:
        logger.warning("%s: %s", code.value, message)
        self.warnings.append(SyncWarning(code=code, message=message))

    def _report(
        self,
        direction: SyncDirection,
        status: SyncStatus,
        results: list[DeltaResult],
        started_at: str,
        dry_run: bool,
        final: tuple[int, str] | None,
    ) -> SyncReport:
        return SyncReport(
            direction=direction,
            target_path=self.target_path,
            status=status,
            dry_run=dry_run,
            results=results,
            warnings=list(self.warnings),
            final_revision=final[0] if final else None,
            final_commit=final[1] if final else None,
            phase=self.phase,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Check-in
    # ------------------------------------------------------------------

    def check_in(self, head: str = "HEAD", *, dry_run: bool = False) -> SyncReport:
        """Check in source history up to *head*.

        Args:
            head: Ref, commit id or unique prefix to synchronize up to.
            dry_run: Compute the operations each delta would submit but
                pend, commit and record nothing.

        Returns:
            A ``SyncReport``.

        Raises:
            BridgeError: On any fatal condition, after cleanup.
        """
        started_at = self._begin()
        results: list[DeltaResult] = []
        failed = True
        try:
            status, final = self._run_check_in(head, dry_run, results)
            failed = False
        except BridgeError as exc:
            logger.error(
                "Check-in to %s failed [%s]: %s", self.target_path, exc.code, exc
            )
            raise
        finally:
            self._cleanup()
            self._enter(SyncPhase.ERROR if failed else SyncPhase.DONE)

        return self._report(
            SyncDirection.CHECK_IN, status, results, started_at, dry_run, final
        )

    def _run_check_in(
        self, head: str, dry_run: bool, results: list[DeltaResult]
    ) -> tuple[SyncStatus, tuple[int, str] | None]:
        head_commit = self.source.resolve(head)
        workspace = self._create_workspace()

        expected: int | None = None
        if self.config.deep and self.config.lock and not dry_run:
            self.target.lock(workspace, self.target_path)
            self._locked = True
            self._enter(SyncPhase.LOCKED)
        else:
            self._enter(SyncPhase.UNLOCKED)
            expected = (self.target.latest_revision() or 0) + 1

        self.revision_map.load()
        last_mapped = self.revision_map.last_mapped()
        current_head = self.target.latest_revision(self.target_path)
        current_commit = (
            self.revision_map.commit_for(current_head, validate=True)
            if current_head is not None
            else None
        )

        self._check_target_state(last_mapped, current_head, current_commit)

        if current_commit == head_commit.id:
            logger.info(
                "%s is already up to date at revision %s",
                self.target_path,
                current_head,
            )
            return SyncStatus.ALREADY_UP_TO_DATE, (current_head, current_commit)

        since = last_mapped[1] if last_mapped else None
        deltas = self._resolve(since, head_commit.id)

        final: tuple[int, str] | None = None
        for delta in deltas:
            result = self._apply_delta(workspace, delta, dry_run)
            results.append(result)
            if result.revision is None:
                continue
            final = (result.revision, delta.to_commit)
            if expected is not None:
                if result.revision != expected:
                    self._warn(
                        WarningCode.CONCURRENT_WRITER_DETECTED,
                        f"Expected revision {expected} but the target "
                        f"produced {result.revision}",
                    )
                expected = None

        if dry_run:
            return SyncStatus.PREVIEW, final
        if final is None:
            logger.info("No changes to check in to %s", self.target_path)
            return SyncStatus.ALREADY_UP_TO_DATE, last_mapped
        return SyncStatus.CHECKED_IN, final

    def _create_workspace(self) -> WorkspaceHandle:
        if self.config.working_folder:
            self._working_folder = Path(self.config.working_folder)
            self._working_folder.mkdir(parents=True, exist_ok=True)
        else:
            self._working_folder = Path(tempfile.mkdtemp(prefix="revbridge-"))
            self._owns_working_folder = True

        try:
            self._workspace = self.target.create_workspace(
                self.target_path, str(self._working_folder)
            )
        except BridgeError:
            raise
        except Exception as exc:
            raise WorkspaceCreationError(
                f"Could not create a workspace for {self.target_path}: {exc}"
            ) from exc

        self._enter(SyncPhase.WORKSPACE_READY)
        return self._workspace

    def _check_target_state(
        self,
        last_mapped: tuple[int, str] | None,
        current_head: int | None,
        current_commit: str | None,
    ) -> None:
        """Refuse to touch a target that does not match the revision map."""
        if last_mapped is None:
            if current_head is not None and self._has_items(current_head):
                raise NotEmptyTargetError(
                    f"{self.target_path} already contains items and has "
                    "never been bridged"
                )
            return

        if current_head is None:
            raise TargetDeletedError(
                f"{self.target_path} was deleted after revision "
                f"{last_mapped[0]}"
            )
        if current_commit is None:
            raise FastForwardRequiredError(
                f"Revision {current_head} of {self.target_path} is not "
                "mapped to a commit; fetch it first"
            )

    def _has_items(self, revision: int) -> bool:
        root = self.target_path.rstrip(paths.SEPARATOR)
        return any(
            not paths.equals_ignore_case(item.path.rstrip(paths.SEPARATOR), root)
            for item in self.target.snapshot(self.target_path, revision)
        )

    def _resolve(self, since: str | None, head: str) -> list[CommitDelta]:
        if self.config.deep:
            return resolve_deltas(
                self.source,
                since,
                head,
                mode=DeltaMode.LINEAR,
                squash_ids=self.config.squash,
                auto_squash=self.config.auto_squash,
                max_depth=self.config.max_depth,
            )
        return resolve_deltas(
            self.source,
            since,
            head,
            mode=DeltaMode.SQUASH,
            max_depth=SHALLOW_DEPTH,
        )

    def _apply_delta(
        self, workspace: WorkspaceHandle, delta: CommitDelta, dry_run: bool
    ) -> DeltaResult:
        """Submit one delta and record its mapping."""
        self._enter(SyncPhase.APPLYING_DELTA)
        if not dry_run:
            self._clear_working_folder()
            undone = self.target.undo(workspace, self.target_path)
            if undone:
                logger.info("Undid %d stale pending change(s)", undone)

        from_tree = (
            self.source.tree(delta.from_commit) if delta.from_commit else None
        )
        to_tree = self.source.tree(delta.to_commit)
        op_set = analyze_difference(self.source, from_tree, to_tree)

        if op_set.is_empty():
            logger.info(
                "Skipping %s: no changes to check in", delta.to_commit[:7]
            )
            return DeltaResult(
                from_commit=delta.from_commit,
                to_commit=delta.to_commit,
                operations=op_set,
                skipped=True,
            )

        if dry_run:
            return DeltaResult(
                from_commit=delta.from_commit,
                to_commit=delta.to_commit,
                operations=op_set,
            )

        file_handler.materialize_operations(
            self._working_folder, op_set, self.source.blob
        )

        operations = op_set.ordered()
        accepted = self.target.pend(workspace, operations)
        if accepted < len(operations):
            raise PendRejectedError(len(operations), accepted)

        pending = self.target.query_pending(workspace, self.target_path)
        to_commit = self.source.commit(delta.to_commit)
        comment = build_comment(
            to_commit,
            delta,
            self.config.include_metadata,
        )
        revision = self.target.commit(workspace, pending, comment, to_commit)
        self._enter(SyncPhase.COMMITTED)

        self.revision_map.set_commit(revision, delta.to_commit)
        self.revision_map.save()
        logger.info(
            "Checked in %s as revision %d (%s)",
            delta.to_commit[:7],
            revision,
            op_set.summary(),
        )
        return DeltaResult(
            from_commit=delta.from_commit,
            to_commit=delta.to_commit,
            revision=revision,
            operations=op_set,
        )

    def _clear_working_folder(self) -> None:
        try:
            file_handler.clear_working_folder(self._working_folder)
        except OSError as exc:
            logger.warning(
                "Could not clear working folder %s: %s",
                self._working_folder,
                exc,
            )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, *, dry_run: bool = False) -> SyncReport:
        """Replay target revisions newer than the last mapping as commits.

        Args:
            dry_run: List the revisions that would be fetched without
                writing objects, mappings or refs.

        Returns:
            A ``SyncReport``.
        """
        started_at = self._begin()
        results: list[DeltaResult] = []
        failed = True
        try:
            status, final = self._run_fetch(dry_run, results)
            failed = False
        except BridgeError as exc:
            logger.error(
                "Fetch from %s failed [%s]: %s", self.target_path, exc.code, exc
            )
            raise
        finally:
            self._cleanup()
            self._enter(SyncPhase.ERROR if failed else SyncPhase.DONE)

        return self._report(
            SyncDirection.FETCH, status, results, started_at, dry_run, final
        )

    def _run_fetch(
        self, dry_run: bool, results: list[DeltaResult]
    ) -> tuple[SyncStatus, tuple[int, str] | None]:
        self.revision_map.load()
        last_mapped = self.revision_map.last_mapped()
        after = last_mapped[0] if last_mapped else None
        revisions = self.target.history(self.target_path, after)

        if not revisions:
            logger.info("%s has no new revisions", self.target_path)
            if last_mapped and not dry_run:
                self.source.set_ref(self.config.fetch_ref, last_mapped[1])
            return SyncStatus.ALREADY_UP_TO_DATE, last_mapped

        if dry_run:
            for info in revisions:
                results.append(DeltaResult(revision=info.revision))
            return SyncStatus.PREVIEW, last_mapped

        parent = last_mapped[1] if last_mapped else None
        previous_tree = self.source.tree(parent) if parent else None
        stamps = self._seed_stamps(last_mapped) if last_mapped else {}

        final: tuple[int, str] | None = last_mapped
        for info in revisions:
            self._enter(SyncPhase.APPLYING_DELTA)
            tree_id, stamps = self._build_revision_tree(info.revision, stamps)
            tree = self.source.read_tree(tree_id)
            op_set = analyze_difference(self.source, previous_tree, tree)

            commit_id = self.source.insert_commit(
                tree_id,
                [parent] if parent else [],
                info.comment or f"Revision {info.revision}",
                author=_identity(info),
                commit_time=_epoch(info),
            )
            self._enter(SyncPhase.COMMITTED)
            self.revision_map.set_commit(info.revision, commit_id)
            self.revision_map.save()
            self.source.set_ref(self.config.fetch_ref, commit_id)
            logger.info(
                "Fetched revision %d as %s (%s)",
                info.revision,
                commit_id[:7],
                op_set.summary(),
            )

            results.append(
                DeltaResult(
                    from_commit=parent,
                    to_commit=commit_id,
                    revision=info.revision,
                    operations=op_set,
                )
            )
            parent, previous_tree = commit_id, tree
            final = (info.revision, commit_id)

        return SyncStatus.FETCHED, final

    def _seed_stamps(
        self, last_mapped: tuple[int, str]
    ) -> dict[str, tuple[int, str]]:
        """Stamps and blob ids of the last mapped revision, by relative path."""
        revision, commit_id = last_mapped
        blobs = self._blob_index(self.source.tree(commit_id))
        stamps: dict[str, tuple[int, str]] = {}
        for item in self.target.snapshot(self.target_path, revision):
            if item.kind != EntryKind.BLOB:
                continue
            relative = paths.make_relative(item.path, self.target_path)
            if relative in blobs:
                stamps[relative] = (item.stamp, blobs[relative])
        return stamps

    def _blob_index(self, tree: Tree) -> dict[str, str]:
        index: dict[str, str] = {}
        pending: list[tuple[str, Tree]] = [("", tree)]
        while pending:
            prefix, current = pending.pop()
            for entry in current.entries:
                path = paths.join(prefix, entry.name)
                if entry.is_tree:
                    pending.append((path, self.source.read_tree(entry.content_id)))
                else:
                    index[path] = entry.content_id
        return index

    def _build_revision_tree(
        self, revision: int, stamps: dict[str, tuple[int, str]]
    ) -> tuple[str, dict[str, tuple[int, str]]]:
        """Write the tree of *revision*; return it with the new stamps."""
        builder = TreeBuilder(keep_empty_folders=self.config.keep_empty_folders)
        new_stamps: dict[str, tuple[int, str]] = {}
        reused = 0

        for item in self.target.snapshot(self.target_path, revision):
            relative = paths.make_relative(item.path, self.target_path)
            if not relative:
                continue
            is_valid, message = validate_relative_path(relative)
            if not is_valid:
                logger.info("Ignoring %s at revision %d: %s", item.path, revision, message)
                continue
            if item.kind == EntryKind.TREE:
                builder.add_folder(relative)
                continue

            previous = stamps.get(relative)
            if previous is not None and previous[0] == item.stamp:
                blob_id = previous[1]
                reused += 1
            else:
                blob_id = self.source.insert_blob(
                    self.target.download(item.path, revision)
                )
            builder.add_file(relative, blob_id, item.mode or FileMode.REGULAR)
            new_stamps[relative] = (item.stamp, blob_id)

        logger.debug(
            "Revision %d: %d file(s), %d reused", revision, len(new_stamps), reused
        )
        return builder.write(self.source), new_stamps

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _cleanup(self) -> None:
        """Release the lock and workspace; failures become warnings."""
        self._enter(SyncPhase.CLEANUP)
        workspace = self._workspace

        if workspace is not None and self._locked:
            try:
                self.target.unlock(workspace, self.target_path)
            except Exception as exc:
                self._warn(
                    WarningCode.CLEANUP_FAILED,
                    f"Could not unlock {self.target_path}: {exc}",
                )
            self._locked = False

        if workspace is not None:
            try:
                self.target.dispose_workspace(workspace)
            except Exception as exc:
                self._warn(
                    WarningCode.CLEANUP_FAILED,
                    f"Could not dispose workspace {workspace.name}: {exc}",
                )
            self._workspace = None

        if self._owns_working_folder and self._working_folder is not None:
            try:
                shutil.rmtree(self._working_folder)
            except OSError as exc:
                self._warn(
                    WarningCode.CLEANUP_FAILED,
                    f"Could not remove {self._working_folder}: {exc}",
                )
            self._owns_working_folder = False


def _identity(info: RevisionInfo) -> str | None:
    if not info.owner:
        return None
    return f"{info.owner} <{info.owner}>"


def _epoch(info: RevisionInfo) -> int:
    if info.timestamp is None:
        return 0
    return int(info.timestamp.timestamp())
