"""Tests for the sync engine (check-in and fetch orchestration).

Covers:
- Shallow and deep check-ins, including HEAD resolution
- Check-in comments (squash summary, metadata header)
- Idempotent re-runs and skipped empty deltas
- Target-state guards: not empty, fast-forward required, deleted
- Lock/unlock, workspace disposal and working folder cleanup
- Warnings: concurrent writer, cleanup failure
- Fatal errors: pend rejection, workspace creation, non-linear history
- Resuming check-ins and fetches after a failed run
- Dry-run previews for both directions
- Fetch: commit creation, blob reuse by stamp, refs, empty folders
- Phase history for successful and failed runs
- Revision map placement under the repository control directory
"""

from __future__ import annotations

from pathlib import Path

import pytest
from dulwich.repo import Repo

from revbridge.sync.engine import SyncEngine, build_comment
from revbridge.sync.errors import (
    FastForwardRequiredError,
    NonLinearHistoryError,
    NotEmptyTargetError,
    PendRejectedError,
    TargetDeletedError,
    WorkspaceCreationError,
)
from revbridge.sync.models import (
    Commit,
    CommitDelta,
    FileMode,
    SyncPhase,
    SyncStatus,
    WarningCode,
)
from revbridge.sync.source import DulwichSourceStore
from revbridge.sync.state import RevisionMap

TARGET_PATH = "$/Project/Main"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_engine(source, fake_target, bridge_config):
    """Factory: SyncEngine over the shared source and fake target."""

    def _make(**overrides) -> SyncEngine:
        return SyncEngine(source, fake_target, bridge_config(**overrides))

    return _make


@pytest.fixture
def chain(commit_files):
    """Three linear commits: add, add in folder, edit + delete."""
    c1 = commit_files({"a.txt": b"a1"}, message="Add a")
    c2 = commit_files(
        {"a.txt": b"a1", "src/b.c": b"b1"}, parents=(c1,), message="Add b"
    )
    c3 = commit_files({"src/b.c": b"b2"}, parents=(c2,), message="Edit b")
    return c1, c2, c3


def _server(relative: str) -> str:
    return f"{TARGET_PATH}/{relative}"


# ---------------------------------------------------------------------------
# build_comment
# ---------------------------------------------------------------------------


class TestBuildComment:
    """Tests for build_comment()."""

    def _commit(self, parents=(), message="Fix it\n") -> Commit:
        return Commit(
            id="abcdef1" + "0" * 33,
            parents=parents,
            tree_id="f" * 40,
            author="Ann <ann@example.com>",
            committer="Bob <bob@example.com>",
            message=message,
        )

    def test_direct_delta_uses_message(self):
        """A delta from the parent uses the commit message as is."""
        commit = self._commit(parents=("1" * 40,))
        delta = CommitDelta(from_commit="1" * 40, to_commit=commit.id)
        assert build_comment(commit, delta) == "Fix it"

    def test_root_commit_is_direct(self):
        """A root commit has no range to summarise."""
        commit = self._commit()
        assert build_comment(commit, CommitDelta(to_commit=commit.id)) == "Fix it"

    def test_squashed_delta_summarises_range(self):
        """Skipped commits are summarised as a short-id range."""
        commit = self._commit(parents=("2" * 40,))
        delta = CommitDelta(from_commit="1" * 40, to_commit=commit.id)
        assert build_comment(commit, delta) == (
            "Squashed 1111111..abcdef1\n\nFix it"
        )

    def test_squash_from_empty_snapshot(self):
        """A squash from nothing is labelled "root"."""
        commit = self._commit(parents=("2" * 40,))
        comment = build_comment(commit, CommitDelta(to_commit=commit.id))
        assert comment.startswith("Squashed root..abcdef1")

    def test_metadata_header(self):
        """include_metadata prefixes commit, author and committer lines."""
        commit = self._commit()
        comment = build_comment(
            commit, CommitDelta(to_commit=commit.id), include_metadata=True
        )
        assert comment == (
            "Commit: abcdef1\n"
            "Author: Ann <ann@example.com>\n"
            "Committer: Bob <bob@example.com>\n\n"
            "Fix it"
        )

    def test_empty_message_falls_back_to_id(self):
        """Blank messages become "Commit <short id>"."""
        commit = self._commit(message="  \n")
        assert (
            build_comment(commit, CommitDelta(to_commit=commit.id))
            == "Commit abcdef1"
        )


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------


class TestCheckIn:
    """Tests for SyncEngine.check_in()."""

    def test_requires_target_path(self, source, fake_target, bridge_config):
        """The engine refuses to start without a target path."""
        with pytest.raises(ValueError, match="target_path"):
            SyncEngine(source, fake_target, bridge_config(target_path=None))

    def test_shallow_first_check_in(self, make_engine, fake_target, chain):
        """A shallow first check-in makes one revision with the full tree."""
        _, c2, _ = chain
        engine = make_engine()

        report = engine.check_in(c2)

        assert report.status == SyncStatus.CHECKED_IN
        assert report.revisions == [1]
        assert (report.final_revision, report.final_commit) == (1, c2)
        assert fake_target.contents() == {"a.txt": b"a1", "src/b.c": b"b1"}
        assert fake_target.lock_calls == []
        assert report.warnings == []

    def test_shallow_squashes_history(self, make_engine, fake_target, chain):
        """Shallow mode folds every commit into a single revision."""
        *_, c3 = chain
        make_engine().check_in(c3)

        ((revision, _, comment),) = fake_target.commits
        assert revision == 1
        assert comment.startswith("Squashed root..")
        assert comment.endswith("Edit b")
        assert fake_target.contents() == {"src/b.c": b"b2"}

    def test_resolves_head(self, make_engine, fake_target, source, chain):
        """With no commit given, HEAD is checked in."""
        *_, c3 = chain
        source.repo.refs[b"HEAD"] = c3.encode("ascii")
        report = make_engine().check_in()
        assert report.final_commit == c3

    def test_deep_check_in_one_revision_per_commit(
        self, make_engine, fake_target, chain, tmp_path: Path
    ):
        """Deep mode maps each commit to its own revision."""
        c1, c2, c3 = chain
        report = make_engine(deep=True).check_in(c3)

        assert report.revisions == [1, 2, 3]
        assert [c for _, _, c in fake_target.commits] == [
            "Add a",
            "Add b",
            "Edit b",
        ]
        assert fake_target.contents(1) == {"a.txt": b"a1"}
        assert fake_target.contents() == {"src/b.c": b"b2"}

        saved = RevisionMap(tmp_path / "state").load()
        assert saved.entries() == [(1, c1), (2, c2), (3, c3)]

    def test_deep_check_in_locks_and_unlocks(self, make_engine, fake_target, chain):
        """Deep runs hold the target lock for the whole run."""
        *_, c3 = chain
        engine = make_engine(deep=True)
        engine.check_in(c3)

        assert fake_target.lock_calls == [TARGET_PATH]
        assert fake_target.unlock_calls == [TARGET_PATH]
        assert SyncPhase.LOCKED in engine.phase_history

    def test_deep_without_lock(self, make_engine, fake_target, chain):
        """lock=False skips the lock and records the unlocked phase."""
        *_, c3 = chain
        engine = make_engine(deep=True, lock=False)
        engine.check_in(c3)

        assert fake_target.lock_calls == []
        assert SyncPhase.UNLOCKED in engine.phase_history

    def test_max_depth_folds_oldest(self, make_engine, fake_target, chain):
        """max_depth squashes the oldest commits into the first revision."""
        *_, c3 = chain
        report = make_engine(deep=True, max_depth=2).check_in(c3)

        assert report.revisions == [1, 2]
        assert fake_target.commits[0][2].startswith("Squashed root..")

    def test_incremental_check_in(self, make_engine, fake_target, chain):
        """A second run starts from the last mapped commit."""
        c1, _, c3 = chain
        make_engine().check_in(c1)
        report = make_engine().check_in(c3)

        assert report.status == SyncStatus.CHECKED_IN
        assert report.revisions == [2]
        (result,) = report.results
        assert result.from_commit == c1
        assert fake_target.contents() == {"src/b.c": b"b2"}

    def test_rerun_is_already_up_to_date(self, make_engine, fake_target, chain):
        """Checking in the mapped commit again does nothing."""
        *_, c3 = chain
        make_engine(deep=True).check_in(c3)

        report = make_engine(deep=True).check_in(c3)

        assert report.status == SyncStatus.ALREADY_UP_TO_DATE
        assert report.results == []
        assert (report.final_revision, report.final_commit) == (3, c3)
        assert len(fake_target.commits) == 3

    def test_unchanged_tree_is_skipped(
        self, make_engine, fake_target, commit_files
    ):
        """A delta with no tree changes produces no revision."""
        c1 = commit_files({"a.txt": b"a"})
        c2 = commit_files({"a.txt": b"a"}, parents=(c1,), message="Empty")

        report = make_engine(deep=True).check_in(c2)

        assert report.status == SyncStatus.CHECKED_IN
        assert len(report.applied) == 1
        assert len(report.skipped) == 1
        assert (report.final_revision, report.final_commit) == (1, c1)

    def test_working_folder_reset_before_every_delta(
        self, make_engine, fake_target, commit_files, tmp_path
    ):
        """Skipped deltas still start from a clean folder and no pending changes."""
        c1 = commit_files({"a.txt": b"a"})
        c2 = commit_files({"a.txt": b"a"}, parents=(c1,), message="Empty")

        make_engine(deep=True).check_in(c2)

        assert fake_target.undo_calls == 2
        assert list((tmp_path / "work").iterdir()) == []

    def test_commit_carries_source_commit(self, make_engine, fake_target, chain):
        """Each target commit receives the source commit it represents."""
        c1, c2, c3 = chain
        make_engine(deep=True).check_in(c3)

        assert [meta.id for meta in fake_target.commit_meta] == [c1, c2, c3]
        assert fake_target.commit_meta[0].author == "Dev <dev@example.com>"

    def test_relative_state_dir_lives_in_repository(
        self, fake_target, bridge_config, tmp_path
    ):
        """A relative state dir is placed in the repository's control dir."""
        repo = Repo.init(str(tmp_path / "repo"), mkdir=True)
        store = DulwichSourceStore(repo)

        engine = SyncEngine(store, fake_target, bridge_config(state_dir=".revbridge"))

        assert engine.revision_map.path == (
            Path(repo.controldir()) / ".revbridge" / "revmap_default.json"
        )

    def test_absolute_state_dir_kept(self, fake_target, bridge_config, tmp_path):
        """An absolute state dir is used as given."""
        store = DulwichSourceStore(Repo.init(str(tmp_path / "repo"), mkdir=True))
        engine = SyncEngine(store, fake_target, bridge_config())
        assert engine.revision_map.path.parent == tmp_path / "state"

    def test_case_only_folder_rename(self, make_engine, fake_target, commit_files):
        """Folder case changes are pended as a rename."""
        c1 = commit_files({"Docs/readme.md": b"r"})
        c2 = commit_files({"docs/readme.md": b"r"}, parents=(c1,))

        make_engine(deep=True).check_in(c2)

        _, ops, _ = fake_target.commits[1]
        assert [op.op for op in ops] == ["rename"]
        assert fake_target.contents() == {"docs/readme.md": b"r"}

    def test_executable_mode_change(self, make_engine, fake_target, commit_files):
        """A mode-only change is pended as an edit."""
        c1 = commit_files({"run.sh": b"#!/bin/sh"})
        c2 = commit_files(
            {"run.sh": (b"#!/bin/sh", FileMode.EXECUTABLE)}, parents=(c1,)
        )

        make_engine(deep=True).check_in(c2)

        data, mode, _ = fake_target.files[2][_server("run.sh")]
        assert mode == FileMode.EXECUTABLE
        assert data == b"#!/bin/sh"

    def test_merge_with_squash_list(self, make_engine, fake_target, commit_files):
        """A merge checks in through its non-squashed parent."""
        base = commit_files({"a": b"1"})
        side = commit_files({"a": b"1", "side": b"s"}, parents=(base,))
        main = commit_files({"a": b"2"}, parents=(base,))
        merge = commit_files(
            {"a": b"2", "side": b"s"}, parents=(main, side), message="Merge"
        )

        report = make_engine(deep=True, squash=[side[:8]]).check_in(merge)

        assert report.revisions == [1, 2, 3]
        assert fake_target.contents() == {"a": b"2", "side": b"s"}

    def test_non_linear_history_fails(self, make_engine, fake_target, commit_files):
        """A merge without a squash hint stops the run."""
        base = commit_files({"a": b"1"})
        left = commit_files({"a": b"2"}, parents=(base,))
        right = commit_files({"b": b"3"}, parents=(base,))
        merge = commit_files({"a": b"2", "b": b"3"}, parents=(left, right))
        engine = make_engine(deep=True)

        with pytest.raises(NonLinearHistoryError):
            engine.check_in(merge)

        assert fake_target.commits == []
        assert fake_target.unlock_calls == [TARGET_PATH]
        assert engine.phase_history[-2:] == [SyncPhase.CLEANUP, SyncPhase.ERROR]

    def test_auto_squash_non_linear_history(
        self, make_engine, fake_target, commit_files
    ):
        """auto_squash folds merges instead of failing."""
        base = commit_files({"a": b"1"})
        left = commit_files({"a": b"2"}, parents=(base,))
        right = commit_files({"b": b"3"}, parents=(base,))
        merge = commit_files({"a": b"2", "b": b"3"}, parents=(left, right))

        report = make_engine(deep=True, auto_squash=True).check_in(merge)

        assert report.status == SyncStatus.CHECKED_IN
        assert fake_target.contents() == {"a": b"2", "b": b"3"}

    def test_stale_pending_changes_undone(self, make_engine, fake_target, chain):
        """Leftover pending changes are undone before each delta."""
        *_, c3 = chain
        make_engine(deep=True).check_in(c3)
        assert fake_target.undo_calls == 3


class TestCheckInGuards:
    """Tests for the target-state guards."""

    def test_non_empty_target_refused(self, make_engine, fake_target, chain):
        """An unmapped target folder with content is refused."""
        fake_target.seed({_server("existing.txt"): b"x"})
        engine = make_engine()

        with pytest.raises(NotEmptyTargetError) as exc_info:
            engine.check_in(chain[0])

        assert exc_info.value.code == "not_empty_target"
        assert fake_target.commits == []
        assert fake_target.disposed == ["revbridge-1"]
        assert engine.phase == SyncPhase.ERROR

    def test_empty_existing_folder_accepted(self, make_engine, fake_target, chain):
        """An existing but empty target folder is fine for a first run."""
        fake_target.seed(folders=(TARGET_PATH,))
        report = make_engine().check_in(chain[0])
        assert report.status == SyncStatus.CHECKED_IN

    def test_unmapped_target_revision_requires_fetch(
        self, make_engine, fake_target, chain
    ):
        """Unmapped target revisions must be fetched first."""
        c1, c2, _ = chain
        make_engine().check_in(c1)
        fake_target.seed({_server("other.txt"): b"o"})

        with pytest.raises(FastForwardRequiredError):
            make_engine().check_in(c2)

    def test_deleted_target_detected(self, make_engine, fake_target, chain):
        """A deleted target folder stops the run."""
        c1, c2, _ = chain
        make_engine().check_in(c1)
        fake_target.seed(deleted=(TARGET_PATH,))

        with pytest.raises(TargetDeletedError):
            make_engine().check_in(c2)


class TestCheckInFailures:
    """Tests for warnings, errors and cleanup."""

    def test_concurrent_writer_warning(self, make_engine, fake_target, chain):
        """An unexpected revision number is reported as a warning."""
        fake_target.concurrent_commits = 1
        report = make_engine().check_in(chain[0])

        assert report.status == SyncStatus.CHECKED_IN
        assert report.revisions == [2]
        (warning,) = report.warnings
        assert warning.code == WarningCode.CONCURRENT_WRITER_DETECTED
        assert "Expected revision 1" in warning.message

    def test_pend_rejection_is_fatal(self, make_engine, fake_target, chain, tmp_path):
        """Rejected pends raise and leave no revision behind."""
        fake_target.accept_limit = 1
        engine = make_engine()

        with pytest.raises(PendRejectedError) as exc_info:
            engine.check_in(chain[1])

        assert exc_info.value.submitted == 2
        assert exc_info.value.accepted == 1
        assert fake_target.commits == []
        assert not (tmp_path / "state").exists()

    def test_failed_run_resumes_from_last_mapping(
        self, make_engine, fake_target, chain, tmp_path, monkeypatch
    ):
        """A failure mid-run keeps earlier mappings; the retry continues."""
        c1, _, c3 = chain
        submit = fake_target.pend
        calls: list[str] = []

        def reject_second(workspace, operations):
            calls.append(workspace.name)
            if len(calls) == 2:
                return 0
            return submit(workspace, operations)

        monkeypatch.setattr(fake_target, "pend", reject_second)
        with pytest.raises(PendRejectedError):
            make_engine(deep=True).check_in(c3)

        assert RevisionMap(tmp_path / "state").load().entries() == [(1, c1)]
        assert fake_target.unlock_calls == [TARGET_PATH]

        monkeypatch.setattr(fake_target, "pend", submit)
        report = make_engine(deep=True).check_in(c3)

        assert report.status == SyncStatus.CHECKED_IN
        assert report.revisions == [2, 3]
        assert report.results[0].from_commit == c1
        assert fake_target.contents() == {"src/b.c": b"b2"}

    def test_workspace_creation_failure(self, make_engine, fake_target, chain):
        """Workspace errors are wrapped in WorkspaceCreationError."""
        fake_target.fail_create = True
        engine = make_engine()

        with pytest.raises(WorkspaceCreationError) as exc_info:
            engine.check_in(chain[0])

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert engine.phase_history == [
            SyncPhase.INIT,
            SyncPhase.CLEANUP,
            SyncPhase.ERROR,
        ]

    def test_dispose_failure_is_a_warning(self, make_engine, fake_target, chain):
        """Failing to dispose the workspace only warns."""
        fake_target.fail_dispose = True
        report = make_engine().check_in(chain[0])

        assert report.status == SyncStatus.CHECKED_IN
        assert [w.code for w in report.warnings] == [WarningCode.CLEANUP_FAILED]

    def test_temporary_working_folder_removed(self, make_engine, fake_target, chain):
        """A temporary working folder is deleted after the run."""
        make_engine(working_folder=None).check_in(chain[1])

        (workspace,) = fake_target.workspaces
        assert Path(workspace.working_folder).name.startswith("revbridge-")
        assert not Path(workspace.working_folder).exists()

    def test_configured_working_folder_kept(
        self, make_engine, fake_target, chain, tmp_path
    ):
        """A configured working folder outlives the run."""
        make_engine().check_in(chain[1])
        assert (tmp_path / "work").is_dir()

    def test_phase_history_on_success(self, make_engine, chain):
        """Phases run in order and end with cleanup then done."""
        engine = make_engine()
        engine.check_in(chain[0])
        assert engine.phase_history == [
            SyncPhase.INIT,
            SyncPhase.WORKSPACE_READY,
            SyncPhase.UNLOCKED,
            SyncPhase.APPLYING_DELTA,
            SyncPhase.COMMITTED,
            SyncPhase.CLEANUP,
            SyncPhase.DONE,
        ]


class TestCheckInDryRun:
    """Tests for check_in(dry_run=True)."""

    def test_preview_changes_nothing(
        self, make_engine, fake_target, chain, tmp_path
    ):
        """A dry run pends, commits and maps nothing."""
        *_, c3 = chain
        report = make_engine(deep=True).check_in(c3, dry_run=True)

        assert report.status == SyncStatus.PREVIEW
        assert report.dry_run is True
        assert len(report.applied) == 3
        assert all(r.revision is None for r in report.results)
        assert fake_target.commits == []
        assert fake_target.lock_calls == []
        assert fake_target.disposed == ["revbridge-1"]
        assert not (tmp_path / "state").exists()

    def test_preview_lists_operations(self, make_engine, chain):
        """A dry run reports the operations it would pend."""
        _, c2, _ = chain
        report = make_engine().check_in(c2, dry_run=True)
        (result,) = report.results
        assert sorted(a.path for a in result.operations.adds) == [
            "a.txt",
            "src/b.c",
        ]


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


class TestFetch:
    """Tests for SyncEngine.fetch()."""

    def _seed_history(self, fake_target) -> None:
        fake_target.seed({_server("a.txt"): b"a"}, comment="First", owner="ann")
        fake_target.seed({"$/Other/x": b"x"})
        fake_target.seed({_server("src/b.c"): b"b"}, comment="Second", owner="bob")

    def test_fetch_creates_commits(self, make_engine, fake_target, source, flatten):
        """Each target revision becomes a commit on the previous one."""
        self._seed_history(fake_target)

        report = make_engine().fetch()

        assert report.status == SyncStatus.FETCHED
        assert report.revisions == [1, 3]
        first, second = (r.to_commit for r in report.results)
        assert source.commit(second).parents == (first,)
        assert source.commit(second).message == "Second"
        assert source.commit(first).author == "ann <ann>"
        assert sorted(flatten(source.tree(second))) == ["a.txt", "src/b.c"]
        assert (report.final_revision, report.final_commit) == (3, second)

    def test_fetch_updates_ref(self, make_engine, fake_target, source):
        """The fetch ref points at the last fetched commit."""
        self._seed_history(fake_target)
        report = make_engine().fetch()
        assert source.repo.refs[
            b"refs/remotes/revbridge/default"
        ] == report.final_commit.encode("ascii")

    def test_fetch_records_mappings(self, make_engine, fake_target, tmp_path):
        """Fetched revisions are saved to the revision map."""
        self._seed_history(fake_target)
        report = make_engine().fetch()

        saved = RevisionMap(tmp_path / "state").load()
        assert [rev for rev, _ in saved.entries()] == [1, 3]
        assert saved.last_mapped(validate=False) == (3, report.final_commit)

    def test_unchanged_files_are_not_downloaded(self, make_engine, fake_target):
        """Files with an unchanged revision stamp are reused."""
        self._seed_history(fake_target)
        make_engine().fetch()
        assert fake_target.downloads == [
            (_server("a.txt"), 1),
            (_server("src/b.c"), 3),
        ]

    def test_invalid_item_names_ignored(
        self, make_engine, fake_target, source, flatten
    ):
        """Items whose names cannot be stored in git are skipped."""
        fake_target.seed({_server("ok.txt"): b"ok", _server("what?.txt"): b"no"})

        report = make_engine().fetch()

        assert sorted(flatten(source.tree(report.final_commit))) == ["ok.txt"]
        assert (_server("what?.txt"), 1) not in fake_target.downloads

    def test_fetch_again_is_up_to_date(self, make_engine, fake_target):
        """A second fetch with nothing new is a no-op."""
        self._seed_history(fake_target)
        make_engine().fetch()

        report = make_engine().fetch()

        assert report.status == SyncStatus.ALREADY_UP_TO_DATE
        assert report.results == []

    def _interrupt_set_ref(self, monkeypatch, source, on_call: int) -> None:
        real_set_ref = source.set_ref
        calls = []

        def set_ref(name, commit_id):
            calls.append(commit_id)
            if len(calls) == on_call:
                raise RuntimeError("interrupted")
            real_set_ref(name, commit_id)

        monkeypatch.setattr(source, "set_ref", set_ref)

    def test_interrupted_fetch_resumes_after_mapped_revision(
        self, make_engine, fake_target, source, monkeypatch, tmp_path
    ):
        """A fetch stopped after the first mapping retries only the rest."""
        self._seed_history(fake_target)
        self._interrupt_set_ref(monkeypatch, source, on_call=1)

        with pytest.raises(RuntimeError, match="interrupted"):
            make_engine().fetch()

        saved = RevisionMap(tmp_path / "state").load()
        assert [rev for rev, _ in saved.entries()] == [1]
        assert b"refs/remotes/revbridge/default" not in source.repo.refs
        monkeypatch.undo()

        report = make_engine().fetch()

        assert report.revisions == [3]
        assert source.commit(report.final_commit).parents == (saved.entries()[0][1],)
        assert source.repo.refs[
            b"refs/remotes/revbridge/default"
        ] == report.final_commit.encode("ascii")

    def test_up_to_date_fetch_repairs_ref(
        self, make_engine, fake_target, source, monkeypatch, tmp_path
    ):
        """The ref catches up with the map even when nothing is new."""
        self._seed_history(fake_target)
        self._interrupt_set_ref(monkeypatch, source, on_call=2)

        with pytest.raises(RuntimeError, match="interrupted"):
            make_engine().fetch()
        monkeypatch.undo()

        report = make_engine().fetch()

        assert report.status == SyncStatus.ALREADY_UP_TO_DATE
        _, last_commit = RevisionMap(tmp_path / "state").load().entries()[-1]
        assert source.repo.refs[
            b"refs/remotes/revbridge/default"
        ] == last_commit.encode("ascii")

    def test_fetch_deleted_file(self, make_engine, fake_target, source, flatten):
        """Deleted target items disappear from the fetched tree."""
        fake_target.seed({_server("a"): b"1", _server("b"): b"2"})
        fake_target.seed(deleted=(_server("b"),))

        report = make_engine().fetch()

        assert report.revisions == [1, 2]
        assert [d.path for d in report.results[1].operations.deletes] == ["b"]
        assert list(flatten(source.tree(report.final_commit))) == ["a"]

    def test_fetch_after_check_in_then_check_in_is_noop(
        self, make_engine, fake_target, chain
    ):
        """Fetched commits are already mapped for the next check-in."""
        c1, _, _ = chain
        make_engine().check_in(c1)
        fake_target.seed({_server("from-elsewhere.txt"): b"e"})

        fetched = make_engine().fetch()
        assert fetched.revisions == [2]
        assert fake_target.downloads == [(_server("from-elsewhere.txt"), 2)]

        report = make_engine().check_in(fetched.final_commit)
        assert report.status == SyncStatus.ALREADY_UP_TO_DATE

    def test_empty_folders_dropped_by_default(
        self, make_engine, fake_target, source
    ):
        """Empty target folders are left out of the tree."""
        fake_target.seed({_server("a"): b"1"}, folders=(_server("empty"),))
        report = make_engine().fetch()
        names = [e.name for e in source.tree(report.final_commit).entries]
        assert names == ["a"]

    def test_empty_folders_kept_on_request(
        self, make_engine, fake_target, source
    ):
        """keep_empty_folders stores empty folders as empty trees."""
        fake_target.seed({_server("a"): b"1"}, folders=(_server("empty"),))
        report = make_engine(keep_empty_folders=True).fetch()
        names = [e.name for e in source.tree(report.final_commit).entries]
        assert names == ["a", "empty"]

    def test_dry_run_lists_revisions(
        self, make_engine, fake_target, source, tmp_path
    ):
        """A dry-run fetch lists revisions without writing anything."""
        self._seed_history(fake_target)

        report = make_engine().fetch(dry_run=True)

        assert report.status == SyncStatus.PREVIEW
        assert report.revisions == [1, 3]
        assert fake_target.downloads == []
        assert not (tmp_path / "state").exists()
        assert b"refs/remotes/revbridge/default" not in source.repo.refs
