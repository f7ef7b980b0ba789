"""Source store adapter over a git repository (dulwich).

``DulwichSourceStore`` implements ``SourceStore`` on top of any dulwich
repository: an on-disk ``Repo`` for real use, or a ``MemoryRepo`` for
tests and dry runs.  Object ids cross this boundary as lowercase hex
``str``; dulwich's ``bytes`` ids never leak into the engine.

Only regular and executable blobs and subtrees are surfaced.  Symlinks
and submodule entries are skipped with a log line, since the target
system has no equivalent.
"""

from __future__ import annotations

import logging
import stat
from collections import deque
from collections.abc import Iterable, Sequence
from pathlib import Path

from dulwich.objects import S_ISGITLINK, Blob
from dulwich.objects import Commit as GitCommit
from dulwich.objects import Tag as GitTag
from dulwich.objects import Tree as GitTree
from dulwich.repo import BaseRepo, MemoryRepo, Repo

from revbridge.sync.models import Commit, EntryKind, FileMode, Tree, TreeEntry

logger = logging.getLogger(__name__)

MODE_REGULAR = 0o100644
MODE_EXECUTABLE = 0o100755
MODE_TREE = 0o040000

DEFAULT_IDENTITY = "revbridge <revbridge@localhost>"

_REF_PREFIXES = (b"", b"refs/heads/", b"refs/tags/", b"refs/remotes/")


def git_mode(entry: TreeEntry) -> int:
    """Git file mode for a tree entry."""
    if entry.is_tree:
        return MODE_TREE
    if entry.mode == FileMode.EXECUTABLE:
        return MODE_EXECUTABLE
    return MODE_REGULAR


def file_mode(raw_mode: int) -> FileMode:
    """``FileMode`` for a git blob mode."""
    if raw_mode & 0o111:
        return FileMode.EXECUTABLE
    return FileMode.REGULAR


class DulwichSourceStore:
    """``SourceStore`` backed by a dulwich repository.

    Args:
        repo: Any dulwich repository.
        identity: Author/committer used for commits created by a fetch.
    """

    def __init__(
        self, repo: BaseRepo, identity: str = DEFAULT_IDENTITY
    ) -> None:
        self.repo = repo
        self.identity = identity

    @classmethod
    def open(cls, path: str | Path, **kwargs) -> DulwichSourceStore:
        """Open the repository at *path*."""
        return cls(Repo(str(path)), **kwargs)

    @classmethod
    def in_memory(cls, **kwargs) -> DulwichSourceStore:
        """Create a store over an empty ``MemoryRepo``."""
        return cls(MemoryRepo(), **kwargs)

    @property
    def control_dir(self) -> Path | None:
        """The repository's control directory, or None when in memory."""
        if isinstance(self.repo, Repo):
            return Path(self.repo.controldir())
        return None

    def _get(self, object_id: str):
        return self.repo.object_store[object_id.encode("ascii")]

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def resolve(self, ref_or_id: str) -> Commit:
        """Return the commit named by a ref, a full id or a unique prefix.

        Raises:
            KeyError: If nothing matches, or a prefix is ambiguous.
        """
        raw = ref_or_id.encode("utf-8")
        store = self.repo.object_store

        if len(raw) == 40 and raw in store:
            return self.commit(ref_or_id)

        for prefix in _REF_PREFIXES:
            name = prefix + raw
            if name in self.repo.refs:
                return self.commit(self._peel(self.repo.refs[name]))

        matches = [
            sha
            for sha in store
            if sha.startswith(raw.lower())
            and isinstance(store[sha], GitCommit)
        ]
        if len(matches) == 1:
            return self.commit(matches[0].decode("ascii"))
        if matches:
            raise KeyError(f"Ambiguous commit prefix {ref_or_id!r}")
        raise KeyError(f"Unknown ref or commit {ref_or_id!r}")

    def _peel(self, sha: bytes) -> str:
        obj = self.repo.object_store[sha]
        while isinstance(obj, GitTag):
            obj = self.repo.object_store[obj.object[1]]
        return obj.id.decode("ascii")

    def commit(self, commit_id: str) -> Commit:
        raw = self._get(commit_id)
        if not isinstance(raw, GitCommit):
            raise KeyError(f"{commit_id} is not a commit")
        encoding = (raw.encoding or b"utf-8").decode("ascii")
        return Commit(
            id=raw.id.decode("ascii"),
            parents=tuple(p.decode("ascii") for p in raw.parents),
            tree_id=raw.tree.decode("ascii"),
            author=raw.author.decode(encoding, "replace"),
            committer=raw.committer.decode(encoding, "replace"),
            author_time=raw.author_time,
            commit_time=raw.commit_time,
            message=raw.message.decode(encoding, "replace"),
        )

    def parents(self, commit_id: str) -> list[str]:
        return list(self.commit(commit_id).parents)

    def tree(self, commit_id: str) -> Tree:
        return self.read_tree(self.commit(commit_id).tree_id)

    def read_tree(self, tree_id: str) -> Tree:
        raw = self._get(tree_id)
        if not isinstance(raw, GitTree):
            raise KeyError(f"{tree_id} is not a tree")

        entries: list[TreeEntry] = []
        for item in raw.items():
            name = item.path.decode("utf-8")
            sha = item.sha.decode("ascii")
            if stat.S_ISDIR(item.mode):
                entries.append(
                    TreeEntry(name=name, kind=EntryKind.TREE, content_id=sha)
                )
            elif S_ISGITLINK(item.mode) or stat.S_ISLNK(item.mode):
                logger.info(
                    "Ignoring %s entry %r in tree %s",
                    "submodule" if S_ISGITLINK(item.mode) else "symlink",
                    name,
                    tree_id,
                )
            else:
                entries.append(
                    TreeEntry(
                        name=name,
                        kind=EntryKind.BLOB,
                        content_id=sha,
                        mode=file_mode(item.mode),
                    )
                )
        entries.sort(key=lambda e: e.name)
        return Tree(id=tree_id, entries=tuple(entries))

    def blob(self, blob_id: str) -> bytes:
        raw = self._get(blob_id)
        if not isinstance(raw, Blob):
            raise KeyError(f"{blob_id} is not a blob")
        return raw.data

    def has_object(self, object_id: str) -> bool:
        return object_id.encode("ascii") in self.repo.object_store

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Breadth-first search from *descendant* toward *ancestor*."""
        seen = {descendant}
        queue = deque([descendant])
        while queue:
            current = queue.popleft()
            if current == ancestor:
                return True
            for parent in self.parents(current):
                if parent not in seen:
                    seen.add(parent)
                    queue.append(parent)
        return False

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def insert_blob(self, data: bytes) -> str:
        blob = Blob.from_string(data)
        self.repo.object_store.add_object(blob)
        return blob.id.decode("ascii")

    def insert_tree(self, entries: Iterable[TreeEntry]) -> str:
        tree = GitTree()
        for entry in entries:
            tree.add(
                entry.name.encode("utf-8"),
                git_mode(entry),
                entry.content_id.encode("ascii"),
            )
        self.repo.object_store.add_object(tree)
        return tree.id.decode("ascii")

    def insert_commit(
        self,
        tree_id: str,
        parents: Sequence[str],
        message: str,
        author: str | None = None,
        commit_time: int = 0,
    ) -> str:
        identity = (author or self.identity).encode("utf-8")
        commit = GitCommit()
        commit.tree = tree_id.encode("ascii")
        commit.parents = [p.encode("ascii") for p in parents]
        commit.author = commit.committer = identity
        commit.author_time = commit.commit_time = commit_time
        commit.author_timezone = commit.commit_timezone = 0
        commit.encoding = b"UTF-8"
        commit.message = message.encode("utf-8")
        self.repo.object_store.add_object(commit)
        return commit.id.decode("ascii")

    def set_ref(self, name: str, commit_id: str) -> None:
        self.repo.refs[name.encode("utf-8")] = commit_id.encode("ascii")
        logger.info("Updated %s to %s", name, commit_id)
