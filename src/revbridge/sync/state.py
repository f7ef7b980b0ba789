"""Revision map persistence.

The ``RevisionMap`` records which source commit each synchronized target
revision corresponds to.  It lives in a JSON file under the state
directory (``revmap_{name}.json``), one file per bridged repository, and
is written after every unit of work so an aborted run keeps every mapping
it completed.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **High-water mark** -- the highest mapped revision is stored
  explicitly; lookups walk downward from it.
* **Validated lookups** -- with a ``commit_exists`` callback, entries
  whose commit has disappeared from the source store (history rewritten,
  repository re-cloned) are skipped instead of trusted.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class RevisionMap:
    """Bidirectional revision <-> commit association.

    Args:
        state_dir: Directory holding the map file (created on save).
        name: Map name, used in the filename.
        commit_exists: Optional predicate used by validated lookups.
    """

    def __init__(
        self,
        state_dir: Path,
        name: str = "default",
        commit_exists: Callable[[str], bool] | None = None,
    ) -> None:
        self._state_dir = Path(state_dir)
        self.name = name
        self.commit_exists = commit_exists
        self._commits: dict[int, str] = {}
        self._high_water: int | None = None
        self.last_saved: str | None = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._state_dir / f"revmap_{self.name}.json"

    def load(self) -> RevisionMap:
        """Load entries from disk; a missing file yields an empty map.

        Raises:
            ValueError: If the file has an unsupported format version.
        """
        self._commits = {}
        self._high_water = None
        if not self.path.exists():
            return self

        with open(self.path, encoding="utf-8") as fh:
            data = json.load(fh)

        version = data.get("version")
        if version != FORMAT_VERSION:
            raise ValueError(
                f"Unsupported revision map version {version!r} in {self.path}"
            )
        self._commits = {
            int(rev): commit for rev, commit in data.get("entries", {}).items()
        }
        self._high_water = data.get("high_water")
        self.last_saved = data.get("last_saved")
        logger.debug(
            "Loaded %d mapping(s) from %s", len(self._commits), self.path
        )
        return self

    def save(self) -> None:
        """Persist the map atomically, creating the state dir if needed."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        self.last_saved = datetime.now(timezone.utc).isoformat()
        data = {
            "version": FORMAT_VERSION,
            "name": self.name,
            "last_saved": self.last_saved,
            "high_water": self._high_water,
            "entries": {
                str(rev): commit
                for rev, commit in sorted(self._commits.items())
            },
        }

        fd, tmp_path = tempfile.mkstemp(dir=str(self._state_dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_commit(
        self, revision: int, commit_id: str, *, overwrite: bool = False
    ) -> None:
        """Record that *revision* corresponds to *commit_id*.

        Raises:
            ValueError: If *revision* is already mapped to a different
                commit and *overwrite* is not set.
        """
        existing = self._commits.get(revision)
        if existing is not None and existing != commit_id and not overwrite:
            raise ValueError(
                f"Revision {revision} is already mapped to {existing}"
            )
        self._commits[revision] = commit_id
        if self._high_water is None or revision > self._high_water:
            self._high_water = revision

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._commits)

    @property
    def high_water(self) -> int | None:
        """Highest revision ever mapped."""
        return self._high_water

    def entries(self) -> list[tuple[int, str]]:
        """All mappings, oldest revision first."""
        return sorted(self._commits.items())

    def commit_for(self, revision: int, *, validate: bool = False) -> str | None:
        """Commit mapped to exactly *revision*, or ``None``."""
        commit = self._commits.get(revision)
        if commit is None or (validate and not self._exists(commit)):
            return None
        return commit

    def revision_for(self, commit_id: str) -> int | None:
        """Highest revision mapped to *commit_id*, or ``None``."""
        revisions = [r for r, c in self._commits.items() if c == commit_id]
        return max(revisions) if revisions else None

    def nearest_previous_mapped(
        self, revision: int, *, validate: bool = False
    ) -> tuple[int, str] | None:
        """Latest mapping strictly older than *revision*."""
        for rev in sorted(self._commits, reverse=True):
            if rev >= revision:
                continue
            commit = self._commits[rev]
            if validate and not self._exists(commit):
                logger.debug(
                    "Skipping revision %d: commit %s no longer exists",
                    rev,
                    commit,
                )
                continue
            return rev, commit
        return None

    def last_mapped(self, *, validate: bool = True) -> tuple[int, str] | None:
        """Latest mapping at or below the high-water mark."""
        if self._high_water is None:
            return None
        return self.nearest_previous_mapped(
            self._high_water + 1, validate=validate
        )

    def _exists(self, commit_id: str) -> bool:
        if self.commit_exists is None:
            return True
        return self.commit_exists(commit_id)
