"""Git <-> centralized revision store reconciliation engine.

Public API for carrying history between a content-addressed source
repository (git, via dulwich) and a path-versioned target system with
sequential revision numbers.

Architecture
------------
Reconciliation is **snapshot based**: the engine never replays patches.
For every pair of source commits it compares the two root trees and
derives path-level operations the target can replay; in the other
direction it rebuilds trees from flat target snapshots.  A persistent
revision map ties each target revision to the commit it represents.

Modules:

- ``engine``     -- ``SyncEngine``: check-in and fetch runs.
- ``deltas``     -- ``resolve_deltas``: which commit pairs to compare.
- ``analyzer``   -- ``analyze_difference``: tree-to-tree operations.
- ``operations`` -- submission order and in-memory application.
- ``builder``    -- ``TreeBuilder``: flat paths to nested trees.
- ``state``      -- ``RevisionMap``: revision <-> commit persistence.
- ``source``     -- ``DulwichSourceStore``: the git side.
- ``interfaces`` -- collaborator protocols (``TargetService`` etc.).
- ``models``     -- data contracts.
- ``errors``     -- ``BridgeError`` hierarchy.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from revbridge.config import bootstrap
    from revbridge.sync import DulwichSourceStore, SyncEngine
    from revbridge.sync import format_dry_run_preview, format_sync_report

    config = bootstrap({"target_path": "$/Project/Main", "deep": True})
    engine = SyncEngine(
        source=DulwichSourceStore.open("."),
        target=target_service,          # a TargetService implementation
        config=config,
    )

    # Preview first
    preview = engine.check_in("HEAD", dry_run=True)
    print(format_dry_run_preview(preview))

    report = engine.check_in("HEAD")
    print(format_sync_report(report))
"""

from .analyzer import analyze_difference, validate_case_sensitivity
from .builder import TreeBuilder, build_tree
from .deltas import DeltaMode, resolve_deltas
from .engine import SyncEngine
from .errors import BridgeError
from .interfaces import SourceStore, TargetService, WorkspaceHandle
from .models import (
    CommitDelta,
    OperationSet,
    SyncPhase,
    SyncReport,
    SyncStatus,
    SyncWarning,
    WarningCode,
)
from .operations import apply_operations, ordered_operations
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .source import DulwichSourceStore
from .state import RevisionMap

__all__ = [
    "BridgeError",
    "CommitDelta",
    "DeltaMode",
    "DulwichSourceStore",
    "OperationSet",
    "RevisionMap",
    "SourceStore",
    "SyncEngine",
    "SyncPhase",
    "SyncReport",
    "SyncStatus",
    "SyncWarning",
    "TargetService",
    "TreeBuilder",
    "WarningCode",
    "WorkspaceHandle",
    "analyze_difference",
    "apply_operations",
    "build_tree",
    "format_dry_run_preview",
    "format_sync_report",
    "ordered_operations",
    "report_to_json",
    "resolve_deltas",
    "validate_case_sensitivity",
]
