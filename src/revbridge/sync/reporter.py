"""Sync report formatting functions.

Provides human-readable and machine-readable output for bridge runs:

- ``format_sync_report`` -- full post-run summary.
- ``format_dry_run_preview`` -- per-delta operations a preview would submit.
- ``format_operations`` -- one line per operation, in submission order.
- ``report_to_json`` -- structured dict for JSON serialisation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import (
    AddOperation,
    DeleteOperation,
    EditOperation,
    OperationSet,
    RenameOperation,
)

if TYPE_CHECKING:
    from .models import DeltaResult, SyncReport


def _short(commit_id: str | None) -> str:
    return commit_id[:7] if commit_id else "(empty)"


def _delta_label(result: DeltaResult) -> str:
    return f"{_short(result.from_commit)}..{_short(result.to_commit)}"


# ------------------------------------------------------------------
# Operations
# ------------------------------------------------------------------


def format_operations(op_set: OperationSet) -> list[str]:
    """Describe each operation as ``[KIND] path`` in submission order."""
    lines: list[str] = []
    for op in op_set.ordered():
        match op:
            case DeleteOperation():
                lines.append(f"[DELETE] {op.path} ({op.kind.value})")
            case EditOperation() if not op.content_modified:
                lines.append(
                    f"[EDIT] {op.path} "
                    f"(mode {op.old_mode.value} -> {op.new_mode.value})"
                )
            case EditOperation():
                lines.append(f"[EDIT] {op.path}")
            case AddOperation():
                lines.append(f"[ADD] {op.path}")
            case RenameOperation():
                lines.append(f"[RENAME] {op.old_path} -> {op.new_path}")
    return lines


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete run report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The completed report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = (
        f"{report.direction.value.replace('_', '-')} report for "
        f"'{report.target_path}'"
    )
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Status: {report.status.value}: "
        f"{len(report.applied)} applied, {len(report.skipped)} skipped, "
        f"{len(report.warnings)} warnings"
    )
    lines.append("")

    if report.applied:
        lines.append("Revisions:")
        for r in report.applied:
            revision = r.revision if r.revision is not None else "-"
            lines.append(
                f"  {revision}: {_delta_label(r)} ({r.operations.summary()})"
            )
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} deltas (no changes)")
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for w in report.warnings:
            lines.append(f"  {w.code.value}: {w.message}")
        lines.append("")

    if report.final_revision is not None:
        lines.append(
            f"Final: revision {report.final_revision} = "
            f"{_short(report.final_commit)}"
        )

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format the operations each delta of a preview would submit.

    Args:
        report: A dry-run report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Target: {report.target_path}")
    lines.append("")

    for r in report.applied:
        if r.to_commit is None:
            lines.append(f"[REVISION {r.revision}]")
        else:
            lines.append(f"[{_delta_label(r)}]")
        for line in format_operations(r.operations):
            lines.append(f"  {line}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} deltas (unchanged)")
        lines.append("")

    if not report.applied:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def _operation_to_json(op) -> dict:
    return op.model_dump(mode="json", exclude_none=True)


def report_to_json(report: SyncReport) -> dict:
    """Convert a report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with run info, counts, and per-delta details.
    """
    results_list = []
    for r in report.results:
        results_list.append(
            {
                "from_commit": r.from_commit,
                "to_commit": r.to_commit,
                "revision": r.revision,
                "skipped": r.skipped,
                "operations": [
                    _operation_to_json(op) for op in r.operations.ordered()
                ],
            }
        )

    return {
        "direction": report.direction.value,
        "target_path": report.target_path,
        "status": report.status.value,
        "dry_run": report.dry_run,
        "phase": report.phase.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "final_revision": report.final_revision,
        "final_commit": report.final_commit,
        "counts": {
            "total": len(report.results),
            "applied": len(report.applied),
            "skipped": len(report.skipped),
            "warnings": len(report.warnings),
        },
        "warnings": [
            {"code": w.code.value, "message": w.message}
            for w in report.warnings
        ],
        "results": results_list,
    }
