"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync passes:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run plan grouped by action.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict

from .models import RecordState, SyncAction, SyncReport, SyncResult

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _issue_ref(result: SyncResult) -> str:
    if result.issue_number is None:
        return "(no issue)"
    if result.issue_number < 0:
        return "(new issue)"
    return f"#{result.issue_number}"


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Skipped records are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report ({report.direction})"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} records: "
        f"{len(report.created)} created, "
        f"{len(report.updated_downstream)} updated in GitHub, "
        f"{len(report.updated_upstream)} updated in JPD, "
        f"{len(report.orphans)} orphaned, {len(report.errors)} errors"
    )
    lines.append("")

    sections = (
        ("Created:", report.created),
        ("Updated in GitHub:", report.updated_downstream),
        ("Updated in JPD:", report.updated_upstream),
    )
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            suffix = f" ({r.detail})" if r.detail else ""
            lines.append(f"  {r.key} -> {_issue_ref(r)}{suffix}")
        lines.append("")

    if report.orphans:
        lines.append("Orphaned issues (JPD idea no longer exists):")
        for r in report.orphans:
            lines.append(f"  {_issue_ref(r)} tracks {r.key}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.key}: {r.error}")
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for warning in report.warnings:
            lines.append(f"  {warning}")
        lines.append("")

    if report.comments_synced:
        lines.append(f"Comments mirrored: {report.comments_synced}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} records")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run plan grouped by action type.

    Each planned action is shown as ``KEY -> #N (state)``.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines = ["DRY RUN -- No changes will be made", ""]

    groups: dict[SyncAction, list[SyncResult]] = defaultdict(list)
    for r in report.results:
        if r.success and r.state != RecordState.ORPHAN_DOWNSTREAM:
            groups[r.action].append(r)

    for action in (
        SyncAction.CREATE,
        SyncAction.UPDATE_DOWNSTREAM,
        SyncAction.UPDATE_UPSTREAM,
    ):
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper().replace('_', ' ')}]")
        for r in groups[action]:
            lines.append(f"  {r.key} -> {_issue_ref(r)} ({r.state.value})")
        lines.append("")

    if report.orphans:
        lines.append(f"Orphans: {len(report.orphans)} (left untouched)")
        lines.append("")

    if report.errors:
        lines.append("Would fail:")
        for r in report.errors:
            lines.append(f"  {r.key}: {r.error}")
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, []))
    if skip_count:
        lines.append(f"Skipped: {skip_count} records (unchanged or excluded)")
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with pass info, counts, and per-record details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "key": r.key,
            "issue_number": r.issue_number,
            "state": r.state.value,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        if r.detail:
            entry["detail"] = r.detail
        results_list.append(entry)

    return {
        "direction": report.direction,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "updated_downstream": len(report.updated_downstream),
            "updated_upstream": len(report.updated_upstream),
            "orphans": len(report.orphans),
            "errors": len(report.errors),
            "skipped": len(report.skipped),
            "comments": report.comments_synced,
        },
        "warnings": list(report.warnings),
        "results": results_list,
    }
