"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_target_line`` -- one summary line per target.
- ``format_category_summary`` -- one category block.
- ``format_sync_report`` -- full post-sync summary.
- ``format_local_items`` -- ``--list-local`` listing.
- ``report_to_json`` -- structured dict for ``--json``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from .models import TargetStatus

if TYPE_CHECKING:
    from .models import CategorySummary, SourceItem, SyncRunReport, TargetResult

_STATUS_LABELS = {
    TargetStatus.SYNCED: "Synced",
    TargetStatus.PARTIAL: "Partially synced",
    TargetStatus.FAILED: "Failed",
    TargetStatus.SKIPPED: "Skipped",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_target_line(result: TargetResult, category: str) -> str:
    """Return the summary line of one target.

    ``No <category> outputs for <Name>.`` when nothing happened, otherwise
    ``<Status> <Name>: created N, updated N, skipped N, removed N, failed N``.
    """
    status = result.status
    if status == TargetStatus.SKIPPED:
        return f"No {category} outputs for {result.display_name}."
    c = result.counts
    return (
        f"{_STATUS_LABELS[status]} {result.display_name}: "
        f"created {c.created}, updated {c.updated}, skipped {c.skipped}, "
        f"removed {c.removed}, failed {c.failed}"
    )


def format_category_summary(summary: CategorySummary) -> str:
    """Format one category: header, messages, then a line per target."""
    lines: list[str] = []
    counts = summary.source_counts
    header = f"{summary.category.capitalize()} ({summary.source_path})"
    provenance = f"{counts.shared} shared, {counts.local} local"
    if counts.excluded_local:
        provenance += f", {counts.excluded_local} local excluded"
    lines.append(f"{header}: {provenance}")

    for message in summary.messages:
        lines.append(f"  {message}")
    for warning in summary.warnings:
        lines.append(f"  Warning: {warning}")

    for result in summary.results:
        lines.append(f"  {format_target_line(result, summary.category)}")
        for warning in result.warnings:
            lines.append(f"    Warning: {warning}")
        for error in result.errors:
            lines.append(f"    Error: {error}")

    return "\n".join(lines)


def format_sync_report(report: SyncRunReport) -> str:
    """Format a complete sync report as human-readable text.

    Args:
        report: The completed run report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    if report.dry_run:
        lines.append("DRY RUN -- No changes were made")
        lines.append("")

    for summary in report.summaries:
        lines.append(format_category_summary(summary))
        lines.append("")

    if not report.summaries:
        lines.append("Nothing to sync.")

    return "\n".join(lines).rstrip()


def format_local_items(items: Mapping[str, Sequence[SourceItem]]) -> str:
    """Format local source variants grouped by category."""
    lines: list[str] = []
    for category, local in items.items():
        lines.append(f"{category.capitalize()}: {len(local)} local")
        for item in local:
            lines.append(f"  {item.name} ({item.marker_type.value}): {item.source_path}")
    if not lines:
        lines.append("No local items found.")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def _result_to_json(result: TargetResult, category: str) -> dict:
    return {
        "target_id": result.target_id,
        "display_name": result.display_name,
        "status": result.status.value,
        "message": format_target_line(result, category),
        "counts": result.counts.model_dump(),
        "warnings": list(result.warnings),
        "errors": list(result.errors),
    }


def report_to_json(report: SyncRunReport) -> dict:
    """Convert a run report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with run info and one entry per category.
    """
    return {
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "had_failures": report.had_failures,
        "categories": [
            {
                "category": s.category,
                "source_path": s.source_path,
                "had_failures": s.had_failures,
                "source_counts": s.source_counts.model_dump(),
                "warnings": list(s.warnings),
                "messages": list(s.messages),
                "results": [_result_to_json(r, s.category) for r in s.results],
            }
            for s in report.summaries
        ],
    }
