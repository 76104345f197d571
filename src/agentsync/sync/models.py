"""Pydantic models for the multi-target sync engine.

Defines the data contracts used across all sync modules:

- ``ItemKind``, ``SourceType``, ``MarkerType``: source classification.
- ``SourceItem``: one content unit as discovered on disk.
- ``OutputContext``: run context handed to writers and converters.
- ``OutputStatus``: per-output outcome of a write or removal.
- ``ManagedOutputRecord``: a persisted manifest entry.
- ``TargetCounts``, ``TargetResult``, ``CategorySummary``,
  ``SyncRunReport``: aggregate results for a sync run.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Source classification
# ---------------------------------------------------------------------------


class ItemKind(str, Enum):
    """Content kinds the engine knows how to project."""

    SKILL = "skill"
    COMMAND = "command"
    SUBAGENT = "subagent"
    INSTRUCTION = "instruction"

    @property
    def category(self) -> str:
        """Plural category name used in config, CLI and manifest files."""
        return _CATEGORY_NAMES[self]

    @classmethod
    def from_category(cls, name: str) -> ItemKind:
        """Map ``skills``/``commands``/... (or a singular kind) to a kind.

        Raises:
            ValueError: If *name* is not a known category.
        """
        lowered = name.strip().lower()
        for kind, category in _CATEGORY_NAMES.items():
            if lowered in (category, kind.value):
                return kind
        raise ValueError(
            f"Unknown category '{name}'. Expected one of: "
            + ", ".join(_CATEGORY_NAMES.values())
        )


_CATEGORY_NAMES: dict[ItemKind, str] = {
    ItemKind.SKILL: "skills",
    ItemKind.COMMAND: "commands",
    ItemKind.SUBAGENT: "subagents",
    ItemKind.INSTRUCTION: "instructions",
}

ALL_KINDS: tuple[ItemKind, ...] = tuple(_CATEGORY_NAMES)


class SourceType(str, Enum):
    SHARED = "shared"
    LOCAL = "local"


class MarkerType(str, Enum):
    """How a local override is expressed on disk."""

    NONE = "none"
    PATH = "path"
    SUFFIX = "suffix"


class SourceItem(BaseModel):
    """One content unit as discovered on disk.

    Attributes:
        kind: Content kind.
        name: Display name (file stem, skill directory, or frontmatter
            ``name`` for subagents).
        identity: Case-folded logical key.  Equal identities of the same
            kind are variants of one logical item.
        source_path: Absolute path of the source file.
        source_type: ``shared`` or ``local``.
        marker_type: ``path`` (local subtree), ``suffix`` (``.local``
            filename) or ``none`` for shared items.
        declared_targets: Canonical target ids from frontmatter, or
            ``None`` meaning every target.
        raw_content: Full source text including frontmatter.
        content: Body text without the frontmatter block.
        frontmatter: Parsed frontmatter mapping.
        bundle_root: Skill directory to copy (skills only).
        output_dir: Absolute output directory (instructions only).
    """

    kind: ItemKind
    name: str
    identity: str
    source_path: str
    source_type: SourceType = SourceType.SHARED
    marker_type: MarkerType = MarkerType.NONE
    declared_targets: tuple[str, ...] | None = None
    raw_content: str = ""
    content: str = ""
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    bundle_root: str | None = None
    output_dir: str | None = None

    model_config = {"frozen": True}

    @property
    def is_local(self) -> bool:
        return self.source_type == SourceType.LOCAL


# ---------------------------------------------------------------------------
# Writer / converter context
# ---------------------------------------------------------------------------


class OutputContext(BaseModel):
    """Run context passed to writers, converters and renderers.

    Attributes:
        repo_root: Absolute repository root.
        home: Home directory used for ``{home}`` templates.
        agents_dir: Absolute agents source directory.
        target_id: Canonical id of the target being synced.
        target_name: Display name of the target.
        render_kind: Kind actually rendered (after fallback).
        default_output_path: Resolved default output path, if any.
        dry_run: When ``True`` writers must not touch the filesystem.
    """

    repo_root: str
    home: str
    agents_dir: str
    target_id: str
    target_name: str
    render_kind: ItemKind
    default_output_path: str | None = None
    dry_run: bool = False

    model_config = {"frozen": True}


class OutputStatus(str, Enum):
    """Outcome classification for a single output path."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    REMOVED = "removed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Manifest record
# ---------------------------------------------------------------------------


class ManagedOutputRecord(BaseModel):
    """One previously generated output, persisted across runs.

    Serialised with camelCase keys (``targetId``, ``outputPath``, ...) in
    the manifest file.  ``source_kind`` (``sourceType``) is the item kind
    that produced the output: ``skill``, ``command``, ``subagent`` or
    ``instruction``.
    """

    target_id: str = Field(alias="targetId")
    output_path: str = Field(alias="outputPath")
    source_kind: str = Field(alias="sourceType")
    source_id: str = Field(alias="sourceId")
    checksum: str
    last_synced_at: str = Field(alias="lastSyncedAt")
    writer_id: str | None = Field(default=None, alias="writerId")

    model_config = {"frozen": True, "populate_by_name": True}

    def to_entry(self) -> dict[str, Any]:
        """Return the JSON manifest entry (``writerId`` omitted when unset)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TargetStatus(str, Enum):
    SYNCED = "synced"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class TargetCounts(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    removed: int = 0
    failed: int = 0

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        return (
            self.created
            + self.updated
            + self.skipped
            + self.removed
            + self.failed
        )


class TargetResult(BaseModel):
    """Outcome of one category for one target.

    Attributes:
        target_id: Canonical target id.
        display_name: Human-readable target name.
        counts: Output counts.
        warnings: Non-fatal messages (never change the exit code).
        errors: Messages attributable to an item and this target.
    """

    target_id: str
    display_name: str
    counts: TargetCounts = Field(default_factory=TargetCounts)
    warnings: list[str] = []
    errors: list[str] = []

    model_config = {"frozen": True}

    @property
    def status(self) -> TargetStatus:
        """Derived status.

        ``skipped`` when nothing happened, ``partial``/``failed`` when
        errors or failures were recorded (depending on whether anything
        succeeded), ``synced`` otherwise.
        """
        total = self.counts.total
        if total == 0 and not self.errors:
            return TargetStatus.SKIPPED
        if self.errors or self.counts.failed > 0:
            if total > self.counts.failed:
                return TargetStatus.PARTIAL
            return TargetStatus.FAILED
        return TargetStatus.SYNCED


class SourceCounts(BaseModel):
    """Source provenance counts for one category."""

    shared: int = 0
    local: int = 0
    excluded_local: int = 0

    model_config = {"frozen": True}


class CategorySummary(BaseModel):
    """Aggregate results of one content category across targets."""

    category: str
    source_path: str
    results: list[TargetResult] = []
    warnings: list[str] = []
    messages: list[str] = []
    source_counts: SourceCounts = Field(default_factory=SourceCounts)

    model_config = {"frozen": True}

    @property
    def had_failures(self) -> bool:
        return any(
            r.status in (TargetStatus.FAILED, TargetStatus.PARTIAL)
            for r in self.results
        )

    def result_for(self, target_id: str) -> TargetResult | None:
        for result in self.results:
            if result.target_id == target_id:
                return result
        return None


class SyncRunReport(BaseModel):
    """Aggregate report for a full sync run.

    Attributes:
        dry_run: Whether this was a dry-run (no changes applied).
        summaries: One summary per synced category.
        started_at: ISO 8601 timestamp when sync started.
        completed_at: ISO 8601 timestamp when sync completed.
    """

    dry_run: bool = False
    summaries: list[CategorySummary] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def had_failures(self) -> bool:
        return any(s.had_failures for s in self.summaries)

    def summary_for(self, kind: ItemKind) -> CategorySummary | None:
        for summary in self.summaries:
            if summary.category == kind.category:
                return summary
        return None
