"""Multi-target sync engine.

Projects skills, commands, subagents and instruction files kept under one
``agents/`` directory into the native layouts of several coding-agent
tools (targets).

Architecture
------------
Every run rebuilds its candidates from scratch: sources are discovered,
the authoritative variant of each item is chosen, every (item, target)
pair becomes an output candidate, overlapping candidates are settled, and
the survivors are written.  A per-category manifest remembers what was
written and its checksum so stale outputs can be removed without ever
destroying a file the user edited by hand.

Modules:

- ``models``       -- ``SourceItem``, ``ManagedOutputRecord``,
  ``TargetResult``, ``CategorySummary``, ``SyncRunReport``: data contracts.
- ``targets``      -- built-in targets, ``TargetRegistry`` and
  ``resolve_effective_targets``.
- ``precedence``   -- local-path > local-suffix > shared.
- ``paths``        -- output path templates and placeholder validation.
- ``renderers``    -- built-in content rendering per kind.
- ``candidates``   -- ``CandidateBuilder``: (item, target) -> candidate.
- ``collisions``   -- ``CollisionResolver``: shared groups and conflicts.
- ``writers`` / ``converters`` -- the write and conversion contracts.
- ``materializer`` -- ``Materializer``: write candidates, checksum outputs.
- ``manifest``     -- ``ManagedOutputManifest`` and the removal pass.
- ``hooks``        -- ``HookRunner`` and hook implementations.
- ``engine``       -- ``SyncOrchestrator``: one full run.
- ``reporter``     -- human-readable and JSON report formatting.

``SyncOrchestrator`` is imported from ``agentsync.sync.engine`` because it
depends on the source catalogs, which themselves use this package.

Usage example
-------------
::

    from pathlib import Path
    from agentsync.config_schema import build_config
    from agentsync.sync import format_sync_report
    from agentsync.sync.engine import SyncOrchestrator

    orchestrator = SyncOrchestrator.from_config(Path("."), build_config({}))

    # Dry-run first to preview changes
    preview = orchestrator.run(dry_run=True)
    print(format_sync_report(preview))

    report = orchestrator.run(remove_missing=True)
    print(format_sync_report(report))
"""

from .manifest import ManagedOutputManifest
from .models import (
    CategorySummary,
    ItemKind,
    ManagedOutputRecord,
    SourceItem,
    SyncRunReport,
    TargetResult,
    TargetStatus,
)
from .reporter import (
    format_local_items,
    format_sync_report,
    report_to_json,
)
from .targets import TargetRegistry, resolve_effective_targets

__all__ = [
    "CategorySummary",
    "ItemKind",
    "ManagedOutputManifest",
    "ManagedOutputRecord",
    "SourceItem",
    "SyncRunReport",
    "TargetRegistry",
    "TargetResult",
    "TargetStatus",
    "format_local_items",
    "format_sync_report",
    "report_to_json",
    "resolve_effective_targets",
]
