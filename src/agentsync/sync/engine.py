"""Sync orchestrator: one full run across categories and targets.

The ``SyncOrchestrator`` ties together the catalog, precedence, candidate
builder, collision resolver, materializer, hooks and manifests.  It:

1. Validates ``only``/``skip`` against the target registry.
2. Loads each category's catalog and applies precedence.  A
   ``SourceError`` aborts that category before anything is written.
3. Builds candidates, running converters, and resolves collisions over
   every concrete output path across all categories.
4. Runs the global ``before_sync`` hooks.
5. Per category and target: runs the target hooks and materialises the
   winning candidates, optionally in a bounded thread pool.
6. Per category: runs the removal pass and saves the manifest once.
7. Runs the global ``after_sync`` hooks.

Error handling is per item: a failing converter, writer, hook or
unresolvable path never aborts sibling items or other targets.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from pydantic import BaseModel

from agentsync.config_schema import UnifiedConfig
from agentsync.errors import HookError, SourceError
from agentsync.sources.catalog import SourceCatalog
from agentsync.sources.local import shared_root
from agentsync.sync.candidates import CandidateBuilder, OutputCandidate
from agentsync.sync.collisions import CollisionResolver
from agentsync.sync.hooks import HookContext, HookPhase, HookRunner, HookSet
from agentsync.sync.manifest import (
    ConfirmRemoval,
    ManagedOutputManifest,
    RemovalAction,
    utc_now,
)
from agentsync.sync.materializer import Materializer, MaterializeResult
from agentsync.sync.models import (
    ALL_KINDS,
    CategorySummary,
    ItemKind,
    ManagedOutputRecord,
    OutputStatus,
    SourceCounts,
    SyncRunReport,
    TargetCounts,
    TargetResult,
)
from agentsync.sync.paths import compare_key
from agentsync.sync.precedence import resolve_effective_items
from agentsync.sync.targets import (
    ResolvedTarget,
    TargetRegistry,
    resolve_effective_targets,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("~/.agentsync/state")


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


class _Tally:
    """Mutable counters of one (category, target) pair during a run."""

    def __init__(self, target: ResolvedTarget, category: str) -> None:
        self.target = target
        self.category = category
        self.counts: dict[str, int] = {s.value: 0 for s in OutputStatus}
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def count(self, status: OutputStatus, n: int = 1) -> None:
        self.counts[status.value] += n

    def warn(self, message: str) -> None:
        logger.warning("[%s/%s] %s", self.category, self.target.id, message)
        self.warnings.append(message)

    def error(self, message: str) -> None:
        logger.error("[%s/%s] %s", self.category, self.target.id, message)
        self.errors.append(message)

    def to_result(self) -> TargetResult:
        return TargetResult(
            target_id=self.target.id,
            display_name=self.target.display_name,
            counts=TargetCounts(**self.counts),
            warnings=list(self.warnings),
            errors=list(self.errors),
        )


class _CategoryRun:
    """Per-category state carried through the run."""

    def __init__(
        self,
        kind: ItemKind,
        source_path: Path,
        targets: Sequence[ResolvedTarget],
        manifest: ManagedOutputManifest,
    ) -> None:
        self.kind = kind
        self.source_path = source_path
        self.manifest = manifest
        self.tallies = {t.id: _Tally(t, kind.category) for t in targets}
        self.messages: list[str] = []
        self.warnings: list[str] = []
        self.source_counts = SourceCounts()
        self.aborted = False
        self.aborted_targets: set[str] = set()
        self.active: set[tuple[str, str]] = set()
        self.protected: set[tuple[str, str]] = set()

    def protect(self, candidate: OutputCandidate) -> None:
        self.protected.add((candidate.target_id, candidate.source_id))

    def to_summary(self) -> CategorySummary:
        return CategorySummary(
            category=self.kind.category,
            source_path=str(self.source_path),
            results=[t.to_result() for t in self.tallies.values()],
            warnings=list(self.warnings),
            messages=list(self.messages),
            source_counts=self.source_counts,
        )


class _ItemOutcome(BaseModel):
    """What happened to one candidate inside a target's item loop."""

    candidate: OutputCandidate
    result: MaterializeResult | None = None
    hook_error: str | None = None
    after_error: str | None = None
    halted: bool = False

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Run a full sync of one repository.

    Args:
        repo_root: Absolute repository root.
        registry: Target registry for the run.
        agents_dir: Agents source directory (default ``<repo>/agents``).
        state_dir: Manifest directory (default ``~/.agentsync/state``).
        global_hooks: Hooks from the top-level ``hooks`` section.
        max_workers: Parallel materialisations per target (1 = serial).
        home: Home directory for ``{home}`` templates.
    """

    def __init__(
        self,
        repo_root: Path,
        registry: TargetRegistry,
        agents_dir: Path | None = None,
        state_dir: Path | None = None,
        global_hooks: HookSet | None = None,
        max_workers: int = 1,
        home: Path | None = None,
    ) -> None:
        self.repo_root = repo_root.resolve()
        self.registry = registry
        self.agents_dir = (agents_dir or self.repo_root / "agents").resolve()
        self.state_dir = (state_dir or DEFAULT_STATE_DIR).expanduser()
        self.hooks = HookRunner(global_hooks)
        self.max_workers = max(1, max_workers)
        self.home = home or Path.home()

    @classmethod
    def from_config(
        cls,
        repo_root: Path,
        config: UnifiedConfig,
        agents_dir: Path | None = None,
        home: Path | None = None,
        registry: TargetRegistry | None = None,
    ) -> SyncOrchestrator:
        """Create an orchestrator from validated configuration.

        Raises:
            ConfigError: If the registry or a hook reference is invalid.
        """
        repo_root = repo_root.resolve()
        if agents_dir is None:
            agents_dir = Path(config.sync.agents_dir).expanduser()
            if not agents_dir.is_absolute():
                agents_dir = repo_root / agents_dir
        return cls(
            repo_root=repo_root,
            registry=registry or TargetRegistry.from_config(config),
            agents_dir=agents_dir,
            state_dir=Path(config.sync.state_dir),
            global_hooks=HookSet.from_config(config.hooks),
            max_workers=config.sync.max_workers,
            home=home,
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(
        self,
        categories: Sequence[ItemKind] | None = None,
        only: Sequence[str] = (),
        skip: Sequence[str] = (),
        remove_missing: bool = False,
        include_local: bool = True,
        exclude_local: Collection[ItemKind] = (),
        dry_run: bool = False,
        non_interactive: bool = True,
        confirm_removal: ConfirmRemoval | None = None,
    ) -> SyncRunReport:
        """Execute a full sync run.

        Args:
            categories: Kinds to sync (default: all four).
            only: Restrict to these targets (ids or aliases).
            skip: Exclude these targets; ignored when *only* is set.
            remove_missing: Delete managed outputs whose source is gone.
            include_local: Include local source variants.
            exclude_local: Kinds whose local variants are excluded.
            dry_run: Compute statuses without writing anything.
            non_interactive: Never prompt before removing modified outputs.
            confirm_removal: Callback asked about modified outputs.

        Returns:
            A ``SyncRunReport`` with one summary per category.

        Raises:
            ConfigError: If *only* or *skip* names an unknown target.
        """
        started_at = utc_now()
        only_ids = self.registry.canonical_ids(only)
        skip_ids = self.registry.canonical_ids(skip)
        selected_ids = resolve_effective_targets(
            None, only_ids, skip_ids, self.registry
        )
        selected = [self.registry.require(t) for t in selected_ids]
        kinds = [k for k in ALL_KINDS if categories is None or k in categories]
        logger.info(
            "Syncing %s to %s%s",
            ", ".join(k.category for k in kinds),
            ", ".join(selected_ids) or "(no targets)",
            " (dry run)" if dry_run else "",
        )

        catalog = SourceCatalog(self.repo_root, self.agents_dir, self.registry)
        builder = CandidateBuilder(
            self.repo_root, self.agents_dir, self.registry, self.home, dry_run
        )

        runs: dict[ItemKind, _CategoryRun] = {}
        candidates: list[OutputCandidate] = []
        for kind in kinds:
            run = _CategoryRun(
                kind,
                shared_root(self.agents_dir, kind),
                selected,
                ManagedOutputManifest.for_repository(
                    self.state_dir, self.repo_root, kind.category
                ).load(),
            )
            runs[kind] = run
            candidates.extend(
                self._build_category(
                    run,
                    catalog,
                    builder,
                    only_ids,
                    skip_ids,
                    include_local and kind not in exclude_local,
                )
            )

        resolution = CollisionResolver().resolve(candidates)
        for failure in resolution.failures:
            run = runs[failure.candidate.item.kind]
            run.tallies[failure.candidate.target_id].count(OutputStatus.FAILED)
            run.tallies[failure.candidate.target_id].error(failure.message)
            run.protect(failure.candidate)
        in_place = [c for c in resolution.winners if c.satisfied]
        for candidate in [*resolution.satisfied, *in_place]:
            run = runs[candidate.item.kind]
            run.tallies[candidate.target_id].count(OutputStatus.SKIPPED)
            for path in candidate.output_paths():
                run.active.add((candidate.target_id, compare_key(path)))
            run.protect(candidate)
        pending = [c for c in resolution.winners if not c.satisfied]

        global_ok = self._run_global(HookPhase.BEFORE_SYNC, runs, dry_run)
        materializer = Materializer(self.repo_root, dry_run)

        for kind, run in runs.items():
            if run.aborted:
                continue
            if not global_ok:
                run.aborted_targets.update(selected_ids)
                continue
            for target in selected:
                winners = [
                    c
                    for c in pending
                    if c.target_id == target.id and c.item.kind == kind
                ]
                if winners:
                    self._sync_target(run, target, winners, materializer, dry_run)

        for run in runs.values():
            if run.aborted:
                continue
            self._remove_orphans(
                run,
                selected_ids,
                remove_missing,
                non_interactive,
                confirm_removal,
                dry_run,
            )
            if not dry_run:
                run.manifest.save()

        if global_ok:
            self._run_global(HookPhase.AFTER_SYNC, runs, dry_run)

        return SyncRunReport(
            dry_run=dry_run,
            summaries=[run.to_summary() for run in runs.values()],
            started_at=started_at,
            completed_at=utc_now(),
        )

    # ------------------------------------------------------------------
    # Catalog and candidates
    # ------------------------------------------------------------------

    def _build_category(
        self,
        run: _CategoryRun,
        catalog: SourceCatalog,
        builder: CandidateBuilder,
        only_ids: Sequence[str],
        skip_ids: Sequence[str],
        include_local: bool,
    ) -> list[OutputCandidate]:
        try:
            loaded = catalog.load_items(run.kind, include_local=include_local)
            run.source_counts = loaded.source_counts
            run.messages.extend(loaded.messages)
            items = resolve_effective_items(loaded.items)
            batch = builder.build_all(items, only_ids, skip_ids)
        except SourceError as exc:
            run.aborted = True
            for tally in run.tallies.values():
                tally.error(str(exc))
            return []

        logger.info("Found %d %s", len(items), run.kind.category)
        for failure in batch.failures:
            tally = run.tallies[failure.target_id]
            tally.count(OutputStatus.FAILED)
            tally.error(failure.message)
            run.protected.add((failure.target_id, failure.item.identity))
        return batch.candidates

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _context(self, phase: HookPhase, dry_run: bool, **fields) -> HookContext:
        return HookContext(
            phase=phase,
            repo_root=str(self.repo_root),
            agents_dir=str(self.agents_dir),
            dry_run=dry_run,
            **fields,
        )

    def _run_global(
        self,
        phase: HookPhase,
        runs: dict[ItemKind, _CategoryRun],
        dry_run: bool,
    ) -> bool:
        try:
            self.hooks.run_global(self._context(phase, dry_run))
        except HookError as exc:
            for run in runs.values():
                if phase == HookPhase.BEFORE_SYNC:
                    for tally in run.tallies.values():
                        tally.error(str(exc))
                else:
                    logger.warning("%s", exc)
                    run.warnings.append(str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Per-target materialisation
    # ------------------------------------------------------------------

    def _sync_target(
        self,
        run: _CategoryRun,
        target: ResolvedTarget,
        winners: list[OutputCandidate],
        materializer: Materializer,
        dry_run: bool,
    ) -> None:
        tally = run.tallies[target.id]
        category = run.kind.category
        logger.info("Syncing %d %s to %s", len(winners), category, target.display_name)

        try:
            self.hooks.run_target(
                target.hooks,
                self._context(
                    HookPhase.BEFORE_SYNC, dry_run,
                    target_id=target.id, category=category,
                ),
            )
        except HookError as exc:
            tally.error(str(exc))
            run.aborted_targets.add(target.id)
            return

        halt = threading.Event()

        def process(candidate: OutputCandidate) -> _ItemOutcome:
            return self._process_item(
                candidate, target, category, materializer, halt, dry_run
            )

        if self.max_workers > 1 and len(winners) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(process, c) for c in winners]
                for future in as_completed(futures):
                    self._apply_outcome(run, tally, future.result())
        else:
            for candidate in winners:
                self._apply_outcome(run, tally, process(candidate))

        try:
            self.hooks.run_target(
                target.hooks,
                self._context(
                    HookPhase.AFTER_SYNC, dry_run,
                    target_id=target.id, category=category,
                ),
            )
        except HookError as exc:
            tally.error(str(exc))

    def _process_item(
        self,
        candidate: OutputCandidate,
        target: ResolvedTarget,
        category: str,
        materializer: Materializer,
        halt: threading.Event,
        dry_run: bool,
    ) -> _ItemOutcome:
        if halt.is_set():
            return _ItemOutcome(candidate=candidate, halted=True)

        def context(phase: HookPhase) -> HookContext:
            return self._context(
                phase,
                dry_run,
                target_id=target.id,
                category=category,
                item_name=candidate.item.name,
                output_path=candidate.output_path,
            )

        try:
            self.hooks.run_convert(target.hooks, context(HookPhase.BEFORE_CONVERT))
        except HookError as exc:
            halt.set()
            return _ItemOutcome(
                candidate=candidate, hook_error=f"{candidate.describe()}: {exc}"
            )

        result = materializer.materialize(candidate)

        after_error = None
        try:
            self.hooks.run_convert(target.hooks, context(HookPhase.AFTER_CONVERT))
        except HookError as exc:
            after_error = f"{candidate.describe()}: {exc}"
        return _ItemOutcome(candidate=candidate, result=result, after_error=after_error)

    def _apply_outcome(
        self, run: _CategoryRun, tally: _Tally, outcome: _ItemOutcome
    ) -> None:
        candidate = outcome.candidate
        if outcome.halted:
            tally.count(OutputStatus.SKIPPED)
            run.protect(candidate)
            return
        if outcome.hook_error is not None:
            tally.count(OutputStatus.FAILED)
            tally.error(outcome.hook_error)
            run.protect(candidate)
            return

        result = outcome.result
        if result is None:
            return
        for output in result.outputs:
            tally.count(output.status)
            run.active.add((candidate.target_id, compare_key(output.output_path)))
            if output.checksum is None:
                continue
            run.manifest.upsert(
                ManagedOutputRecord(
                    target_id=candidate.target_id,
                    output_path=output.output_path,
                    source_kind=candidate.item.kind.value,
                    source_id=candidate.source_id,
                    checksum=output.checksum,
                    last_synced_at=utc_now(),
                    writer_id=output.writer_id,
                )
            )
        if result.skipped:
            tally.count(OutputStatus.SKIPPED, result.skipped)
            run.protect(candidate)
        if result.error is not None:
            tally.count(OutputStatus.FAILED)
            tally.error(result.error)
            run.protect(candidate)
        if outcome.after_error is not None:
            tally.error(outcome.after_error)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def _remove_orphans(
        self,
        run: _CategoryRun,
        selected_ids: Sequence[str],
        remove_missing: bool,
        non_interactive: bool,
        confirm_removal: ConfirmRemoval | None,
        dry_run: bool,
    ) -> None:
        results = run.manifest.removal_pass(
            selected_targets=selected_ids,
            active_outputs=run.active,
            protected_sources=run.protected,
            aborted_targets=run.aborted_targets,
            remove_missing=remove_missing,
            non_interactive=non_interactive,
            confirm_removal=confirm_removal,
            dry_run=dry_run,
        )
        for removal in results:
            tally = run.tallies.get(removal.target_id)
            if tally is None:
                continue
            if removal.action == RemovalAction.REMOVED:
                tally.count(OutputStatus.REMOVED)
            elif removal.action == RemovalAction.FAILED:
                tally.count(OutputStatus.FAILED)
                tally.error(removal.warning or removal.output_path)
            elif removal.warning:
                tally.warn(removal.warning)
