"""Managed-output manifest and the removal-safety pass.

Each (category, repository) pair owns one JSON manifest at
``<state_dir>/projects/<sha256(repo)>/<category>-outputs.json``::

    {"entries": [{"targetId": ..., "outputPath": ..., "sourceType": ...,
                  "sourceId": ..., "checksum": ..., "lastSyncedAt": ...,
                  "writerId": ...}]}

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so a crashed run leaves the previous manifest intact.
* **One write per run** -- records are mutated in memory while candidates
  are processed and persisted once at the end.
* **Removal safety** -- an orphaned output is only deleted when its
  on-disk checksum still matches the recorded one.  A modified output is
  kept with a warning unless the user confirms.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Callable, Collection
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ValidationError

from agentsync.errors import RemovalHazard
from agentsync.file_handler import checksum_path, remove_path
from agentsync.sync.models import ManagedOutputRecord
from agentsync.sync.paths import compare_key

logger = logging.getLogger(__name__)

ConfirmRemoval = Callable[[str], bool]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def project_state_dir(state_dir: Path, repo_root: Path) -> Path:
    """Per-repository state directory: ``<state_dir>/projects/<sha256(repo)>``."""
    digest = hashlib.sha256(str(repo_root).encode("utf-8")).hexdigest()
    return state_dir / "projects" / digest


class RemovalAction(str, Enum):
    REMOVED = "removed"
    MISSING = "missing"
    KEPT = "kept"
    FAILED = "failed"


class RemovalResult(BaseModel):
    """Outcome of the removal pass for one orphaned record."""

    target_id: str
    output_path: str
    action: RemovalAction
    warning: str | None = None

    model_config = {"frozen": True}


class ManagedOutputManifest:
    """Load, query, mutate and save the managed outputs of one category.

    Args:
        path: Location of the manifest JSON file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._records: dict[tuple[str, str], ManagedOutputRecord] = {}

    @classmethod
    def for_repository(
        cls, state_dir: Path, repo_root: Path, category: str
    ) -> ManagedOutputManifest:
        """Return the (unloaded) manifest of *category* for *repo_root*."""
        return cls(project_state_dir(state_dir, repo_root) / f"{category}-outputs.json")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> ManagedOutputManifest:
        """Read the manifest from disk.

        A missing file yields an empty manifest.  An unreadable or corrupt
        file is logged and treated as empty so the next save replaces it.
        """
        self._records = {}
        if not self.path.exists():
            return self
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
            entries = data.get("entries", []) if isinstance(data, dict) else []
            for entry in entries:
                self.upsert(ManagedOutputRecord.model_validate(entry))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable manifest %s: %s", self.path, exc)
            self._records = {}
        return self

    def save(self) -> None:
        """Persist every record atomically, sorted by target, path, source."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"entries": [r.to_entry() for r in self.records()]}

        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug("Saved %d manifest entries to %s", len(self._records), self.path)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @staticmethod
    def _key(target_id: str, output_path: str) -> tuple[str, str]:
        return target_id, compare_key(output_path)

    def records(self) -> list[ManagedOutputRecord]:
        return sorted(
            self._records.values(),
            key=lambda r: (r.target_id, r.output_path, r.source_id),
        )

    def get(self, target_id: str, output_path: str) -> ManagedOutputRecord | None:
        return self._records.get(self._key(target_id, output_path))

    def upsert(self, record: ManagedOutputRecord) -> None:
        """Insert or replace the record keyed by (target, output path)."""
        self._records[self._key(record.target_id, record.output_path)] = record

    def remove(self, target_id: str, output_path: str) -> None:
        """Drop the record for (target, output path); no-op when absent."""
        self._records.pop(self._key(target_id, output_path), None)

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Removal pass
    # ------------------------------------------------------------------

    def removal_pass(
        self,
        selected_targets: Collection[str],
        active_outputs: Collection[tuple[str, str]],
        protected_sources: Collection[tuple[str, str]] = (),
        aborted_targets: Collection[str] = (),
        remove_missing: bool = False,
        non_interactive: bool = True,
        confirm_removal: ConfirmRemoval | None = None,
        dry_run: bool = False,
    ) -> list[RemovalResult]:
        """Settle every orphaned record.

        Args:
            selected_targets: Target ids in scope for this run.
            active_outputs: ``(target_id, compare_key)`` pairs produced
                this run.
            protected_sources: ``(target_id, source_id)`` pairs whose
                candidate failed or was skipped this run; their records
                are left alone.
            aborted_targets: Targets whose ``before_sync`` failed.
            remove_missing: Delete orphaned outputs.
            non_interactive: Never ask; modified outputs are kept.
            confirm_removal: Called with the path of a modified output.
            dry_run: Classify without deleting.

        Returns:
            One result per orphaned record that was acted upon.
        """
        results: list[RemovalResult] = []
        active = set(active_outputs)
        protected = set(protected_sources)

        for record in self.records():
            if record.target_id not in selected_targets:
                continue
            if record.target_id in aborted_targets:
                continue
            key = self._key(record.target_id, record.output_path)
            if key in active or (record.target_id, record.source_id) in protected:
                continue
            if not remove_missing:
                logger.debug("Keeping orphaned output %s", record.output_path)
                continue
            results.append(
                self._remove_orphan(
                    record, non_interactive, confirm_removal, dry_run
                )
            )
        return results

    def _remove_orphan(
        self,
        record: ManagedOutputRecord,
        non_interactive: bool,
        confirm_removal: ConfirmRemoval | None,
        dry_run: bool,
    ) -> RemovalResult:
        path = Path(record.output_path)

        def result(action: RemovalAction, warning: str | None = None) -> RemovalResult:
            return RemovalResult(
                target_id=record.target_id,
                output_path=record.output_path,
                action=action,
                warning=warning,
            )

        if not path.exists() and not path.is_symlink():
            self.remove(record.target_id, record.output_path)
            return result(RemovalAction.MISSING)

        if not (path.is_file() or path.is_dir()):
            return result(
                RemovalAction.KEPT,
                f"Cannot remove {path}: not a regular file or directory.",
            )

        if checksum_path(path) != record.checksum:
            hazard = RemovalHazard(str(path))
            if non_interactive or confirm_removal is None:
                logger.warning("%s", hazard)
                return result(RemovalAction.KEPT, str(hazard))
            if not confirm_removal(str(path)):
                return result(RemovalAction.KEPT, f"Output modified; keeping {path}.")

        if not dry_run:
            try:
                remove_path(path)
            except OSError as exc:
                return result(
                    RemovalAction.FAILED, f"Failed to remove {path}: {exc}"
                )
        self.remove(record.target_id, record.output_path)
        logger.info("Removed %s", path)
        return result(RemovalAction.REMOVED)
