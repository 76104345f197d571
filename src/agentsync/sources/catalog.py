"""Source catalogs: discover and normalise content items on disk.

Layout below the agents directory ``<A>`` (default ``<repo>/agents``):

============  ==============================  ===============================
Kind          Shared                          Local
============  ==============================  ===============================
skills        ``<A>/skills/<name>/SKILL.md``  ``<A>/.local/skills/<name>/``,
                                              ``<A>/skills/<name>.local/``,
                                              ``<A>/skills/<name>/SKILL.local.md``
commands      ``<A>/commands/<name>.md``      ``<A>/.local/commands/<name>.md``,
                                              ``<A>/commands/<name>.local.md``
subagents     ``<A>/agents/<name>.md``        same forms as commands
instructions  ``<A>/**/AGENTS.md``,           any ``.local`` path segment,
              ``<A>/**/<x>.agents.md``,       ``AGENTS.local.md``
              ``<repo>/**/AGENTS.md``
============  ==============================  ===============================

Repository ``AGENTS.md`` files outside ``<A>`` are instructions too: their
output directory is the directory holding them, so a target that writes
``AGENTS.md`` finds its output already in place.  The scan skips tool
directories and anything matched by the repository ``.gitignore``.  A
shared template for the same directory replaces the repository file.

A missing category root yields zero items plus an informational message.
Structurally invalid items (malformed subagent frontmatter, empty or
unknown declared targets) raise ``SourceError`` so the caller can abort
the category before anything is written.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

from agentsync.file_handler import read_text
from agentsync.ignore_rules import load_gitignore
from agentsync.sources.frontmatter import (
    extract_declared_targets,
    parse_frontmatter,
)
from agentsync.sources.local import (
    LOCAL_DIRNAME,
    LOCAL_SUFFIX,
    local_root,
    shared_root,
    source_metadata,
    strip_local_suffix,
)
from agentsync.sync.models import (
    ItemKind,
    MarkerType,
    SourceCounts,
    SourceItem,
    SourceType,
)
from agentsync.sync.targets import TargetRegistry

logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"
LOCAL_SKILL_FILE = "SKILL.local.md"
_OUTPUT_DIR_KEYS = frozenset({"outputdir", "output_dir"})
_SKIP_DIRS = frozenset({".git", "node_modules"})
REPO_INSTRUCTION_FILE = "agents.md"
_REPO_SCAN_SKIP_DIRS = frozenset(
    {
        ".git",
        "node_modules",
        "dist",
        "coverage",
        ".agentsync",
        ".claude",
        ".codex",
        ".gemini",
        ".github",
    }
)

_KIND_LABELS: dict[ItemKind, str] = {
    ItemKind.SKILL: "Skill",
    ItemKind.COMMAND: "Command",
    ItemKind.SUBAGENT: "Subagent",
    ItemKind.INSTRUCTION: "Instruction",
}


class CatalogResult(BaseModel):
    """Items discovered for one kind.

    Attributes:
        kind: Content kind.
        root: Shared category root that was scanned.
        items: Every discovered variant (precedence not yet applied).
        messages: Informational messages for the caller.
        source_counts: Shared / local / excluded-local counts.
    """

    kind: ItemKind
    root: str
    items: list[SourceItem] = []
    messages: list[str] = []
    source_counts: SourceCounts = Field(default_factory=SourceCounts)

    model_config = {"frozen": True}


def _find_file(directory: Path, name: str) -> Path | None:
    """Case-insensitive lookup of *name* directly inside *directory*."""
    wanted = name.lower()
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and entry.name.lower() == wanted:
            return entry
    return None


def _label(kind: ItemKind, name: str) -> str:
    return f'{_KIND_LABELS[kind]} "{name}"'


class SourceCatalog:
    """Load source items of every kind for one repository.

    Args:
        repo_root: Absolute repository root.
        agents_dir: Absolute agents source directory.
        registry: Target registry used to validate declared targets.
    """

    def __init__(
        self, repo_root: Path, agents_dir: Path, registry: TargetRegistry
    ) -> None:
        self.repo_root = repo_root
        self.agents_dir = agents_dir
        self.registry = registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_items(
        self, kind: ItemKind, include_local: bool = True
    ) -> CatalogResult:
        """Discover every variant of *kind*.

        Args:
            kind: Content kind to load.
            include_local: When ``False`` local variants are dropped and
                counted as ``excluded_local``.

        Raises:
            SourceError: If an item is structurally invalid.
        """
        root = shared_root(self.agents_dir, kind)
        messages: list[str] = []

        if not self.agents_dir.is_dir():
            messages.append(f"Agents directory not found: {self.agents_dir}")
            return CatalogResult(kind=kind, root=str(root), messages=messages)

        if kind == ItemKind.SKILL:
            found = self._load_skills()
        elif kind == ItemKind.INSTRUCTION:
            found = self._load_instructions(messages)
        else:
            found = self._load_markdown_items(kind)

        if not found and not root.is_dir():
            messages.append(f"No {kind.category} directory at {root}")

        items = [i for i in found if include_local or not i.is_local]
        shared = sum(1 for i in found if not i.is_local)
        local = sum(1 for i in items if i.is_local)
        excluded = len(found) - len(items)
        if excluded:
            logger.info("Excluded %d local %s", excluded, kind.category)

        return CatalogResult(
            kind=kind,
            root=str(root),
            items=items,
            messages=messages,
            source_counts=SourceCounts(
                shared=shared, local=local, excluded_local=excluded
            ),
        )

    # ------------------------------------------------------------------
    # Item construction
    # ------------------------------------------------------------------

    def _make_item(
        self,
        kind: ItemKind,
        name: str,
        path: Path,
        marker: MarkerType,
        *,
        strict: bool = False,
        identity: str | None = None,
        bundle_root: Path | None = None,
        output_dir: Path | None = None,
        text: str | None = None,
    ) -> SourceItem:
        if text is None:
            text = read_text(path)
        parsed = parse_frontmatter(text, str(path), strict=strict)

        if kind == ItemKind.SUBAGENT:
            declared_name = parsed.data.get("name")
            if isinstance(declared_name, str) and declared_name.strip():
                name = declared_name.strip()

        declared = extract_declared_targets(
            parsed.data, self.registry, _label(kind, name), str(path)
        )
        return SourceItem(
            kind=kind,
            name=name,
            identity=identity or name.casefold(),
            source_path=str(path),
            source_type=source_metadata(marker),
            marker_type=marker,
            declared_targets=declared,
            raw_content=text,
            content=parsed.body,
            frontmatter=parsed.data,
            bundle_root=str(bundle_root) if bundle_root else None,
            output_dir=str(output_dir) if output_dir else None,
        )

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def _load_skills(self) -> list[SourceItem]:
        kind = ItemKind.SKILL
        found: list[SourceItem] = []

        shared = shared_root(self.agents_dir, kind)
        if shared.is_dir():
            for entry in sorted(shared.iterdir()):
                if not entry.is_dir() or entry.name.startswith("."):
                    continue
                base, suffixed = strip_local_suffix(entry.name)
                shared_file = _find_file(entry, SKILL_FILE)
                local_file = _find_file(entry, LOCAL_SKILL_FILE)
                if suffixed:
                    skill_file = local_file or shared_file
                    if skill_file is not None:
                        found.append(
                            self._make_item(
                                kind, base, skill_file, MarkerType.SUFFIX,
                                bundle_root=entry,
                            )
                        )
                    continue
                if shared_file is not None:
                    found.append(
                        self._make_item(
                            kind, base, shared_file, MarkerType.NONE,
                            bundle_root=entry,
                        )
                    )
                if local_file is not None:
                    found.append(
                        self._make_item(
                            kind, base, local_file, MarkerType.SUFFIX,
                            bundle_root=entry,
                        )
                    )
                if shared_file is None and local_file is None:
                    logger.debug("Ignoring %s: no %s", entry, SKILL_FILE)

        local = local_root(self.agents_dir, kind)
        if local.is_dir():
            for entry in sorted(local.iterdir()):
                if not entry.is_dir():
                    continue
                base, _ = strip_local_suffix(entry.name)
                skill_file = _find_file(entry, SKILL_FILE) or _find_file(
                    entry, LOCAL_SKILL_FILE
                )
                if skill_file is not None:
                    found.append(
                        self._make_item(
                            kind, base, skill_file, MarkerType.PATH,
                            bundle_root=entry,
                        )
                    )
        return found

    # ------------------------------------------------------------------
    # Commands / subagents
    # ------------------------------------------------------------------

    def _load_markdown_items(self, kind: ItemKind) -> list[SourceItem]:
        strict = kind == ItemKind.SUBAGENT
        found: list[SourceItem] = []

        shared = shared_root(self.agents_dir, kind)
        if shared.is_dir():
            for entry in sorted(shared.iterdir()):
                if not entry.is_file() or not entry.name.lower().endswith(".md"):
                    continue
                base, suffixed = strip_local_suffix(entry.name, ".md")
                marker = MarkerType.SUFFIX if suffixed else MarkerType.NONE
                found.append(
                    self._make_item(kind, base, entry, marker, strict=strict)
                )

        local = local_root(self.agents_dir, kind)
        if local.is_dir():
            for entry in sorted(local.iterdir()):
                if not entry.is_file() or not entry.name.lower().endswith(".md"):
                    continue
                base, _ = strip_local_suffix(entry.name, ".md")
                found.append(
                    self._make_item(
                        kind, base, entry, MarkerType.PATH, strict=strict
                    )
                )
        return found

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    @staticmethod
    def _is_instruction_template(file_name: str) -> bool:
        if not file_name.lower().endswith(".md"):
            return False
        base, _ = strip_local_suffix(file_name, ".md")
        lowered = base.lower()
        return lowered == "agents" or lowered.endswith(".agents")

    def _instruction_marker(self, path: Path) -> MarkerType:
        rel = path.relative_to(self.agents_dir)
        for segment in rel.parts[:-1]:
            if segment.lower().endswith(LOCAL_SUFFIX):
                return MarkerType.PATH
        _, suffixed = strip_local_suffix(path.name, ".md")
        return MarkerType.SUFFIX if suffixed else MarkerType.NONE

    def _is_root_template(self, path: Path) -> bool:
        parent = path.parent
        if parent == self.agents_dir:
            return path.name.lower() in ("agents.md", "agents.local.md")
        if parent == self.agents_dir / LOCAL_DIRNAME:
            return path.name.lower() in ("agents.md", "agents.local.md")
        return False

    def _load_instructions(self, messages: list[str]) -> list[SourceItem]:
        kind = ItemKind.INSTRUCTION
        found: list[SourceItem] = []

        templates: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self.agents_dir):
            dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
            for name in sorted(filenames):
                if self._is_instruction_template(name):
                    templates.append(Path(dirpath) / name)

        for path in templates:
            text = read_text(path)
            parsed = parse_frontmatter(text, str(path))
            output_value = next(
                (
                    v
                    for k, v in parsed.data.items()
                    if k.lower() in _OUTPUT_DIR_KEYS and isinstance(v, str) and v
                ),
                None,
            )
            if output_value is not None:
                output_dir = Path(
                    os.path.normpath(self.repo_root / Path(output_value).expanduser())
                )
            elif self._is_root_template(path):
                output_dir = self.repo_root
            else:
                messages.append(
                    f"Skipping instruction template {path}: no outputDir "
                    f"in frontmatter."
                )
                continue

            found.append(
                self._make_item(
                    kind,
                    self._instruction_name(output_dir),
                    path,
                    self._instruction_marker(path),
                    identity=output_dir.as_posix().casefold(),
                    output_dir=output_dir,
                    text=text,
                )
            )

        claimed = {i.identity for i in found if not i.is_local}
        for path in self._scan_repo_instructions():
            output_dir = path.parent
            identity = output_dir.as_posix().casefold()
            if identity in claimed:
                logger.debug("Template for %s replaces %s", output_dir, path)
                continue
            found.append(
                self._make_item(
                    kind,
                    self._instruction_name(output_dir),
                    path,
                    MarkerType.NONE,
                    identity=identity,
                    output_dir=output_dir,
                )
            )
        return found

    def _instruction_name(self, output_dir: Path) -> str:
        if output_dir == self.repo_root:
            return "."
        try:
            return output_dir.relative_to(self.repo_root).as_posix()
        except ValueError:
            return output_dir.as_posix()

    def _scan_repo_instructions(self) -> list[Path]:
        """``AGENTS.md`` files of the repository outside the agents directory."""
        if self.agents_dir == self.repo_root:
            return []
        ignored = load_gitignore(self.repo_root)
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self.repo_root):
            current = Path(dirpath)
            kept = []
            for name in sorted(dirnames):
                child = current / name
                rel = child.relative_to(self.repo_root).as_posix()
                if (
                    name in _REPO_SCAN_SKIP_DIRS
                    or child == self.agents_dir
                    or ignored.match_file(rel + "/")
                ):
                    continue
                kept.append(name)
            dirnames[:] = kept
            for name in sorted(filenames):
                if name.lower() != REPO_INSTRUCTION_FILE:
                    continue
                path = current / name
                if ignored.match_file(path.relative_to(self.repo_root).as_posix()):
                    continue
                found.append(path)
        return found


def local_items(result: CatalogResult) -> list[SourceItem]:
    """Local variants of *result*, for ``--list-local``."""
    return [i for i in result.items if i.source_type == SourceType.LOCAL]
