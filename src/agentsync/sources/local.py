"""Local-override conventions.

A local variant of an item is expressed either as an entire shadow
subtree (``<agents>/.local/<category>/...``, marker ``path``) or as a
``.local`` suffix on a shared-looking file or directory name
(``foo.local.md``, ``my-skill.local/``, marker ``suffix``).
"""

from __future__ import annotations

from pathlib import Path

from agentsync.sync.models import ItemKind, MarkerType, SourceType

LOCAL_DIRNAME = ".local"
LOCAL_SUFFIX = ".local"

# Subagents live under ``agents/agents`` for compatibility with existing
# source trees.
_CATEGORY_DIRS: dict[ItemKind, str | None] = {
    ItemKind.SKILL: "skills",
    ItemKind.COMMAND: "commands",
    ItemKind.SUBAGENT: "agents",
    ItemKind.INSTRUCTION: None,
}


def shared_root(agents_dir: Path, kind: ItemKind) -> Path:
    """Directory holding shared sources of *kind*."""
    sub = _CATEGORY_DIRS[kind]
    return agents_dir / sub if sub else agents_dir


def local_root(agents_dir: Path, kind: ItemKind) -> Path:
    """Directory holding local-path overrides of *kind*."""
    sub = _CATEGORY_DIRS[kind]
    base = agents_dir / LOCAL_DIRNAME
    return base / sub if sub else base


def strip_local_suffix(file_name: str, extension: str = "") -> tuple[str, bool]:
    """Split ``name.local<ext>`` into ``(name, True)``.

    The comparison is case-insensitive; the returned base keeps the
    original casing.  Names without the suffix come back unchanged
    (minus *extension*) with ``False``.
    """
    base = file_name
    if extension and base.lower().endswith(extension.lower()):
        base = base[: len(base) - len(extension)]
    if base.lower().endswith(LOCAL_SUFFIX) and len(base) > len(LOCAL_SUFFIX):
        return base[: -len(LOCAL_SUFFIX)], True
    return base, False


def source_metadata(marker: MarkerType) -> SourceType:
    """Source type implied by a marker."""
    return SourceType.SHARED if marker == MarkerType.NONE else SourceType.LOCAL
