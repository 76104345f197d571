"""Pick the authoritative variant of each logical item.

Variants of one ``(kind, identity)`` are bucketed as local-path,
local-suffix and shared.  The first non-empty bucket in that order wins;
inside a bucket the lexicographically smallest ``source_path`` wins so the
choice is stable across runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from agentsync.sync.models import MarkerType, SourceItem, SourceType

logger = logging.getLogger(__name__)


def _bucket(item: SourceItem) -> int:
    if item.source_type == SourceType.LOCAL:
        if item.marker_type == MarkerType.PATH:
            return 0
        return 1
    return 2


def resolve_precedence(variants: Iterable[SourceItem]) -> SourceItem | None:
    """Return the effective variant, or ``None`` when there are none."""
    ordered = sorted(variants, key=lambda v: (_bucket(v), v.source_path))
    if not ordered:
        return None
    winner = ordered[0]
    if len(ordered) > 1:
        logger.debug(
            "%s '%s': using %s (%d variant(s))",
            winner.kind.value,
            winner.name,
            winner.source_path,
            len(ordered),
        )
    return winner


def resolve_effective_items(items: Iterable[SourceItem]) -> list[SourceItem]:
    """Group *items* by ``(kind, identity)`` and keep each group's winner.

    Returns:
        Winners sorted by kind then identity.
    """
    groups: dict[tuple[str, str], list[SourceItem]] = {}
    for item in items:
        groups.setdefault((item.kind.value, item.identity), []).append(item)

    effective: list[SourceItem] = []
    for key in sorted(groups):
        winner = resolve_precedence(groups[key])
        if winner is not None:
            effective.append(winner)
    return effective
