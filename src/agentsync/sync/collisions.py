"""Detect and resolve candidates that target one physical output path.

Every concrete path a candidate would write is grouped by its
``compare_key``: the default output path, or each path a converter
returned.  A group of one passes through.  A larger group whose members
all share one ``output_group`` (instructions written to a common
``AGENTS.md``) keeps a single deterministic winner and marks the rest
satisfied.  Any other overlap is a configuration conflict: every member
fails with ``CollisionError`` and none is written, even for its other
paths.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import BaseModel

from agentsync.errors import CollisionError
from agentsync.sync.candidates import OutputCandidate
from agentsync.sync.paths import compare_key

logger = logging.getLogger(__name__)


class CollisionFailure(BaseModel):
    candidate: OutputCandidate
    message: str

    model_config = {"frozen": True}


class CollisionResolution(BaseModel):
    """Outcome of ``CollisionResolver.resolve``.

    Attributes:
        winners: Candidates to materialise.  A winner may itself be
            ``satisfied`` when its source file is the output file.
        satisfied: Group members covered by a winner (counted as skipped).
        failures: Members of conflicting groups.
    """

    winners: list[OutputCandidate] = []
    satisfied: list[OutputCandidate] = []
    failures: list[CollisionFailure] = []

    model_config = {"frozen": True}


def _winner_key(candidate: OutputCandidate) -> tuple:
    return (
        not candidate.satisfied,
        not candidate.is_shared,
        candidate.item.source_path,
        candidate.target_id,
    )


class CollisionResolver:
    """Group candidates by output path and settle every overlap."""

    def resolve(self, candidates: Iterable[OutputCandidate]) -> CollisionResolution:
        ordered = list(candidates)
        groups: dict[str, list[int]] = {}
        shown: dict[str, str] = {}
        for index, candidate in enumerate(ordered):
            for path in candidate.output_paths():
                key = compare_key(path)
                members = groups.setdefault(key, [])
                if index not in members:
                    members.append(index)
                shown.setdefault(key, path)

        covered: set[int] = set()
        failed: dict[int, str] = {}
        for key, indexes in groups.items():
            if len(indexes) == 1:
                continue
            members = [ordered[i] for i in indexes]

            group_keys = {m.output_group for m in members}
            if len(group_keys) == 1 and None not in group_keys:
                ranked = sorted(indexes, key=lambda i: _winner_key(ordered[i]))
                covered.update(ranked[1:])
                logger.debug(
                    "Shared output %s written once for %s",
                    shown[key],
                    ", ".join(ordered[i].target_id for i in ranked),
                )
                continue

            error = CollisionError(
                shown[key], sorted({m.target_id for m in members})
            )
            for index in indexes:
                failed.setdefault(index, f"{ordered[index].describe()}: {error}")

        winners: list[OutputCandidate] = []
        satisfied: list[OutputCandidate] = []
        failures: list[CollisionFailure] = []
        for index, candidate in enumerate(ordered):
            if index in failed:
                failures.append(
                    CollisionFailure(candidate=candidate, message=failed[index])
                )
            elif index in covered:
                satisfied.append(candidate.model_copy(update={"satisfied": True}))
            else:
                winners.append(candidate)

        return CollisionResolution(
            winners=winners, satisfied=satisfied, failures=failures
        )
