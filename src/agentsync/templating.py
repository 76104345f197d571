"""Per-target conditional blocks in source content.

A source may wrap target-specific text in ``<agents ...>`` blocks::

    Shared text.
    <agents claude,codex>
    Only for Claude Code and Codex.
    </agents>
    <agents not:gemini>
    Everything but Gemini.
    </agents>

Selectors are comma separated target ids or aliases; ``not:`` excludes.
A block is kept when the target matches an include selector (or there are
only excludes) and matches no exclude.  ``\\</agents>`` is a literal
closing tag.  Blocks cannot be nested.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from agentsync.errors import TemplatingError

_TOKEN_PATTERN = re.compile(
    r"\\</agents>|<agents(?:\s+([^>]*))?>|</agents>", re.IGNORECASE
)
_EXCLUDE_PREFIX = "not:"


def _parse_selectors(
    raw: str | None,
    valid: set[str],
    fail,
) -> tuple[set[str], set[str]]:
    includes: set[str] = set()
    excludes: set[str] = set()
    parts = [p.strip().lower() for p in (raw or "").split(",")]
    parts = [p for p in parts if p]
    if not parts:
        fail("empty agent selector list in <agents> block")
    for part in parts:
        bucket = includes
        name = part
        if part.startswith(_EXCLUDE_PREFIX):
            bucket = excludes
            name = part[len(_EXCLUDE_PREFIX):].strip()
        if not name:
            fail(f"empty agent selector '{part}'")
        if name not in valid:
            fail(f"unknown agent selector '{name}'")
        bucket.add(name)
    both = includes & excludes
    if both:
        fail(
            "selector both includes and excludes "
            + ", ".join(f"'{n}'" for n in sorted(both))
        )
    return includes, excludes


def render(
    content: str,
    target_id: str,
    valid_agents: Iterable[str],
    source_path: str,
    target_aliases: Iterable[str] = (),
) -> str:
    """Expand ``<agents>`` blocks of *content* for *target_id*.

    Args:
        content: Source text.
        target_id: Canonical id of the target being rendered.
        valid_agents: Every id and alias a selector may name.
        source_path: Source path for error messages.
        target_aliases: Additional names that select this target.

    Returns:
        The content with matching blocks unwrapped and the rest removed.

    Raises:
        TemplatingError: On an empty, unknown or contradictory selector, a
            nested block, a stray closing tag or an unterminated block.
    """
    valid_sorted = sorted({a.lower() for a in valid_agents})
    valid = set(valid_sorted)
    names = {target_id.lower(), *(a.lower() for a in target_aliases)}

    def fail(message: str) -> None:
        raise TemplatingError(message, source_path, valid_sorted)

    parts: list[str] = []
    block: list[str] | None = None
    keep_block = False
    pos = 0

    for match in _TOKEN_PATTERN.finditer(content):
        sink = block if block is not None else parts
        sink.append(content[pos : match.start()])
        pos = match.end()
        token = match.group(0)

        if token.startswith("\\"):
            sink.append(token[1:])
        elif token.lower() == "</agents>":
            if block is None:
                fail("closing </agents> without an opening block")
            if keep_block:
                parts.extend(block)
            block = None
        else:
            if block is not None:
                fail("nested <agents> blocks are not supported")
            includes, excludes = _parse_selectors(match.group(1), valid, fail)
            if includes:
                keep_block = bool(names & includes) and not names & excludes
            else:
                keep_block = not names & excludes
            block = []

    if block is not None:
        fail("unterminated <agents> block")
    parts.append(content[pos:])
    return "".join(parts)
