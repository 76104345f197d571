"""Line-oriented frontmatter parser.

Source files may start with a ``---`` delimited block of ``key: value``
lines.  The parser is a small explicit state machine:

* ``START`` -- expecting the opening ``---`` marker.
* ``KEYS``  -- reading ``key: value`` lines.
* ``LIST``  -- a ``key:`` line with no value was seen; ``- item`` lines
  append to that key until the next key or the closing marker.
* ``DONE``  -- the closing ``---`` marker was consumed.

Supported value forms: bare or single/double quoted scalars, ``[a, b]``
inline lists and ``- item`` block lists.  ``#`` lines are comments.  In
strict mode (used for subagents) a stray list item, a line that is not a
``key: value`` pair or a missing closing marker raise ``FrontmatterError``;
in lenient mode they are ignored or, for a missing closing marker, the
whole text is treated as body.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from agentsync.errors import FrontmatterError, InvalidTargetsError

if TYPE_CHECKING:
    from agentsync.sync.targets import TargetRegistry

MARKER = "---"
TARGET_KEYS = frozenset({"targets", "targetagents"})

_KEY_PATTERN = re.compile(r"^([A-Za-z_][\w.-]*)\s*:(.*)$")


class _State(Enum):
    START = "start"
    KEYS = "keys"
    LIST = "list"
    DONE = "done"


class ParsedFrontmatter(BaseModel):
    """Result of ``parse_frontmatter``.

    Attributes:
        data: Parsed keys; values are strings or lists of strings.
        body: Text after the closing marker (the whole text when there is
            no block).
        has_block: Whether a complete frontmatter block was found.
        spans: ``key -> (first_line, end_line)`` line ranges (0-based,
            end exclusive) covering each key and its list items.
        end_line: Index of the closing marker line.
    """

    data: dict[str, Any] = {}
    body: str
    has_block: bool = False
    spans: dict[str, tuple[int, int]] = {}
    end_line: int | None = None

    model_config = {"frozen": True}


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _is_list_item(stripped: str) -> bool:
    return stripped == "-" or stripped.startswith("- ")


def parse_frontmatter(
    text: str, source_path: str = "<string>", strict: bool = False
) -> ParsedFrontmatter:
    """Parse the frontmatter block at the top of *text*.

    Args:
        text: Full source text.
        source_path: Path used in error messages.
        strict: Raise on malformed lines instead of ignoring them.

    Returns:
        A ``ParsedFrontmatter``.

    Raises:
        FrontmatterError: In strict mode, on malformed input.
    """
    text = text.lstrip("\ufeff")
    lines = text.splitlines(keepends=True)

    state = _State.START
    data: dict[str, Any] = {}
    spans: dict[str, tuple[int, int]] = {}
    pending_empty: set[str] = set()
    current_key: str | None = None
    end_line: int | None = None

    for index, line in enumerate(lines):
        stripped = line.strip()
        line_no = index + 1

        if state is _State.START:
            if stripped != MARKER:
                return ParsedFrontmatter(body=text)
            state = _State.KEYS
            continue

        if stripped == MARKER:
            state = _State.DONE
            end_line = index
            break

        if not stripped or stripped.startswith("#"):
            continue

        if _is_list_item(stripped):
            if state is _State.LIST and current_key is not None:
                data[current_key].append(_unquote(stripped[1:]))
                pending_empty.discard(current_key)
                spans[current_key] = (spans[current_key][0], index + 1)
                continue
            if strict:
                raise FrontmatterError(
                    f"Unexpected list item on line {line_no} in {source_path}"
                )
            continue

        match = _KEY_PATTERN.match(stripped)
        if match is None:
            if strict:
                raise FrontmatterError(
                    f"Invalid frontmatter line {line_no} in {source_path}: "
                    f"{stripped}"
                )
            continue

        key, value = match.group(1), match.group(2).strip()
        spans[key] = (index, index + 1)
        if not value:
            data[key] = []
            pending_empty.add(key)
            current_key = key
            state = _State.LIST
        elif value.startswith("[") and value.endswith("]"):
            data[key] = [
                _unquote(part) for part in value[1:-1].split(",") if part.strip()
            ]
            pending_empty.discard(key)
            current_key = None
            state = _State.KEYS
        else:
            data[key] = _unquote(value)
            pending_empty.discard(key)
            current_key = None
            state = _State.KEYS

    # end_line is set exactly when the closing marker was seen
    if end_line is None:
        if state is _State.START:
            return ParsedFrontmatter(body=text)
        if strict:
            raise FrontmatterError(
                f"Missing closing frontmatter marker in {source_path}"
            )
        return ParsedFrontmatter(body=text)

    for key in pending_empty:
        data[key] = ""

    return ParsedFrontmatter(
        data=data,
        body="".join(lines[end_line + 1 :]),
        has_block=True,
        spans=spans,
        end_line=end_line,
    )


def strip_target_fields(text: str, source_path: str = "<string>") -> str:
    """Remove ``targets``/``targetAgents`` keys from the frontmatter of *text*.

    The block is dropped entirely when no other keys remain.
    """
    parsed = parse_frontmatter(text, source_path)
    if not parsed.has_block:
        return text

    drop: set[int] = set()
    for key, (start, end) in parsed.spans.items():
        if key.lower() in TARGET_KEYS:
            drop.update(range(start, end))
    if not drop:
        return text

    lines = text.lstrip("\ufeff").splitlines(keepends=True)
    remaining = [k for k in parsed.spans if k.lower() not in TARGET_KEYS]
    if not remaining:
        return parsed.body.lstrip("\r\n")
    return "".join(line for i, line in enumerate(lines) if i not in drop)


def _split_values(raw: Any) -> list[str]:
    values = raw if isinstance(raw, list) else [raw]
    result: list[str] = []
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part:
                result.append(part)
    return result


def extract_declared_targets(
    data: dict[str, Any],
    registry: TargetRegistry,
    label: str,
    source_path: str,
) -> tuple[str, ...] | None:
    """Return canonical declared target ids, or ``None`` for "all".

    Args:
        data: Parsed frontmatter.
        registry: Target registry used to canonicalise ids and aliases.
        label: Item label for error messages (e.g. ``Command "deploy"``).
        source_path: Source path for error messages.

    Raises:
        InvalidTargetsError: If a target key is present but empty, or
            names targets the registry does not know.
    """
    keys = [k for k in data if k.lower() in TARGET_KEYS]
    if not keys:
        return None

    names: list[str] = []
    for key in keys:
        names.extend(_split_values(data[key]))
    if not names:
        raise InvalidTargetsError(
            f"{label} has empty targets in {source_path}."
        )

    resolved: list[str] = []
    unknown: list[str] = []
    for name in names:
        target = registry.get(name)
        if target is None:
            if name.lower() not in unknown:
                unknown.append(name.lower())
            continue
        if target.id not in resolved:
            resolved.append(target.id)
    if unknown:
        raise InvalidTargetsError(
            f"{label} has unsupported targets ({', '.join(unknown)}) "
            f"in {source_path}."
        )
    return tuple(resolved)
