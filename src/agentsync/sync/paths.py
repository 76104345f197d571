"""Output path templates.

Templates use ``{placeholder}`` syntax with a closed placeholder set per
item kind.  ``validate_template`` runs while configuration is loaded so a
typo such as ``{itme}`` is reported before any source is read;
``render_template`` runs per candidate and only fails when a placeholder
has no value in the current context.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from agentsync.errors import PathResolutionError
from agentsync.sync.models import ItemKind

_PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]*)\}")

COMMON_PLACEHOLDERS: frozenset[str] = frozenset(
    {
        "repo",
        "home",
        "agents_dir",
        "target",
        "target_name",
        "item",
        "item_kind",
    }
)

_KIND_PLACEHOLDERS: dict[ItemKind, frozenset[str]] = {
    ItemKind.COMMAND: frozenset({"command_location"}),
    ItemKind.INSTRUCTION: frozenset({"output_dir"}),
}


def allowed_placeholders(kind: ItemKind) -> frozenset[str]:
    """Return the placeholder names a template for *kind* may use."""
    return COMMON_PLACEHOLDERS | _KIND_PLACEHOLDERS.get(kind, frozenset())


def template_placeholders(template: str) -> list[str]:
    """Return placeholder names in order of appearance."""
    return _PLACEHOLDER_PATTERN.findall(template)


def validate_template(template: str, kind: ItemKind) -> None:
    """Check *template* against the placeholder set for *kind*.

    Raises:
        ValueError: On an empty template, unbalanced braces or an unknown
            placeholder.  (``ValueError`` so pydantic validators can wrap
            it.)
    """
    if not template or not template.strip():
        raise ValueError("output path template must not be empty")

    stripped = _PLACEHOLDER_PATTERN.sub("", template)
    if "{" in stripped or "}" in stripped:
        raise ValueError(
            f"unbalanced braces in output path template '{template}'"
        )

    allowed = allowed_placeholders(kind)
    unknown = [
        name for name in template_placeholders(template) if name not in allowed
    ]
    if unknown:
        raise ValueError(
            f"unknown placeholder(s) {', '.join('{' + u + '}' for u in unknown)} "
            f"in {kind.category} output path '{template}'. "
            f"Allowed: {', '.join(sorted(allowed))}"
        )


def render_template(
    template: str, values: Mapping[str, str | None], repo_root: Path
) -> Path:
    """Substitute *values* into *template* and return an absolute path.

    Relative results are resolved against *repo_root*; ``~`` is expanded.

    Raises:
        PathResolutionError: If a placeholder is unknown or has no value.
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        value = values.get(name)
        if value is None or value == "":
            raise PathResolutionError(
                f"Cannot resolve placeholder {{{name}}} in output path "
                f"'{template}'"
            )
        return value

    return resolve_output_path(_PLACEHOLDER_PATTERN.sub(_replace, template), repo_root)


def resolve_output_path(path: str | Path, repo_root: Path) -> Path:
    """Expand ``~``, anchor relative *path* at *repo_root* and normalise it."""
    resolved = Path(path).expanduser()
    if not resolved.is_absolute():
        resolved = repo_root / resolved
    return Path(os.path.normpath(resolved))


def compare_key(path: str | Path) -> str:
    """Separator-normalised, case-folded key used to detect collisions."""
    return Path(os.path.normpath(str(path))).as_posix().casefold()
