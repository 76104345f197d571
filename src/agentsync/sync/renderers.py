"""Built-in rendering of source items into target output content.

Renderers receive the *templated* source text (``<agents>`` blocks already
expanded for the target) and return what the writer puts on disk: a
string for single-file outputs or a ``{relative_path: bytes}`` bundle for
directory outputs.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from agentsync.file_handler import read_tree
from agentsync.sources.frontmatter import (
    TARGET_KEYS,
    parse_frontmatter,
    strip_target_fields,
)
from agentsync.sync.models import ItemKind, SourceItem
from agentsync.sync.writers import OutputContent

_SKILL_FILES = frozenset({"skill.md", "skill.local.md"})
_TOML_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")

# (content, source_path) -> content with <agents> blocks expanded
Template = Callable[[str, str], str]


def _with_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def render_markdown_command(text: str, source_path: str) -> str:
    """Command source with the target keys removed from its frontmatter."""
    return _with_newline(strip_target_fields(text, source_path))


def _toml_key(key: str) -> str:
    return key if _TOML_BARE_KEY.match(key) else json.dumps(key)


def _toml_value(value: Any) -> str:
    if isinstance(value, list):
        return "[" + ", ".join(json.dumps(str(v)) for v in value) + "]"
    return json.dumps(str(value))


def render_toml_command(text: str, source_path: str) -> str:
    """Render a command as a TOML prompt file.

    Frontmatter keys (except the target keys and ``prompt``) become
    ``key = "value"`` lines; the body becomes the ``prompt`` string.
    """
    parsed = parse_frontmatter(text, source_path)
    lines = [
        f"{_toml_key(key)} = {_toml_value(value)}"
        for key, value in parsed.data.items()
        if key.lower() not in TARGET_KEYS and key != "prompt"
    ]
    body = parsed.body.lstrip("\r\n")
    lines.append(f"prompt = {json.dumps(body, ensure_ascii=False)}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


def render_as_skill(item: SourceItem, text: str) -> dict[str, bytes]:
    """Render a non-skill item as a one-file skill bundle.

    The generated ``SKILL.md`` carries ``name`` and, when present,
    ``description`` frontmatter followed by a ``# <name>`` heading and the
    item body.
    """
    parsed = parse_frontmatter(text, item.source_path)
    meta: dict[str, str] = {"name": item.name}
    description = parsed.data.get("description")
    if isinstance(description, str) and description:
        meta["description"] = description

    header = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True)
    body = parsed.body.strip("\r\n")
    skill = f"---\n{header}---\n\n# {item.name}\n"
    if body:
        skill += f"\n{body}\n"
    return {"SKILL.md": skill.encode("utf-8")}


def render_skill_bundle(
    item: SourceItem, text: str, template: Template | None = None
) -> dict[str, bytes]:
    """Copy the skill directory, replacing ``SKILL.md`` with *text*.

    Both ``SKILL.md`` and ``SKILL.local.md`` at the bundle root are
    dropped from the copy; the templated content is always written as
    ``SKILL.md``.  With *template*, every other file that decodes as
    UTF-8 is templated too; binary files are copied unchanged.

    Raises:
        TemplatingError: If an auxiliary file has invalid ``<agents>``
            blocks.
    """
    bundle: dict[str, bytes] = {}
    if item.bundle_root:
        root = Path(item.bundle_root)
        for rel, data in read_tree(root).items():
            if "/" not in rel and rel.lower() in _SKILL_FILES:
                continue
            bundle[rel] = data
            if template is None:
                continue
            try:
                decoded = data.decode("utf-8")
            except UnicodeDecodeError:
                continue
            bundle[rel] = template(decoded, str(root / rel)).encode("utf-8")
    stripped = _with_newline(strip_target_fields(text, item.source_path))
    bundle["SKILL.md"] = stripped.encode("utf-8")
    return bundle


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def render_item(
    item: SourceItem,
    render_kind: ItemKind,
    output_format: str,
    text: str,
    template: Template | None = None,
) -> OutputContent:
    """Return the output content of *item* rendered as *render_kind*.

    Args:
        item: The effective source item.
        render_kind: Kind the target renders (after fallback).
        output_format: ``markdown`` or ``toml``.
        text: Templated source text.
        template: Templates auxiliary skill bundle files for the target.
    """
    if render_kind == ItemKind.SKILL:
        if item.kind == ItemKind.SKILL:
            return render_skill_bundle(item, text, template)
        return render_as_skill(item, text)

    if item.kind == ItemKind.INSTRUCTION:
        body = parse_frontmatter(text, item.source_path).body
        return _with_newline(body.lstrip("\r\n"))

    if render_kind == ItemKind.COMMAND and output_format == "toml":
        return render_toml_command(text, item.source_path)

    return render_markdown_command(text, item.source_path)
