"""Repository ``.gitignore`` handling.

Two concerns live here:

* ``load_gitignore`` turns the repository's ``.gitignore`` into a
  ``pathspec.PathSpec`` so repository scans skip ignored paths.
* The local-override safety net: local sources (``agents/.local/``,
  ``*.local.md``) must never be committed, so the CLI checks that the
  ignore rules for them are present, offers to append the missing ones and
  remembers when the user declined.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pathspec
from pydantic import BaseModel

from agentsync.file_handler import read_text, write_bytes_atomic
from agentsync.sync.manifest import project_state_dir, utc_now

logger = logging.getLogger(__name__)

GITIGNORE = ".gitignore"
DEFAULT_IGNORE_RULES: tuple[str, ...] = ("agents/.local/", "**/*.local.md")
IGNORE_RULES_HEADER = "# agentsync local overrides"
PREFERENCE_FILE = "ignore-prompt.json"


def load_gitignore(repo_root: Path) -> pathspec.PathSpec:
    """``.gitignore`` of *repo_root* as a ``gitwildmatch`` spec (empty if absent)."""
    path = repo_root / GITIGNORE
    lines: list[str] = []
    if path.is_file():
        lines = read_text(path).splitlines()
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


# ---------------------------------------------------------------------------
# Local-override rules
# ---------------------------------------------------------------------------


class IgnoreRuleStatus(BaseModel):
    """Which of the wanted rules ``.gitignore`` is missing."""

    ignore_file: str
    missing_rules: list[str] = []

    model_config = {"frozen": True}


def _normalise(rule: str) -> str:
    return rule.strip().rstrip("/")


def _existing_rules(path: Path) -> tuple[str, set[str]]:
    if not path.is_file():
        return "", set()
    text = read_text(path)
    rules = {
        _normalise(line)
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    }
    return text, rules


def ignore_rule_status(
    repo_root: Path, rules: tuple[str, ...] = DEFAULT_IGNORE_RULES
) -> IgnoreRuleStatus:
    """Compare *rules* with the lines of ``<repo>/.gitignore``.

    A rule counts as present when a non-comment line equals it, ignoring
    surrounding whitespace and trailing slashes.
    """
    path = repo_root / GITIGNORE
    _, existing = _existing_rules(path)
    missing = [r.strip() for r in rules if r.strip() and _normalise(r) not in existing]
    return IgnoreRuleStatus(ignore_file=str(path), missing_rules=missing)


def append_ignore_rules(
    repo_root: Path, rules: tuple[str, ...] = DEFAULT_IGNORE_RULES
) -> IgnoreRuleStatus:
    """Append the missing *rules* to ``.gitignore`` under a comment header.

    Creates the file when needed.  Returns the status after the write,
    which lists no missing rules.
    """
    path = repo_root / GITIGNORE
    status = ignore_rule_status(repo_root, rules)
    if not status.missing_rules:
        return status

    text, _ = _existing_rules(path)
    block = "\n".join([IGNORE_RULES_HEADER, *status.missing_rules]) + "\n"
    body = text.rstrip()
    updated = f"{body}\n\n{block}" if body else block
    write_bytes_atomic(path, updated.encode("utf-8"))
    logger.info("Added %s to %s", ", ".join(status.missing_rules), path)
    return IgnoreRuleStatus(ignore_file=str(path))


# ---------------------------------------------------------------------------
# Remembered answer
# ---------------------------------------------------------------------------


class IgnorePreference(BaseModel):
    ignore_prompt_declined: bool = False
    updated_at: str | None = None

    model_config = {"frozen": True}


def preference_path(state_dir: Path, repo_root: Path) -> Path:
    return project_state_dir(state_dir, repo_root) / PREFERENCE_FILE


def read_ignore_preference(state_dir: Path, repo_root: Path) -> IgnorePreference:
    """The stored answer for *repo_root*; a missing or corrupt file means none."""
    path = preference_path(state_dir, repo_root)
    if not path.is_file():
        return IgnorePreference()
    try:
        return IgnorePreference.model_validate(json.loads(read_text(path)))
    except ValueError as exc:
        logger.warning("Ignoring unreadable preference file %s: %s", path, exc)
        return IgnorePreference()


def record_ignore_prompt_declined(state_dir: Path, repo_root: Path) -> IgnorePreference:
    """Remember that the user declined to add the ignore rules."""
    preference = IgnorePreference(ignore_prompt_declined=True, updated_at=utc_now())
    data = json.dumps(preference.model_dump(), indent=2) + "\n"
    write_bytes_atomic(preference_path(state_dir, repo_root), data.encode("utf-8"))
    return preference
