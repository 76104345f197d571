"""Exception taxonomy shared by the catalog, config and sync layers.

Propagation rules:

- ``ConfigError`` is raised while loading configuration and stops the CLI
  before any source is read.
- ``SourceError`` (and its subclasses) aborts a whole category before any
  filesystem mutation for that category.
- ``PathResolutionError``, ``CollisionError``, ``ConverterError``,
  ``WriteError`` and ``HookError`` are caught by the engine and recorded on
  the owning target; sibling items and other targets keep going.
- ``RemovalHazard`` never escapes the manifest removal pass; it is turned
  into a warning and the file is preserved.
"""

from __future__ import annotations


class AgentSyncError(Exception):
    """Base class for all agentsync errors."""


class ConfigError(AgentSyncError, ValueError):
    """Invalid configuration file, target definition or CLI selection."""


# ---------------------------------------------------------------------------
# Source errors (category-fatal)
# ---------------------------------------------------------------------------


class SourceError(AgentSyncError):
    """A source item is structurally invalid."""


class FrontmatterError(SourceError):
    """Malformed frontmatter block."""


class InvalidTargetsError(SourceError):
    """Declared target list is empty or names unknown targets."""


class TemplatingError(SourceError):
    """Invalid ``<agents>`` block in a source file."""

    def __init__(
        self, message: str, source_path: str, valid_agents: list[str]
    ) -> None:
        self.source_path = source_path
        self.valid_agents = valid_agents
        super().__init__(
            f"Agent templating error in {source_path}: {message}. "
            f"Valid agents: {', '.join(valid_agents)}."
        )


# ---------------------------------------------------------------------------
# Target / item level errors
# ---------------------------------------------------------------------------


class PathResolutionError(AgentSyncError):
    """An output path template could not be resolved."""


class CollisionError(AgentSyncError):
    """Unrelated candidates claim the same physical output path."""

    def __init__(self, output_path: str, target_ids: list[str]) -> None:
        self.output_path = output_path
        self.target_ids = target_ids
        super().__init__(
            f"Output collision detected at {output_path} "
            f"(targets: {', '.join(target_ids)})."
        )


class ConverterError(AgentSyncError):
    """A converter raised or returned an unusable result."""


class WriteError(AgentSyncError):
    """A writer failed to produce its output."""


class HookError(AgentSyncError):
    """A lifecycle hook raised or exited non-zero."""


class RemovalHazard(AgentSyncError):
    """A managed output was modified on disk since it was last written."""

    def __init__(self, output_path: str) -> None:
        self.output_path = output_path
        super().__init__(
            f"Output modified since last sync; skipping removal of "
            f"{output_path} (non-interactive)."
        )
