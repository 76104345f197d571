"""Targets: built-in definitions, the per-run registry, and target selection.

``TargetRegistry`` is an explicit value built once per run from the
built-in table merged with user configuration, then passed to the catalog,
templating, candidate builder and orchestrator.  Ids and aliases are
unique case-insensitively.

``resolve_effective_targets()`` computes the ordered target ids an item
applies to from its declared targets and the run's ``only``/``skip``
lists.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Literal

from pydantic import BaseModel, Field

from agentsync.config_schema import (
    CATEGORY_KEYS,
    HooksConfig,
    OutputConfig,
    OutputSetting,
    TargetConfig,
    TargetOutputsConfig,
    UnifiedConfig,
)
from agentsync.errors import ConfigError
from agentsync.sync.converters import Converter, create_converter
from agentsync.sync.hooks import HookSet
from agentsync.sync.models import ItemKind
from agentsync.sync.writers import Writer, create_writer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolved models
# ---------------------------------------------------------------------------


class OutputDefinition(BaseModel):
    """Resolved output definition for one kind of one target."""

    path: str
    format: Literal["markdown", "toml"] = "markdown"
    location: Literal["project", "user"] = "project"
    group: str | None = None
    writer: Writer | None = None
    converter: Converter | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class ResolvedTarget(BaseModel):
    """One integration target after merging built-ins and configuration.

    Attributes:
        id: Canonical id (unique, case-insensitive).
        display_name: Name used in summaries.
        aliases: Alternative names accepted in frontmatter, templating
            selectors and ``--only``/``--skip``.
        outputs: Output definition per kind; ``None`` = unsupported.
        fallbacks: Kind to render instead when the native kind is
            unsupported.
        hooks: Per-target lifecycle hooks.
        builtin: Whether the target originates from the built-in table.
    """

    id: str
    display_name: str
    aliases: tuple[str, ...] = ()
    outputs: dict[ItemKind, OutputDefinition | None] = {}
    fallbacks: dict[ItemKind, ItemKind] = {}
    hooks: HookSet = Field(default_factory=HookSet)
    builtin: bool = False

    model_config = {"frozen": True}

    @property
    def names(self) -> tuple[str, ...]:
        return (self.id, *self.aliases)

    def output_for(
        self, kind: ItemKind
    ) -> tuple[ItemKind, OutputDefinition] | None:
        """Return ``(render_kind, output)`` for *kind*, applying fallback.

        Returns ``None`` when the target supports neither the kind nor a
        fallback for it.
        """
        native = self.outputs.get(kind)
        if native is not None:
            return kind, native
        fallback_kind = self.fallbacks.get(kind)
        if fallback_kind is not None:
            fallback = self.outputs.get(fallback_kind)
            if fallback is not None:
                return fallback_kind, fallback
        return None


# ---------------------------------------------------------------------------
# Built-in targets
# ---------------------------------------------------------------------------

BUILTIN_TARGETS: tuple[TargetConfig, ...] = (
    TargetConfig(
        id="claude",
        display_name="Claude Code",
        aliases=["claude-code"],
        outputs=TargetOutputsConfig(
            skills=OutputConfig(path="{repo}/.claude/skills/{item}"),
            commands=OutputConfig(
                path="{repo}/.claude/commands/{item}.md", format="markdown"
            ),
            subagents=OutputConfig(path="{repo}/.claude/agents/{item}.md"),
            instructions=OutputConfig(path="{output_dir}/CLAUDE.md"),
        ),
    ),
    TargetConfig(
        id="codex",
        display_name="Codex",
        outputs=TargetOutputsConfig(
            skills=OutputConfig(path="{repo}/.codex/skills/{item}"),
            commands=OutputConfig(
                path="{home}/.codex/prompts/{item}.md",
                format="markdown",
                location="user",
            ),
            instructions=OutputConfig(
                path="{output_dir}/AGENTS.md", group="agents"
            ),
        ),
        fallbacks={"subagents": "skills"},
    ),
    TargetConfig(
        id="copilot",
        display_name="GitHub Copilot CLI",
        aliases=["github-copilot"],
        outputs=TargetOutputsConfig(
            skills=OutputConfig(path="{repo}/.github/skills/{item}"),
            instructions=OutputConfig(
                path="{output_dir}/AGENTS.md", group="agents"
            ),
        ),
        fallbacks={"commands": "skills", "subagents": "skills"},
    ),
    TargetConfig(
        id="gemini",
        display_name="Gemini CLI",
        outputs=TargetOutputsConfig(
            skills=OutputConfig(path="{repo}/.gemini/skills/{item}"),
            commands=OutputConfig(
                path="{repo}/.gemini/commands/{item}.toml", format="toml"
            ),
            instructions=OutputConfig(path="{output_dir}/GEMINI.md"),
        ),
        fallbacks={"subagents": "skills"},
    ),
)

BUILTIN_TARGET_IDS: tuple[str, ...] = tuple(t.id for t in BUILTIN_TARGETS)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def _merge_output(base: OutputSetting, override: OutputSetting) -> OutputSetting:
    if override is None:
        return base
    if override is False or not isinstance(base, OutputConfig):
        return override
    updates = {name: getattr(override, name) for name in override.model_fields_set}
    return base.model_copy(update=updates)


def _merge_hooks(base: HooksConfig, override: HooksConfig) -> HooksConfig:
    updates = {name: getattr(override, name) for name in override.model_fields_set}
    return base.model_copy(update=updates)


def merge_target_config(base: TargetConfig, override: TargetConfig) -> TargetConfig:
    """Apply *override* on top of *base*, field by field.

    Output definitions merge per kind and per field; ``false`` disables a
    kind.  Fallbacks merge per kind.  Hook phases present in *override*
    replace the base phase.
    """
    outputs = {
        key: _merge_output(base.outputs.get(key), override.outputs.get(key))
        for key in CATEGORY_KEYS
    }
    fields = override.model_fields_set
    return TargetConfig(
        id=override.id,
        display_name=override.display_name or base.display_name,
        aliases=override.aliases if "aliases" in fields else base.aliases,
        extends=override.extends,
        disabled=override.disabled if "disabled" in fields else base.disabled,
        outputs=TargetOutputsConfig(**outputs),
        fallbacks={**base.fallbacks, **override.fallbacks},
        hooks=_merge_hooks(base.hooks, override.hooks),
    )


def _resolve_output(
    target_id: str, category: str, setting: OutputSetting
) -> OutputDefinition | None:
    if not isinstance(setting, OutputConfig):
        return None
    if not setting.path:
        raise ConfigError(
            f"Target '{target_id}' defines {category} output without a path"
        )
    kind = ItemKind.from_category(category)
    writer = create_writer(setting.writer)
    if setting.writer == "directory" and kind != ItemKind.SKILL:
        logger.warning(
            "Target '%s' uses the directory writer for %s; content is "
            "written to SKILL.md inside the output path",
            target_id,
            category,
        )
    return OutputDefinition(
        path=setting.path,
        format=setting.format or "markdown",
        location=setting.location or "project",
        group=setting.group,
        writer=writer,
        converter=create_converter(setting.converter),
    )


def resolve_target(config: TargetConfig, builtin: bool) -> ResolvedTarget:
    """Turn a (merged) ``TargetConfig`` into a ``ResolvedTarget``.

    Raises:
        ConfigError: If an output has no path or a reference cannot be
            imported.
    """
    outputs = {
        ItemKind.from_category(key): _resolve_output(
            config.id, key, config.outputs.get(key)
        )
        for key in CATEGORY_KEYS
    }
    fallbacks = {
        ItemKind.from_category(src): ItemKind.from_category(dest)
        for src, dest in config.fallbacks.items()
    }
    return ResolvedTarget(
        id=config.id.lower(),
        display_name=config.display_name or config.id,
        aliases=tuple(a.lower() for a in config.aliases),
        outputs=outputs,
        fallbacks=fallbacks,
        hooks=HookSet.from_config(config.hooks),
        builtin=builtin,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TargetRegistry:
    """Ordered, case-insensitive collection of resolved targets.

    Args:
        targets: Targets in display order.

    Raises:
        ConfigError: If two targets share an id or alias.
    """

    def __init__(self, targets: Iterable[ResolvedTarget]) -> None:
        self._targets: tuple[ResolvedTarget, ...] = tuple(targets)
        self._by_name: dict[str, ResolvedTarget] = {}

        seen_ids: set[str] = set()
        for target in self._targets:
            key = target.id.casefold()
            if key in seen_ids:
                raise ConfigError(f"Duplicate target id '{target.id}'")
            seen_ids.add(key)

        for target in self._targets:
            for name in target.names:
                key = name.casefold()
                owner = self._by_name.get(key)
                if owner is None:
                    self._by_name[key] = target
                elif owner.id != target.id:
                    raise ConfigError(
                        f"Target name '{name}' is used by both "
                        f"'{owner.id}' and '{target.id}'"
                    )

    @classmethod
    def from_config(cls, config: UnifiedConfig | None = None) -> TargetRegistry:
        """Build the registry from built-ins plus *config*.

        Raises:
            ConfigError: On an unknown ``extends`` base, an output without a
                path, an unimportable reference or duplicate names.
        """
        config = config or UnifiedConfig()
        builtins = {t.id: t for t in BUILTIN_TARGETS}
        merged: dict[str, tuple[TargetConfig, bool]] = {
            t.id: (t, True) for t in BUILTIN_TARGETS
        }

        for entry in config.targets:
            key = entry.id.lower()
            if key in builtins:
                if entry.extends:
                    raise ConfigError(
                        f"Built-in target '{entry.id}' cannot use 'extends'"
                    )
                merged[key] = (merge_target_config(builtins[key], entry), True)
                continue
            if entry.extends:
                base = builtins.get(entry.extends.lower())
                if base is None:
                    raise ConfigError(
                        f"Target '{entry.id}' extends unknown built-in "
                        f"'{entry.extends}'. Built-ins: "
                        f"{', '.join(BUILTIN_TARGET_IDS)}"
                    )
                base = base.model_copy(
                    update={"display_name": None, "aliases": []}
                )
                merged[key] = (merge_target_config(base, entry), False)
            else:
                merged[key] = (entry, False)

        disabled = {name.lower() for name in config.disabled_targets}
        unknown = disabled - set(merged)
        if unknown:
            logger.warning(
                "disabled_targets names unknown target(s): %s",
                ", ".join(sorted(unknown)),
            )

        targets = [
            resolve_target(target_config, builtin)
            for key, (target_config, builtin) in merged.items()
            if key not in disabled and not target_config.disabled
        ]
        logger.debug("Target registry: %s", ", ".join(t.id for t in targets))
        return cls(targets)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[ResolvedTarget]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._by_name

    @property
    def targets(self) -> tuple[ResolvedTarget, ...]:
        return self._targets

    def ids(self) -> list[str]:
        return [t.id for t in self._targets]

    def get(self, name: str) -> ResolvedTarget | None:
        """Look up a target by id or alias (case-insensitive)."""
        return self._by_name.get(name.strip().casefold())

    def require(self, name: str) -> ResolvedTarget:
        """Like ``get()`` but raise ``ConfigError`` for unknown names."""
        target = self.get(name)
        if target is None:
            raise ConfigError(
                f"Unknown target '{name}'. Known targets: {', '.join(self.ids())}"
            )
        return target

    def valid_agents(self) -> list[str]:
        """Every id and alias, sorted; used by templating selectors."""
        return sorted(self._by_name)

    def canonical_ids(self, names: Iterable[str]) -> list[str]:
        """Canonicalise *names*, de-duplicating in order.

        Raises:
            ConfigError: If a name is unknown.
        """
        result: list[str] = []
        for name in names:
            target_id = self.require(name).id
            if target_id not in result:
                result.append(target_id)
        return result


# ---------------------------------------------------------------------------
# Effective targets
# ---------------------------------------------------------------------------


def resolve_effective_targets(
    declared: Sequence[str] | None,
    only: Sequence[str],
    skip: Sequence[str],
    registry: TargetRegistry,
) -> list[str]:
    """Return the ordered target ids an item applies to.

    Starts from *declared* (or every known target when ``None``), then
    intersects with *only* when it is non-empty, otherwise subtracts
    *skip*.  The result follows registry order.

    All names must already be canonical ids.
    """
    base = set(registry.ids()) if declared is None else set(declared)
    if only:
        base &= set(only)
    elif skip:
        base -= set(skip)
    return [target_id for target_id in registry.ids() if target_id in base]
