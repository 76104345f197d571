"""Unified configuration schema for agentsync.

Defines Pydantic models for the YAML config structure: target definitions
(built-in overrides and custom targets), global hooks, engine settings and
logging.  Output path templates are validated here, at load time, against
the closed placeholder set of their item kind.

Usage:
    from agentsync.config_loader import load_hierarchical_config
    from agentsync.config_schema import build_config

    raw = load_hierarchical_config(repo_root)
    config = build_config(raw)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

_REFERENCE_PATTERN = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")
_TARGET_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

CATEGORY_KEYS: tuple[str, ...] = ("skills", "commands", "subagents", "instructions")
BUILTIN_WRITERS: tuple[str, ...] = ("file", "directory")


def _check_reference(value: str, what: str) -> str:
    if not _REFERENCE_PATTERN.match(value):
        raise ValueError(
            f"{what} reference '{value}' must look like 'package.module:function'"
        )
    return value


# ---------------------------------------------------------------------------
# Output definitions
# ---------------------------------------------------------------------------


class OutputConfig(BaseModel):
    """Output definition for one item kind of one target.

    Every field is optional so a config entry can override only part of
    a built-in definition.
    """

    path: str | None = Field(default=None, description="Output path template")
    format: Literal["markdown", "toml"] | None = Field(
        default=None, description="Command file format"
    )
    location: Literal["project", "user"] | None = Field(
        default=None, description="Command location ({command_location})"
    )
    group: str | None = Field(
        default=None,
        description="Instruction sharing group; targets in one group may "
        "point at the same physical file",
    )
    writer: str | None = Field(
        default=None,
        description="'file', 'directory' or a 'module:function' callback",
    )
    converter: str | None = Field(
        default=None, description="'module:function' converter callback"
    )

    model_config = {"frozen": True}

    @field_validator("writer")
    @classmethod
    def validate_writer(cls, v: str | None) -> str | None:
        if v is None or v in BUILTIN_WRITERS:
            return v
        return _check_reference(v, "Writer")

    @field_validator("converter")
    @classmethod
    def validate_converter(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_reference(v, "Converter")


OutputSetting = OutputConfig | Literal[False] | None


class TargetOutputsConfig(BaseModel):
    """Per-kind output definitions.  ``false`` disables a kind."""

    skills: OutputSetting = None
    commands: OutputSetting = None
    subagents: OutputSetting = None
    instructions: OutputSetting = None

    model_config = {"frozen": True}

    @field_validator(*CATEGORY_KEYS, mode="before")
    @classmethod
    def expand_path_shorthand(cls, v: Any) -> Any:
        """Allow ``commands: "{repo}/x/{item}.md"`` as a path-only mapping."""
        if isinstance(v, str):
            return {"path": v}
        return v

    @model_validator(mode="after")
    def validate_templates(self) -> TargetOutputsConfig:
        from agentsync.sync.models import ItemKind
        from agentsync.sync.paths import validate_template

        for key in CATEGORY_KEYS:
            output = getattr(self, key)
            if isinstance(output, OutputConfig) and output.path is not None:
                validate_template(output.path, ItemKind.from_category(key))
        return self

    def get(self, category: str) -> OutputSetting:
        return getattr(self, category)


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class HookConfig(BaseModel):
    """A single hook: a shell ``command`` or a Python ``call`` reference."""

    command: str | None = None
    call: str | None = None

    model_config = {"frozen": True}

    @field_validator("call")
    @classmethod
    def validate_call(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_reference(v, "Hook")

    @model_validator(mode="after")
    def exactly_one(self) -> HookConfig:
        if bool(self.command) == bool(self.call):
            raise ValueError("Specify exactly one of 'command' or 'call'")
        return self


class HooksConfig(BaseModel):
    """Lifecycle hooks.  Each phase accepts one entry or a list."""

    before_sync: list[HookConfig] = []
    after_sync: list[HookConfig] = []
    before_convert: list[HookConfig] = []
    after_convert: list[HookConfig] = []

    model_config = {"frozen": True}

    @field_validator(
        "before_sync", "after_sync", "before_convert", "after_convert",
        mode="before",
    )
    @classmethod
    def normalize_entries(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            v = [v]
        if isinstance(v, list):
            return [{"command": e} if isinstance(e, str) else e for e in v]
        return v


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


class TargetConfig(BaseModel):
    """One target definition.

    An entry whose ``id`` names a built-in target overrides that target
    field by field.  A new id defines a custom target, optionally starting
    from a built-in via ``extends``.
    """

    id: str
    display_name: str | None = None
    aliases: list[str] = []
    extends: str | None = None
    disabled: bool = False
    outputs: TargetOutputsConfig = Field(default_factory=TargetOutputsConfig)
    fallbacks: dict[str, str] = {}
    hooks: HooksConfig = Field(default_factory=HooksConfig)

    model_config = {"frozen": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not _TARGET_ID_PATTERN.match(v):
            raise ValueError(
                f"Invalid target id '{v}': use letters, digits, '.', '_' or '-'"
            )
        return v

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: list[str]) -> list[str]:
        for alias in v:
            if not _TARGET_ID_PATTERN.match(alias):
                raise ValueError(f"Invalid target alias '{alias}'")
        return v

    @field_validator("fallbacks")
    @classmethod
    def validate_fallbacks(cls, v: dict[str, str]) -> dict[str, str]:
        for source, dest in v.items():
            for name in (source, dest):
                if name not in CATEGORY_KEYS:
                    raise ValueError(
                        f"Unknown fallback category '{name}'. "
                        f"Expected one of: {', '.join(CATEGORY_KEYS)}"
                    )
            if source == dest:
                raise ValueError(f"Fallback for '{source}' points at itself")
        return v


# ---------------------------------------------------------------------------
# Engine / logging sections
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Engine settings."""

    agents_dir: str = Field(
        default="agents",
        description="Source directory, relative to the repository root",
    )
    state_dir: str = Field(
        default="~/.agentsync/state",
        description="Directory holding managed-output manifests",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Parallel writers across distinct output paths (1-32)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="WARNING", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config: built-in targets only) is always valid.
    """

    targets: list[TargetConfig] = []
    disabled_targets: list[str] = []
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def unique_target_ids(self) -> UnifiedConfig:
        seen: set[str] = set()
        for target in self.targets:
            key = target.id.casefold()
            if key in seen:
                raise ValueError(f"Duplicate target id '{target.id}'")
            seen.add(key)
        return self


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict | None) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        ConfigError: If validation fails.
    """
    if not raw_data:
        return UnifiedConfig()

    try:
        return UnifiedConfig(**raw_data)
    except ValidationError as exc:
        logger.debug("Config validation failed: %s", exc)
        raise ConfigError(f"Invalid configuration: {exc}") from exc
