"""Lifecycle hooks.

Execution order for one run::

    global before_sync
      target before_sync
        (per item) global before_convert -> target before_convert
                   -> convert / write ->
                   global after_convert -> target after_convert
      target after_sync
    global after_sync

A hook is either a shell command (``CommandHook``) or a Python callable
(``CallableHook``) receiving a ``HookContext``.  Any failure is raised as
``HookError``; the engine decides how much work it aborts.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel

from agentsync.config_schema import HookConfig, HooksConfig
from agentsync.errors import ConfigError, HookError
from agentsync.references import load_reference

logger = logging.getLogger(__name__)


class HookPhase(str, Enum):
    BEFORE_SYNC = "before_sync"
    AFTER_SYNC = "after_sync"
    BEFORE_CONVERT = "before_convert"
    AFTER_CONVERT = "after_convert"


class HookContext(BaseModel):
    """Information handed to every hook.

    ``target_id`` is ``None`` for global ``before_sync``/``after_sync``;
    ``item_name``, ``category`` and ``output_path`` are only set for
    convert hooks.
    """

    phase: HookPhase
    repo_root: str
    agents_dir: str
    target_id: str | None = None
    category: str | None = None
    item_name: str | None = None
    output_path: str | None = None
    dry_run: bool = False

    model_config = {"frozen": True}

    def as_env(self) -> dict[str, str]:
        """Environment variables exported to shell hooks."""
        env = {
            "AGENTSYNC_PHASE": self.phase.value,
            "AGENTSYNC_REPO": self.repo_root,
            "AGENTSYNC_AGENTS_DIR": self.agents_dir,
            "AGENTSYNC_DRY_RUN": "1" if self.dry_run else "0",
        }
        optional = {
            "AGENTSYNC_TARGET": self.target_id,
            "AGENTSYNC_CATEGORY": self.category,
            "AGENTSYNC_ITEM": self.item_name,
            "AGENTSYNC_OUTPUT_PATH": self.output_path,
        }
        env.update({k: v for k, v in optional.items() if v is not None})
        return env


# ---------------------------------------------------------------------------
# Hook implementations
# ---------------------------------------------------------------------------


class Hook:
    """Base class for hooks."""

    description: str

    def __call__(self, context: HookContext) -> None:
        raise NotImplementedError  # pragma: no cover


class CommandHook(Hook):
    """Run a shell command in the repository root."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.description = command

    def __call__(self, context: HookContext) -> None:
        env = {**os.environ, **context.as_env()}
        completed = subprocess.run(
            self.command,
            shell=True,
            cwd=context.repo_root,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )
        if completed.stdout:
            logger.debug("Hook output (%s): %s", self.command, completed.stdout.strip())
        if completed.returncode != 0:
            detail = completed.stderr.strip() or completed.stdout.strip()
            message = f"command '{self.command}' exited with {completed.returncode}"
            if detail:
                message += f": {detail}"
            raise HookError(message)


class CallableHook(Hook):
    """Call ``func(context)``."""

    def __init__(self, func: Callable[[HookContext], Any], description: str) -> None:
        self.func = func
        self.description = description

    def __call__(self, context: HookContext) -> None:
        self.func(context)


def create_hook(config: HookConfig) -> Hook:
    if config.call:
        return CallableHook(load_reference(config.call), config.call)
    if config.command:
        return CommandHook(config.command)
    raise ConfigError("A hook needs either 'command' or 'call'")


class HookSet(BaseModel):
    """Hooks for each phase, in execution order."""

    before_sync: tuple[Hook, ...] = ()
    after_sync: tuple[Hook, ...] = ()
    before_convert: tuple[Hook, ...] = ()
    after_convert: tuple[Hook, ...] = ()

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @classmethod
    def from_config(cls, config: HooksConfig) -> HookSet:
        return cls(
            before_sync=tuple(create_hook(h) for h in config.before_sync),
            after_sync=tuple(create_hook(h) for h in config.after_sync),
            before_convert=tuple(create_hook(h) for h in config.before_convert),
            after_convert=tuple(create_hook(h) for h in config.after_convert),
        )

    def for_phase(self, phase: HookPhase) -> tuple[Hook, ...]:
        return getattr(self, phase.value)

    def __bool__(self) -> bool:
        return any(
            (self.before_sync, self.after_sync, self.before_convert, self.after_convert)
        )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class HookRunner:
    """Execute global and per-target hooks in the documented order.

    Args:
        global_hooks: Hooks from the top-level ``hooks`` config section.
    """

    def __init__(self, global_hooks: HookSet | None = None) -> None:
        self.global_hooks = global_hooks or HookSet()

    def _run(self, hooks: tuple[Hook, ...], context: HookContext, owner: str) -> None:
        for hook in hooks:
            logger.debug("Running %s %s hook: %s", owner, context.phase.value, hook.description)
            try:
                hook(context)
            except HookError as exc:
                raise HookError(
                    f"{owner} {context.phase.value} hook failed: {exc}"
                ) from exc
            except Exception as exc:
                raise HookError(
                    f"{owner} {context.phase.value} hook "
                    f"'{hook.description}' failed: {exc}"
                ) from exc

    def run_global(self, context: HookContext) -> None:
        """Run the global hooks of ``context.phase``."""
        self._run(self.global_hooks.for_phase(context.phase), context, "Global")

    def run_target(self, target_hooks: HookSet, context: HookContext) -> None:
        """Run one target's hooks of ``context.phase``."""
        owner = f"Target '{context.target_id}'"
        self._run(target_hooks.for_phase(context.phase), context, owner)

    def run_convert(self, target_hooks: HookSet, context: HookContext) -> None:
        """Run global then per-target hooks for a convert phase."""
        self.run_global(context)
        self.run_target(target_hooks, context)
