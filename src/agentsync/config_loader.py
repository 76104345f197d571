"""
Configuration file loading for agentsync.

Config files are plain YAML with two extensions:

* ``!include other.yml`` splices another file in place (paths relative to
  the including file; include cycles are rejected).
* ``${VAR}`` / ``${VAR:-default}`` in any string value is replaced from the
  environment once all files have been merged.

Several files may apply to one repository.  They are discovered in a fixed
order and merged shallowly: a top-level section from a higher-precedence
file replaces the same section from a lower one.

Usage:
    from agentsync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(repo_root)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENTSYNC_CONFIG"
PROJECT_CONFIG_DIR = ".agentsync"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")
GLOBAL_CONFIG_PATH = Path(".config") / "agentsync" / "config.yml"

# ---------------------------------------------------------------------------
# Environment interpolation
# ---------------------------------------------------------------------------

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  A ``${`` without a closing brace is kept as written.
    """

    def _lookup(match: re.Match) -> str:
        current = os.environ.get(match.group("name"), "")
        if current:
            return current
        return match.group("fallback") or ""

    return _PLACEHOLDER.sub(_lookup, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string inside *obj*."""
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return list(map(_interpolate_recursive, obj))
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include``.

    The tag is registered on this subclass only; ``yaml.safe_load`` keeps
    rejecting it.  ``chain`` lists the files currently being loaded, outermost
    first.
    """

    chain: tuple[Path, ...] = ()


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    current = Path(loader.name).resolve()
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = current.parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(str(p) for p in (*loader.chain, target))
        raise ConfigError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise ConfigError(
            f"Include file not found: {target} (referenced from {current})"
        )
    return _load_yaml_with_includes(target, chain=loader.chain)


IncludeLoader.add_constructor("!include", _construct_include)


def _load_yaml_with_includes(path: Path, chain: tuple[Path, ...] = ()) -> Any:
    """Parse *path* with ``IncludeLoader``; includes resolve recursively."""
    path = path.resolve()
    with path.open(encoding="utf-8") as stream:
        loader = IncludeLoader(stream)
        loader.chain = (*chain, path)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def _parse(path: Path) -> Any:
    try:
        return _load_yaml_with_includes(path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a single explicit config file (``--config``).

    Raises:
        ConfigError: If the file is missing, unparseable, or its root is
            not a mapping.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    data = _parse(path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file {path} must contain a mapping, got {type(data).__name__}"
        )
    return _interpolate_recursive(data)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _candidate_paths(repo_root: Path) -> list[Path]:
    paths: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        paths.append(Path(explicit).expanduser().resolve())
    paths.extend(repo_root / PROJECT_CONFIG_DIR / name for name in PROJECT_CONFIG_NAMES)
    paths.append(Path.home() / GLOBAL_CONFIG_PATH)
    return paths


def discover_config_files(repo_root: Path | None = None) -> list[Path]:
    """Existing config files, highest precedence first.

    Order: ``$AGENTSYNC_CONFIG``, ``<repo>/.agentsync/config.yml``,
    ``<repo>/.agentsync/config.yaml``, ``~/.config/agentsync/config.yml``.
    """
    return [p for p in _candidate_paths(repo_root or Path.cwd()) if p.exists()]


def resolve_config_path(repo_root: Path | None = None) -> Path:
    """The file ``--init-config`` should point at.

    The highest-precedence existing file, else the (not yet created)
    project file ``<repo>/.agentsync/config.yml``.
    """
    found = discover_config_files(repo_root)
    if found:
        return found[0]
    root = repo_root or Path.cwd()
    return root / PROJECT_CONFIG_DIR / PROJECT_CONFIG_NAMES[0]


# ---------------------------------------------------------------------------
# Starter file
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# agentsync configuration
#
# Built-in targets (claude, codex, copilot, gemini) work without any
# configuration.  Entries below override them or add custom targets.
#
# Path template placeholders:
#   {repo} {home} {agents_dir} {target} {target_name} {item} {item_kind}
#   commands only:     {command_location}
#   instructions only: {output_dir}
#
# targets:
#   - id: claude
#     outputs:
#       commands: false
#   - id: acme
#     display_name: Acme Agent
#     extends: claude
#     outputs:
#       skills: "{repo}/.acme/skills/{item}"
#       commands:
#         path: "{repo}/.acme/commands/{item}.toml"
#         format: toml
#     hooks:
#       after_sync: "echo synced $AGENTSYNC_TARGET"
#
# disabled_targets: [copilot]
#
# hooks:
#   before_sync:
#     - call: my_package.hooks:prepare
#
# sync:
#   agents_dir: agents
#   state_dir: ~/.agentsync/state
#   max_workers: 1
#
# logging:
#   level: WARNING
#   file: null
"""


def ensure_config(
    target: Path | None = None, repo_root: Path | None = None
) -> Path:
    """Return the active config file, writing the starter file if none exists.

    Args:
        target: Where to write the starter file.  Defaults to
            ``resolve_config_path(repo_root)``.
        repo_root: Repository root used for discovery.
    """
    found = discover_config_files(repo_root)
    if found:
        logger.debug("Using existing config file %s", found[0])
        return found[0]

    path = target or resolve_config_path(repo_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(repo_root: Path | None = None) -> dict[str, Any]:
    """Merge every discovered config file into one raw dict.

    Files are applied lowest precedence first, so the project file wins
    section by section (no deep merge).  Interpolation runs on the merged
    result.  A file whose root is not a mapping is skipped with a warning.
    Zero files means ``{}``: built-in targets only.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files(repo_root)):
        logger.debug("Reading config file %s", path)
        data = _parse(path)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring config file %s: root is a %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    if not merged:
        logger.debug("No configuration found; using built-in targets")
    return _interpolate_recursive(merged)
