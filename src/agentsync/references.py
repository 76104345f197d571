"""Resolve ``package.module:function`` references from configuration."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)


def load_reference(ref: str) -> Callable[..., Any]:
    """Import *ref* and return the named callable.

    Raises:
        ConfigError: If the module cannot be imported, the attribute is
            missing, or it is not callable.
    """
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(
            f"Reference '{ref}' must look like 'package.module:function'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import '{module_name}' for '{ref}': {exc}") from exc

    func = getattr(module, attr, None)
    if func is None:
        raise ConfigError(f"Module '{module_name}' has no attribute '{attr}'")
    if not callable(func):
        raise ConfigError(f"Reference '{ref}' is not callable")
    logger.debug("Loaded reference %s", ref)
    return func
