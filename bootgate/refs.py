"""Resolve ``package.module:attr`` references supplied in configuration."""

from __future__ import annotations

import importlib
from typing import Any

from bootgate.exceptions import ConfigInvalidError


def split_ref(ref: str, default_attr: str | None = None) -> tuple[str, str]:
    module_name, sep, attr = ref.partition(":")
    if not sep:
        if default_attr is None:
            raise ConfigInvalidError(f"reference '{ref}' must look like 'module:attr'")
        attr = default_attr
    if not module_name or not attr:
        raise ConfigInvalidError(f"malformed reference '{ref}'")
    return module_name, attr


def import_ref(ref: str, default_attr: str | None = None) -> Any:
    """Import the object named by ``ref``. Import problems are configuration errors."""
    module_name, attr = split_ref(ref, default_attr)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigInvalidError(f"cannot import '{module_name}' for '{ref}': {e}") from e
    except Exception as e:
        # Module exists but blew up while executing (syntax error, import-time failure)
        raise ConfigInvalidError(
            f"'{module_name}' failed to import for '{ref}': {type(e).__name__}: {e}"
        ) from e
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ConfigInvalidError(f"'{module_name}' has no attribute '{attr}'") from e
