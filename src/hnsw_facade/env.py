"""Typed environment variable parsing helpers."""

import os
from typing import Optional

_TRUTHY = ("true", "1", "yes", "on")
_FALSEY = ("false", "0", "no", "off", "")


def get_env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable as a stripped string."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get an environment variable as an integer.

    Raises:
        ValueError: If the variable is set but is not an integer.
    """
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be an integer, got '{value}'.")


def get_env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Get an environment variable as a boolean.

    Truthy: true, 1, yes, on
    Falsey: false, 0, no, off, (empty string)
    """
    value = os.getenv(name)
    if value is None:
        return default

    val_lower = value.strip().lower()
    if val_lower in _TRUTHY:
        return True
    if val_lower in _FALSEY:
        return False

    raise ValueError(f"Environment variable '{name}' must be a boolean, got '{value}'.")
