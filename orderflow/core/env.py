"""
Environment loading with .env file support.

Settings are read from the process environment; a `.env` file in the working
directory (or an explicit path) is loaded first without overriding values
that are already set.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def load_env(env_file: str | Path | None = None, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Returns:
        True if a file was found and loaded, False otherwise
    """
    path = Path(env_file) if env_file else Path.cwd() / ".env"
    if not path.exists():
        return False
    load_dotenv(path, override=override)
    return True


def get_bool(key: str, default: bool = False) -> bool:
    """Get environment variable as boolean."""
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def get_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    try:
        return int(os.environ.get(key, str(default)))
    except (ValueError, TypeError):
        return default


def get_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    try:
        return float(os.environ.get(key, str(default)))
    except (ValueError, TypeError):
        return default
