"""
Locating and reading the project's .env files.

The web app resolves env files in a fixed order and the first existing
file wins: .env.local, then .env.{NODE_ENV}, then .env. Every command
loads env the same way so checks see exactly what the app would see.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, load_dotenv

logger = logging.getLogger(__name__)


def env_file_candidates(node_env: str = "development") -> list[str]:
    """Env file names in load order."""
    return [".env.local", f".env.{node_env}", ".env"]


def find_env_file(root: Path, node_env: str = "development") -> Optional[Path]:
    """Return the first env file that exists under root, or None."""
    for name in env_file_candidates(node_env):
        path = Path(root) / name
        if path.is_file():
            return path
    return None


def read_env_file(path: Path) -> dict[str, str]:
    """
    Parse a .env file into a dict without touching os.environ.

    Keys declared without a value (bare `KEY`) are dropped.
    """
    values = dotenv_values(path, encoding="utf-8")
    return {key: value for key, value in values.items() if value is not None}


def load_env(
    root: Path,
    node_env: Optional[str] = None,
    env_file: Optional[Path] = None,
    override: bool = False,
) -> Optional[Path]:
    """
    Load an env file into os.environ.

    An explicit env_file takes precedence over the lookup order.
    Returns the loaded path, or None when no file was found.
    """
    node_env = node_env or os.environ.get("NODE_ENV", "development")
    path = Path(env_file) if env_file else find_env_file(root, node_env)

    if path is None:
        logger.debug("No env file found", extra={"root": str(root), "node_env": node_env})
        return None

    if not path.is_file():
        raise FileNotFoundError(f"Env file not found: {path}")

    load_dotenv(path, override=override, encoding="utf-8")
    logger.info("Loaded env file", extra={"path": str(path)})
    return path
