"""TOML configuration discovery for gitsocial.

Sources, later ones winning key by key:

1. built-in defaults (``GitSocialConfig``)
2. ``~/.gitsocial/config.toml``
3. ``.gitsocial/config.toml`` in the project directory or the nearest parent
4. ``GITSOCIAL_*`` environment variables

A broken user file only warns; a broken project file or a merged result that
fails validation raises :class:`ConfigError`.
"""

from __future__ import annotations

import os
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import GitSocialConfig


CONFIG_DIRNAME = ".gitsocial"
CONFIG_FILENAME = "config.toml"

# Environment variable -> dotted key in the config document
ENV_MAPPING: Dict[str, str] = {
    "GITSOCIAL_STORAGE_DIR": "storage.base_dir",
    "GITSOCIAL_RETENTION_DAYS": "storage.retention_days",
    "GITSOCIAL_INITIAL_DEPTH": "storage.initial_depth",
    "GITSOCIAL_PARTIAL_CLONE_FILTER": "storage.partial_clone_filter",
    "GITSOCIAL_BRANCH": "social.branch",
    "GITSOCIAL_CACHE_WORKSPACE_TTL": "cache.workspace_ttl",
    "GITSOCIAL_CACHE_LIST_TTL": "cache.list_ttl",
    "GITSOCIAL_CACHE_REPOSITORY_TTL": "cache.repository_ttl",
    "GITSOCIAL_LOG_LEVEL": "logging.level",
    "GITSOCIAL_LOG_DIR": "logging.dir",
    "GITSOCIAL_LOG_MAX_BYTES": "logging.max_bytes",
    "GITSOCIAL_LOG_BACKUP_COUNT": "logging.backup_count",
    "GITSOCIAL_LOG_DISABLE_FILE": "logging.disable_file",
}


class ConfigError(Exception):
    """Configuration loading or validation error."""


def user_config_path() -> Path:
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.gitsocial/`` at or above ``project_path``.

    The user-level directory in $HOME is never treated as a project config.
    """
    start = Path(project_path or Path.cwd()).resolve()
    user_dir = user_config_path().parent
    for directory in (start, *start.parents):
        candidate = directory / CONFIG_DIRNAME
        if candidate.is_dir() and candidate != user_dir:
            return candidate
    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; tables merge, everything else is replaced."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _apply_env_overlay(document: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``GITSOCIAL_*`` variables; pydantic converts the string values."""
    overlay: Dict[str, Any] = {}
    for env_var, dotted in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        *sections, key = dotted.split(".")
        table = overlay
        for section in sections:
            table = table.setdefault(section, {})
        table[key] = value
    return _deep_merge(document, overlay)


def config_sources(project_path: Optional[Path] = None) -> List[Path]:
    """Config files that :func:`load_config` would read, lowest precedence first."""
    sources = []
    user_path = user_config_path()
    if user_path.is_file():
        sources.append(user_path)
    project_dir = _get_project_config_dir(project_path)
    if project_dir is not None and (project_dir / CONFIG_FILENAME).is_file():
        sources.append(project_dir / CONFIG_FILENAME)
    return sources


def load_config(project_path: Optional[Path] = None, skip_env: bool = False) -> GitSocialConfig:
    """Load and validate the merged configuration.

    Raises:
        ConfigError: invalid project file or failed validation
    """
    document: Dict[str, Any] = {}
    user_path = user_config_path()
    for path in config_sources(project_path):
        try:
            document = _deep_merge(document, _load_toml(path))
        except ConfigError as e:
            if path != user_path:
                raise ConfigError(f"Invalid project config: {e}")
            warnings.warn(f"Skipping invalid user config at {path}: {e}", UserWarning)

    if not skip_env:
        document = _apply_env_overlay(document)

    try:
        return GitSocialConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")
