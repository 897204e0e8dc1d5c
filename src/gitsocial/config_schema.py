"""Configuration schema for gitsocial.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import re
import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


_BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")


class StorageConfig(BaseModel):
    """On-disk mirror settings."""

    base_dir: str = Field(
        default="",
        description="Storage base for repository mirrors (empty = ~/.gitsocial/storage)",
    )
    retention_days: int = Field(
        default=7,
        ge=0,
        description="Days a non-persistent mirror survives without a fetch",
    )
    persistent_max_age_days: float = Field(
        default=30,
        gt=0,
        description="Age after which ensure rebuilds a persistent mirror",
    )
    temporary_max_age_days: float = Field(
        default=1,
        gt=0,
        description="Age after which ensure rebuilds a temporary mirror",
    )
    initial_depth: int = Field(
        default=100,
        ge=1,
        description="Commit depth used when a date-bounded fetch is refused",
    )
    partial_clone_filter: str = Field(
        default="blob:none",
        description="Partial clone filter applied to mirror remotes (empty = disabled)",
    )
    remote_name: str = Field(
        default="upstream",
        description="Remote name used inside mirrors",
    )
    commit_limit: int = Field(
        default=10000,
        ge=1,
        description="Maximum commits read from a mirror in one call",
    )

    @field_validator("base_dir")
    @classmethod
    def validate_base_dir(cls, v: str) -> str:
        """Warn if base_dir points at a file."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Storage base exists but is not a directory: {v}",
                    UserWarning,
                )
        return v

    def resolved_base(self) -> Path:
        if self.base_dir:
            return Path(self.base_dir).expanduser()
        return Path.home() / ".gitsocial" / "storage"


class CacheConfig(BaseModel):
    """TTL (seconds) per cache scope class."""

    workspace_ttl: float = Field(
        default=60.0,
        gt=0,
        description="TTL for workspace:* scopes",
    )
    list_ttl: float = Field(
        default=3600.0,
        gt=0,
        description="TTL for the following/all scopes",
    )
    repository_ttl: float = Field(
        default=86400.0,
        gt=0,
        description="TTL for repository:* scopes",
    )
    default_ttl: float = Field(
        default=300.0,
        gt=0,
        description="TTL for any other scope",
    )


class SocialConfig(BaseModel):
    """Protocol-level settings."""

    branch: str = Field(
        default="gitsocial",
        description="Social branch name used when the workspace does not configure one",
    )
    origin_remote: str = Field(
        default="origin",
        description="Remote whose refs decide whether a workspace post is pushed",
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        if not v or not _BRANCH_PATTERN.match(v) or ".." in v:
            raise ValueError(f"Invalid branch name: {v!r}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.gitsocial/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )


class GitSocialConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        description="Config schema version",
    )
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    social: SocialConfig = Field(default_factory=SocialConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v > 1:
            warnings.warn(
                f"Config version {v} is newer than supported (1). Some options may be ignored.",
                UserWarning,
            )
        return v
