"""Configuration schema for mirrorsync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class SyncSettings(BaseModel):
    """What to mirror, and from where to where."""

    source_repo: str = Field(
        default="",
        description="Source repository URL (https, ssh or local path)",
    )
    destination_repo: str = Field(
        default="",
        description="Destination repository URL (https, ssh or local path)",
    )
    source_branch: str = Field(
        default="main",
        description="Branch to read from the source repository",
    )
    destination_branch: str = Field(
        default="main",
        description="Branch to write in the destination repository",
    )
    sync_all_branches: bool = Field(
        default=False,
        description="Mirror every source branch and delete destination-only branches",
    )
    sync_tags: str = Field(
        default="",
        description='Tag sync: "true" for all tags, a pattern to filter, empty to skip',
    )
    use_main_as_fallback: bool = Field(
        default=True,
        description="Fall back to main/master when the source branch is missing",
    )

    @field_validator("sync_tags", mode="before")
    @classmethod
    def normalize_sync_tags(cls, v: Any) -> str:
        """Accept booleans: true -> "true", false/None -> ""."""
        if v is None or v is False:
            return ""
        if v is True:
            return "true"
        text = str(v).strip()
        if text.lower() == "true":
            return "true"
        if text.lower() == "false":
            return ""
        return text


class AuthSettings(BaseModel):
    """Authentication inputs. Secrets are never logged."""

    github_token: str = Field(
        default="",
        description="Personal access token used for both repositories",
    )
    source_token: str = Field(
        default="",
        description="Token for the source repository (overrides github_token)",
    )
    destination_token: str = Field(
        default="",
        description="Token for the destination repository (overrides github_token)",
    )
    github_app_id: str = Field(
        default="",
        description="GitHub App id for installation-token authentication",
    )
    github_app_private_key: str = Field(
        default="",
        description="GitHub App private key (PEM)",
    )
    github_app_installation_id: str = Field(
        default="",
        description="GitHub App installation id",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL for the installation-token exchange",
    )
    ssh_key: str = Field(
        default="",
        description="SSH private key content",
    )
    ssh_key_path: str = Field(
        default="",
        description="Path to an SSH private key file",
    )
    ssh_passphrase: str = Field(
        default="",
        description="Passphrase for the SSH private key",
    )
    ssh_known_hosts_path: str = Field(
        default="",
        description="known_hosts file to use (empty = populate with ssh-keyscan)",
    )
    ssh_strict_host_key_checking: bool = Field(
        default=True,
        description="Verify SSH host keys",
    )

    @field_validator("ssh_key_path", "ssh_known_hosts_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Warn if a configured file does not exist."""
        if v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(f"Path does not exist: {v}", UserWarning)
            elif not path.is_file():
                warnings.warn(f"Path is not a file: {v}", UserWarning)
        return v

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.github_app_id and self.github_app_private_key and self.github_app_installation_id)

    @property
    def has_ssh_key(self) -> bool:
        return bool(self.ssh_key or self.ssh_key_path)


class GitSettings(BaseModel):
    """Working tree and identity settings."""

    user_name: str = Field(
        default="mirrorsync",
        description="Committer name configured in the working tree",
    )
    user_email: str = Field(
        default="mirrorsync@localhost",
        description="Committer email configured in the working tree",
    )
    work_dir: str = Field(
        default="",
        description="Directory to clone into (empty = temporary directory, removed afterwards)",
    )
    source_remote: str = Field(
        default="source",
        description="Remote name used for the source repository",
    )
    destination_remote: str = Field(
        default="origin",
        description="Remote name of the destination clone",
    )

    @field_validator("source_remote", "destination_remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        if not v or any(ch.isspace() for ch in v) or "/" in v:
            raise ValueError(f"Invalid remote name: {v!r}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.mirrorsync/logs)",
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

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory path is not a directory (it is created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class MirrorConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    sync: SyncSettings = Field(default_factory=SyncSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "MirrorConfig":
        """Create config with all defaults."""
        return cls()

    def missing_required(self) -> list[str]:
        """Names of required sync inputs that are empty."""
        required = ("source_repo", "destination_repo", "source_branch", "destination_branch")
        return [name for name in required if not getattr(self.sync, name)]
