"""Configuration loading and merging for mirrorsync.

Handles TOML loading, config discovery, deep merging, environment overlay and
CLI overrides. Sources, later overriding earlier:

1. Built-in defaults
2. User config (~/.mirrorsync/config.toml)
3. Project config (.mirrorsync/config.toml, searched upward) or ``--config``
4. GitHub Actions inputs (``INPUT_SOURCE_REPO`` ...)
5. ``MIRRORSYNC_*`` environment variables
6. CLI overrides
"""

from __future__ import annotations

import copy
import os
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# TOML loading: tomllib (3.11+) with tomli on 3.10
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomlkit
from pydantic import ValidationError

from .config_schema import MirrorConfig
from .errors import ConfigurationError


# Config file names
CONFIG_FILENAME = "config.toml"
CREDENTIALS_FILENAME = "credentials.toml"

# Directory names
USER_CONFIG_DIR = ".mirrorsync"
PROJECT_CONFIG_DIR = ".mirrorsync"

SECRET_KEYS = frozenset(
    {
        "github_token",
        "source_token",
        "destination_token",
        "github_app_private_key",
        "ssh_key",
        "ssh_passphrase",
    }
)

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Sync
    "MIRRORSYNC_SOURCE_REPO": (["sync"], "source_repo"),
    "MIRRORSYNC_DESTINATION_REPO": (["sync"], "destination_repo"),
    "MIRRORSYNC_SOURCE_BRANCH": (["sync"], "source_branch"),
    "MIRRORSYNC_DESTINATION_BRANCH": (["sync"], "destination_branch"),
    "MIRRORSYNC_SYNC_ALL_BRANCHES": (["sync"], "sync_all_branches"),
    "MIRRORSYNC_SYNC_TAGS": (["sync"], "sync_tags"),
    "MIRRORSYNC_USE_MAIN_AS_FALLBACK": (["sync"], "use_main_as_fallback"),
    # Auth
    "MIRRORSYNC_GITHUB_TOKEN": (["auth"], "github_token"),
    "MIRRORSYNC_SOURCE_TOKEN": (["auth"], "source_token"),
    "MIRRORSYNC_DESTINATION_TOKEN": (["auth"], "destination_token"),
    "MIRRORSYNC_GITHUB_APP_ID": (["auth"], "github_app_id"),
    "MIRRORSYNC_GITHUB_APP_PRIVATE_KEY": (["auth"], "github_app_private_key"),
    "MIRRORSYNC_GITHUB_APP_INSTALLATION_ID": (["auth"], "github_app_installation_id"),
    "MIRRORSYNC_GITHUB_API_URL": (["auth"], "github_api_url"),
    "MIRRORSYNC_SSH_KEY": (["auth"], "ssh_key"),
    "MIRRORSYNC_SSH_KEY_PATH": (["auth"], "ssh_key_path"),
    "MIRRORSYNC_SSH_PASSPHRASE": (["auth"], "ssh_passphrase"),
    "MIRRORSYNC_SSH_KNOWN_HOSTS_PATH": (["auth"], "ssh_known_hosts_path"),
    "MIRRORSYNC_SSH_STRICT_HOST_KEY_CHECKING": (["auth"], "ssh_strict_host_key_checking"),
    # Git
    "MIRRORSYNC_GIT_USER_NAME": (["git"], "user_name"),
    "MIRRORSYNC_GIT_USER_EMAIL": (["git"], "user_email"),
    "MIRRORSYNC_WORK_DIR": (["git"], "work_dir"),
    # Logging
    "MIRRORSYNC_LOG_LEVEL": (["logging"], "level"),
    "MIRRORSYNC_LOG_DIR": (["logging"], "dir"),
    "MIRRORSYNC_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "MIRRORSYNC_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "MIRRORSYNC_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}

# GitHub Actions exposes workflow inputs as INPUT_<NAME>
ACTION_INPUTS = (
    "source_repo",
    "destination_repo",
    "source_branch",
    "destination_branch",
    "sync_all_branches",
    "sync_tags",
    "use_main_as_fallback",
    "github_token",
    "source_token",
    "destination_token",
    "github_app_id",
    "github_app_private_key",
    "github_app_installation_id",
    "ssh_key",
    "ssh_key_path",
    "ssh_passphrase",
    "ssh_known_hosts_path",
    "ssh_strict_host_key_checking",
)


class ConfigError(ConfigurationError):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.mirrorsync/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.mirrorsync/).

    Searches upward from project_path to find .mirrorsync/ directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _env_to_config_key(env_var: str) -> tuple[list[str], str]:
    """Map environment variable to config path.

    Returns tuple of (section_path, key_name); unknown variables map to an
    empty section path.

    Examples:
        MIRRORSYNC_SOURCE_REPO -> (["sync"], "source_repo")
        INPUT_GITHUB_TOKEN -> (["auth"], "github_token")
    """
    if env_var in ENV_MAPPING:
        return ENV_MAPPING[env_var]
    if env_var.startswith("INPUT_"):
        name = env_var[len("INPUT_"):].lower()
        if name in ACTION_INPUTS:
            return ENV_MAPPING[f"MIRRORSYNC_{name.upper()}"]
    return ([], env_var)


def _set_path(config_dict: Dict[str, Any], section_path: list[str], key: str, value: Any) -> None:
    current = config_dict
    for section in section_path:
        if not isinstance(current.get(section), dict):
            current[section] = {}
        current = current[section]
    current[key] = value


def _apply_env_overlay(
    config_dict: Dict[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Action inputs are applied first so ``MIRRORSYNC_*`` wins over them. Empty
    action inputs are treated as unset (Actions passes every declared input).
    """
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(config_dict)

    for name in ACTION_INPUTS:
        env_var = f"INPUT_{name.upper()}"
        value = environ.get(env_var)
        if value is None or value == "":
            continue
        section_path, key_name = _env_to_config_key(env_var)
        _set_path(result, section_path, key_name, value)

    for env_var in ENV_MAPPING:
        value = environ.get(env_var)
        if value is None:
            continue
        section_path, key_name = _env_to_config_key(env_var)
        # Type conversion happens during Pydantic validation
        _set_path(result, section_path, key_name, value)

    return result


def load_config(
    project_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    skip_env: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> MirrorConfig:
    """Load and merge mirrorsync configuration.

    Args:
        project_path: Directory to start the project config search from
        config_path: Explicit config file; replaces the project config
        overrides: Nested dict of CLI overrides (highest priority)
        skip_env: Skip environment variable overlay
        environ: Environment to read instead of ``os.environ``

    Returns:
        Merged MirrorConfig

    Raises:
        ConfigError: If config files are invalid
    """
    config_dict: Dict[str, Any] = {}

    # 1. User config
    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    # 2. Project config, or the explicitly requested file
    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_toml(Path(config_path).expanduser()))
    else:
        project_config_dir = _get_project_config_dir(project_path)
        if project_config_dir:
            project_config_path = project_config_dir / CONFIG_FILENAME
            if project_config_path.exists():
                try:
                    config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
                except ConfigError as e:
                    raise ConfigError(f"Invalid project config: {e}")

    # 3. Environment overlay
    if not skip_env:
        config_dict = _apply_env_overlay(config_dict, environ)

    # 4. CLI overrides
    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    try:
        return MirrorConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get paths to all config files."""
    user_dir = _get_user_config_dir()
    project_dir = _get_project_config_dir(project_path)

    return {
        "user_config": user_dir / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
        "user_credentials": user_dir / CREDENTIALS_FILENAME,
    }


def config_to_display_dict(config: MirrorConfig) -> Dict[str, Any]:
    """Dump config with secrets masked, for ``config show``."""
    data = config.model_dump()
    for key in SECRET_KEYS:
        if data["auth"].get(key):
            data["auth"][key] = "***"
    return data


def write_config_template(path: Path, *, force: bool = False) -> Path:
    """Write a commented config template.

    Raises:
        ConfigError: If the file exists and ``force`` is False
    """
    path = Path(path).expanduser()
    if path.exists() and not force:
        raise ConfigError(f"Config file already exists: {path}")

    defaults = MirrorConfig.default()
    doc = tomlkit.document()
    doc.add(tomlkit.comment(" mirrorsync configuration"))
    doc.add(tomlkit.comment(" Secrets belong in the environment or ~/.mirrorsync/credentials.toml"))
    doc.add(tomlkit.nl())
    doc.add("version", defaults.version)

    sync = tomlkit.table()
    sync.add(tomlkit.comment(" Repository URLs: https://..., git@host:path, ssh://... or a local path"))
    sync.add("source_repo", "")
    sync.add("destination_repo", "")
    sync.add("source_branch", defaults.sync.source_branch)
    sync.add("destination_branch", defaults.sync.destination_branch)
    sync.add("sync_all_branches", defaults.sync.sync_all_branches)
    sync.add(tomlkit.comment(' "true" = all tags, a regex/substring = matching tags, "" = none'))
    sync.add("sync_tags", defaults.sync.sync_tags)
    sync.add("use_main_as_fallback", defaults.sync.use_main_as_fallback)
    doc.add("sync", sync)

    auth = tomlkit.table()
    auth.add(tomlkit.comment(" Tokens: MIRRORSYNC_GITHUB_TOKEN, MIRRORSYNC_SOURCE_TOKEN, MIRRORSYNC_DESTINATION_TOKEN"))
    auth.add("github_app_id", "")
    auth.add("github_app_installation_id", "")
    auth.add("ssh_key_path", "")
    auth.add("ssh_known_hosts_path", "")
    auth.add("ssh_strict_host_key_checking", defaults.auth.ssh_strict_host_key_checking)
    doc.add("auth", auth)

    git_table = tomlkit.table()
    git_table.add("user_name", defaults.git.user_name)
    git_table.add("user_email", defaults.git.user_email)
    git_table.add(tomlkit.comment(" Empty = temporary directory removed after the run"))
    git_table.add("work_dir", defaults.git.work_dir)
    doc.add("git", git_table)

    logging_table = tomlkit.table()
    logging_table.add("level", defaults.logging.level)
    logging_table.add("disable_file", defaults.logging.disable_file)
    doc.add("logging", logging_table)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(tomlkit.dumps(doc))
    return path
