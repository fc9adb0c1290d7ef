"""Credentials for the source and destination repositories.

Tokens are resolved per role and handed to git per operation through
``GIT_ASKPASS``: a small staged script prints the secret from an environment
variable, so the token never appears in a remote URL, in argv, or in
``.git/config``. SSH identities are passed through ``GIT_SSH_COMMAND`` (see
``ssh_auth``).

Priority:
    destination: destination_token > github_token > GitHub App installation
                 token > credentials file
    source:      source_token > effective destination token
"""

from __future__ import annotations

import os
import stat
import sys
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
import jwt
from pydantic import BaseModel, Field

from .config_schema import AuthSettings
from .errors import ConfigurationError
from .observability import log_debug, log_info, register_secret
from .ssh_auth import is_ssh_url

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


CREDENTIALS_FILENAME = "credentials.toml"
USER_CONFIG_DIR = ".mirrorsync"

ROLE_SOURCE = "source"
ROLE_DESTINATION = "destination"

# Username git receives for token authentication (accepted by GitHub, GitLab, Gitea)
TOKEN_USERNAME = "x-access-token"

ENV_ASKPASS_USERNAME = "MIRRORSYNC_GIT_USERNAME"
ENV_ASKPASS_PASSWORD = "MIRRORSYNC_GIT_PASSWORD"

ASKPASS_SCRIPT = """#!/bin/sh
case "$1" in
    Username*|username*) printf '%s\\n' "$MIRRORSYNC_GIT_USERNAME" ;;
    *) printf '%s\\n' "$MIRRORSYNC_GIT_PASSWORD" ;;
esac
"""

GITHUB_API_VERSION = "2022-11-28"


class CredentialKind(str, Enum):
    TOKEN = "token"
    SSH = "ssh"
    NONE = "none"


@dataclass(frozen=True)
class Credential:
    """How git authenticates against one repository."""

    kind: CredentialKind
    secret: Optional[str] = field(default=None, repr=False)
    ssh_key_path: Optional[str] = None
    username: str = TOKEN_USERNAME

    @classmethod
    def token(cls, secret: str, username: str = TOKEN_USERNAME) -> "Credential":
        register_secret(secret)
        return cls(CredentialKind.TOKEN, secret=secret, username=username)

    @classmethod
    def ssh(cls, key_path: Optional[str] = None) -> "Credential":
        return cls(CredentialKind.SSH, ssh_key_path=key_path)

    @classmethod
    def none(cls) -> "Credential":
        return cls(CredentialKind.NONE)

    def redacted(self) -> str:
        if self.kind is CredentialKind.TOKEN:
            return f"token({self.username}:***)"
        if self.kind is CredentialKind.SSH:
            return f"ssh({self.ssh_key_path or 'agent'})"
        return "none"


@dataclass(frozen=True)
class RepoRef:
    """A repository URL (without embedded credentials) and how to reach it."""

    url: str
    credential: Credential

    def __str__(self) -> str:
        return f"{self.url} [{self.credential.redacted()}]"


# URL helpers


def is_https_url(url: str) -> bool:
    return url.lower().startswith(("https://", "http://"))


def is_local_url(url: str) -> bool:
    """Local paths and file:// URLs need no credentials."""
    if url.startswith("file://"):
        return True
    if is_ssh_url(url) or "://" in url:
        return False
    return True


def url_protocol(url: str) -> str:
    if is_ssh_url(url):
        return "SSH"
    if is_https_url(url):
        return "HTTPS"
    if is_local_url(url):
        return "LOCAL"
    return "UNKNOWN"


def split_url_credentials(url: str) -> tuple[str, Optional[str], Optional[str]]:
    """Strip ``user:password@`` from an http(s) URL.

    Returns:
        (clean_url, username, password); the password is registered for redaction
    """
    if not is_https_url(url):
        return url, None, None
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url, None, None
    userinfo, _, host = parts.netloc.rpartition("@")
    username, _, password = userinfo.partition(":")
    register_secret(password or None)
    clean = urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
    return clean, username or None, password or None


# Credentials file


class GitHubCredentials(BaseModel):
    """GitHub authentication credentials."""

    token: str = Field(
        default="",
        description="GitHub personal access token",
    )
    ssh_key: str = Field(
        default="",
        description="Path to SSH private key",
    )


class FileCredentials(BaseModel):
    """Contents of ~/.mirrorsync/credentials.toml."""

    github: GitHubCredentials = Field(default_factory=GitHubCredentials)


def _get_user_credentials_path() -> Path:
    """Get path to user credentials file."""
    return Path.home() / USER_CONFIG_DIR / CREDENTIALS_FILENAME


def _secure_file_permissions(path: Path) -> None:
    """Set secure file permissions (owner read/write only).

    On Windows, this is a no-op as permissions work differently.
    """
    if os.name == "posix":
        try:
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        except OSError as e:
            warnings.warn(
                f"Could not set secure permissions on {path}: {e}. "
                "File may be readable by other users.",
                UserWarning,
            )


def load_credentials(path: Optional[Path] = None) -> FileCredentials:
    """Load credentials from the TOML credentials file.

    A missing file yields empty credentials; an unreadable one warns and
    yields empty credentials.
    """
    toml_path = Path(path) if path is not None else _get_user_credentials_path()
    if not toml_path.exists():
        return FileCredentials()
    try:
        with open(toml_path, "rb") as f:
            creds = FileCredentials.model_validate(tomllib.load(f))
    except Exception as e:
        warnings.warn(f"Error loading credentials: {e}", UserWarning)
        return FileCredentials()
    register_secret(creds.github.token or None)
    return creds


# GitHub App


def get_app_installation_token(
    app_id: str,
    private_key: str,
    installation_id: str,
    *,
    api_url: str = "https://api.github.com",
    client: Optional[httpx.Client] = None,
    timeout: float = 30.0,
) -> str:
    """Exchange GitHub App credentials for an installation access token.

    Raises:
        ConfigurationError: If the JWT cannot be signed or GitHub refuses the exchange
    """
    now = int(time.time())
    payload = {
        # Backdated to tolerate clock drift; GitHub caps lifetime at 10 minutes
        "iat": now - 60,
        "exp": now + 540,
        "iss": str(app_id),
    }
    try:
        app_jwt = jwt.encode(payload, private_key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Could not sign GitHub App JWT: {e}") from e

    url = f"{api_url.rstrip('/')}/app/installations/{installation_id}/access_tokens"
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {app_jwt}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }

    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        response = http.post(url, headers=headers)
        response.raise_for_status()
        token = response.json()["token"]
    except httpx.HTTPStatusError as e:
        raise ConfigurationError(
            f"GitHub App token exchange failed: HTTP {e.response.status_code}"
        ) from e
    except httpx.RequestError as e:
        raise ConfigurationError(f"GitHub App token exchange failed: {e}") from e
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Unexpected GitHub App token response: {e}") from e
    finally:
        if owns_client:
            http.close()

    if not token:
        raise ConfigurationError("GitHub App token exchange returned an empty token")
    register_secret(token)
    return token


# Provider


class CredentialProvider:
    """Resolve the credential for each repository role.

    The GitHub App exchange runs at most once per provider.
    """

    def __init__(
        self,
        auth: AuthSettings,
        *,
        file_credentials: Optional[FileCredentials] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.auth = auth
        self.file_credentials = file_credentials if file_credentials is not None else FileCredentials()
        self.http_client = http_client
        self._app_token: Optional[str] = None
        for secret in (auth.github_token, auth.source_token, auth.destination_token):
            register_secret(secret or None)

    def app_token(self) -> Optional[str]:
        if not self.auth.has_app_credentials:
            return None
        if self._app_token is None:
            log_info("Authenticating as GitHub App installation...")
            self._app_token = get_app_installation_token(
                self.auth.github_app_id,
                self.auth.github_app_private_key,
                self.auth.github_app_installation_id,
                api_url=self.auth.github_api_url,
                client=self.http_client,
            )
            log_info("GitHub App token obtained successfully")
        return self._app_token

    def destination_token(self) -> Optional[str]:
        if self.auth.destination_token:
            return self.auth.destination_token
        if self.auth.github_token:
            return self.auth.github_token
        app_token = self.app_token()
        if app_token:
            return app_token
        return self.file_credentials.github.token or None

    def source_token(self) -> Optional[str]:
        return self.auth.source_token or self.destination_token()

    def token_for(self, role: str) -> Optional[str]:
        if role == ROLE_SOURCE:
            return self.source_token()
        if role == ROLE_DESTINATION:
            return self.destination_token()
        raise ValueError(f"Unknown repository role: {role}")

    def ssh_key_path(self) -> Optional[str]:
        return self.auth.ssh_key_path or self.file_credentials.github.ssh_key or None

    def repo_ref(self, url: str, role: str) -> RepoRef:
        """Build the RepoRef for ``url`` in ``role`` (source/destination).

        Credentials embedded in an https URL are stripped; an embedded password
        is used when no configured token applies.

        Raises:
            ConfigurationError: HTTPS repository and no usable token
        """
        clean_url, username, password = split_url_credentials(url)
        if is_ssh_url(clean_url):
            log_debug(f"{role.capitalize()} URL is SSH-based, using SSH authentication")
            return RepoRef(clean_url, Credential.ssh(self.ssh_key_path()))
        if is_local_url(clean_url):
            return RepoRef(clean_url, Credential.none())

        token = self.token_for(role)
        if token:
            return RepoRef(clean_url, Credential.token(token))
        if password:
            return RepoRef(clean_url, Credential.token(password, username or TOKEN_USERNAME))
        raise ConfigurationError(
            f"Authentication required for {role} repository {clean_url}: provide "
            "github_token (PAT), github_app credentials, or use an SSH URL with ssh_key"
        )


# Git environment


def write_askpass_script(directory: Path) -> Path:
    """Stage the askpass helper (0700) in ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "git-askpass.sh"
    path.write_text(ASKPASS_SCRIPT)
    os.chmod(path, stat.S_IRWXU)
    return path


def git_env(
    credential: Credential,
    *,
    askpass_path: Optional[Path] = None,
    ssh_command: Optional[str] = None,
    ssh_env: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Per-operation environment for git talking to one repository."""
    env: Dict[str, str] = {}
    if credential.kind is CredentialKind.TOKEN:
        if askpass_path is None:
            raise ConfigurationError("Token authentication needs a staged askpass helper")
        env["GIT_ASKPASS"] = str(askpass_path)
        env[ENV_ASKPASS_USERNAME] = credential.username
        env[ENV_ASKPASS_PASSWORD] = credential.secret or ""
    elif credential.kind is CredentialKind.SSH:
        if ssh_command:
            env["GIT_SSH_COMMAND"] = ssh_command
        if ssh_env:
            env.update(ssh_env)
    return env
