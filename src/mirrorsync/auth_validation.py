"""Detect mismatches between repository URL protocols and supplied credentials.

Runs before any git command: an invalid result is fatal, warnings only point
at credentials that will go unused.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .config_schema import AuthSettings, SyncSettings
from .credentials import FileCredentials, split_url_credentials, url_protocol
from .observability import log_debug


@dataclass(frozen=True)
class AuthIssue:
    field: str
    issue: str
    current: str
    fix: str
    missing: str = ""
    unused: str = ""


@dataclass
class AuthValidationResult:
    errors: list[AuthIssue] = field(default_factory=list)
    warnings: list[AuthIssue] = field(default_factory=list)
    source_protocol: str = "UNKNOWN"
    destination_protocol: str = "UNKNOWN"
    has_token_auth: bool = False
    has_ssh_auth: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors


_TOKEN_FIX = "Provide github_token (PAT) or GitHub App credentials (app_id, private_key, installation_id)"
_SSH_FIX = "Provide ssh_key (secret content) or ssh_key_path (file on the runner)"
_APP_FIX = "Provide all three: github_app_id, github_app_private_key, github_app_installation_id"


def validate_authentication(
    sync: SyncSettings,
    auth: AuthSettings,
    file_credentials: Optional[FileCredentials] = None,
) -> AuthValidationResult:
    """Check every repository URL has a matching credential."""
    file_credentials = file_credentials or FileCredentials()

    destination_token = bool(
        auth.destination_token
        or auth.github_token
        or auth.has_app_credentials
        or file_credentials.github.token
    )
    source_token = bool(auth.source_token) or destination_token
    has_ssh = auth.has_ssh_key or bool(file_credentials.github.ssh_key)

    result = AuthValidationResult(
        source_protocol=url_protocol(sync.source_repo),
        destination_protocol=url_protocol(sync.destination_repo),
        has_token_auth=source_token or destination_token,
        has_ssh_auth=has_ssh,
    )
    log_debug(
        "Auth configuration",
        source_protocol=result.source_protocol,
        destination_protocol=result.destination_protocol,
        token_auth=result.has_token_auth,
        ssh_auth=result.has_ssh_auth,
    )

    checks = (
        ("source_repo", "Source", sync.source_repo, result.source_protocol, source_token),
        ("destination_repo", "Destination", sync.destination_repo, result.destination_protocol, destination_token),
    )
    for field_name, label, url, protocol, token_available in checks:
        # user:password@ in the URL is itself a credential
        url, _, password = split_url_credentials(url)
        embedded = password is not None
        if protocol == "HTTPS" and not (token_available or embedded):
            result.errors.append(
                AuthIssue(
                    field=field_name,
                    issue=f"{label} repo uses HTTPS but no token provided",
                    current=f"{label}: {url}",
                    missing="github_token or github_app_*",
                    fix=_TOKEN_FIX,
                )
            )
        if protocol == "SSH" and not has_ssh:
            result.errors.append(
                AuthIssue(
                    field=field_name,
                    issue=f"{label} repo uses SSH but no SSH key provided",
                    current=f"{label}: {url}",
                    missing="ssh_key or ssh_key_path",
                    fix=_SSH_FIX,
                )
            )

    any_token_input = bool(
        auth.github_token or auth.source_token or auth.destination_token or auth.has_app_credentials
    )
    if any_token_input and result.source_protocol == "SSH" and result.destination_protocol == "SSH":
        result.warnings.append(
            AuthIssue(
                field="github_token/github_app_*",
                issue="Token provided but both repos use SSH",
                current="Both repos are SSH-based",
                unused="github_token or github_app_*",
                fix="Remove github_token and github_app_* inputs as SSH key is sufficient",
            )
        )
    if auth.has_ssh_key and result.source_protocol == "HTTPS" and result.destination_protocol == "HTTPS":
        result.warnings.append(
            AuthIssue(
                field="ssh_key/ssh_key_path",
                issue="SSH key provided but both repos use HTTPS",
                current="Both repos are HTTPS-based",
                unused="ssh_key or ssh_key_path",
                fix="Remove SSH key inputs as a token is sufficient",
            )
        )

    app_parts = {
        "github_app_id": auth.github_app_id,
        "github_app_private_key": auth.github_app_private_key,
        "github_app_installation_id": auth.github_app_installation_id,
    }
    if any(app_parts.values()) and not all(app_parts.values()):
        present = ", ".join(name for name, value in app_parts.items() if value)
        for name, value in app_parts.items():
            if not value:
                result.errors.append(
                    AuthIssue(
                        field=name,
                        issue=f"GitHub App credentials incomplete: {name} is missing",
                        current=f"{present} provided",
                        missing=name,
                        fix=_APP_FIX,
                    )
                )

    return result


def format_validation_report(result: AuthValidationResult) -> Optional[str]:
    """Human readable report, or None when there is nothing to report."""
    if result.is_valid and not result.warnings:
        return None

    lines = [
        "AUTHENTICATION CONFIGURATION MISMATCH",
        "",
        "Detected configuration:",
        f"  Source repo:      {result.source_protocol}",
        f"  Destination repo: {result.destination_protocol}",
        f"  Token auth:       {'yes' if result.has_token_auth else 'no'}",
        f"  SSH auth:         {'yes' if result.has_ssh_auth else 'no'}",
        "",
    ]

    if result.errors:
        lines.append("Errors (fix required):")
        for index, error in enumerate(result.errors, 1):
            lines += [
                f"  {index}. {error.issue}",
                f"     Field: {error.field}",
                f"     Current: {error.current}",
                f"     Missing: {error.missing}",
                f"     Fix: {error.fix}",
            ]
        lines.append("")

    if result.warnings:
        lines.append("Warnings (optional cleanup):")
        for index, warning in enumerate(result.warnings, 1):
            lines += [
                f"  {index}. {warning.issue}",
                f"     Field: {warning.field}",
                f"     Current: {warning.current}",
                f"     Unused: {warning.unused}",
                f"     Fix: {warning.fix}",
            ]
        lines.append("")

    lines += [
        "Quick reference:",
        "  HTTPS URLs require:  github_token OR github_app_*",
        "  SSH URLs require:    ssh_key OR ssh_key_path",
        "  Mixed URLs require:  BOTH a token AND an SSH key",
    ]
    return "\n".join(lines)
