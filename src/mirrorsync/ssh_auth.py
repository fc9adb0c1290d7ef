"""SSH identity staging for git over SSH.

``SSHSession`` stages everything ssh needs for one run (private key,
known_hosts, passphrase helper) in a private temporary directory, exposes the
``GIT_SSH_COMMAND`` to use, and removes the staged files on exit.
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
import stat
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

from .observability import log_debug, log_info, log_warning, register_secret


ENV_SSH_PASSPHRASE = "MIRRORSYNC_SSH_PASSPHRASE"

SSH_ASKPASS_SCRIPT = """#!/bin/sh
printf '%s\\n' "$MIRRORSYNC_SSH_PASSPHRASE"
"""

# git@host:path or user@host:path (scp-like syntax)
_SCP_LIKE = re.compile(r"^(?P<user>[\w.\-]+)@(?P<host>[\w.\-]+):(?!//)")
_SSH_URL = re.compile(r"^ssh://(?:[^@/]+@)?(?P<host>\[[^\]]+\]|[^:/]+)(?::(?P<port>\d+))?/")


@dataclass(frozen=True)
class SSHHost:
    host: str
    port: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.host}:{self.port}" if self.port else self.host


def is_ssh_url(url: str) -> bool:
    if not url:
        return False
    return url.startswith("ssh://") or bool(_SCP_LIKE.match(url))


def extract_ssh_host(url: str) -> Optional[SSHHost]:
    """Host (and port) of an SSH URL, or None for non-SSH URLs.

    Examples:
        git@github.com:org/repo.git -> github.com
        ssh://git@review.example.com:29418/project -> review.example.com:29418
    """
    if not url:
        return None
    match = _SSH_URL.match(url)
    if match:
        port = match.group("port")
        return SSHHost(match.group("host").strip("[]"), int(port) if port else None)
    match = _SCP_LIKE.match(url)
    if match:
        return SSHHost(match.group("host"))
    return None


def _write_private(path: Path, content: str, mode: int = stat.S_IRUSR | stat.S_IWUSR) -> Path:
    path.write_text(content)
    os.chmod(path, mode)
    return path


class SSHSession:
    """Context manager staging SSH credentials for the duration of a run.

    Attributes:
        command: Value for GIT_SSH_COMMAND (set on enter)
        env: Extra environment ssh needs (passphrase helper), set on enter
    """

    def __init__(
        self,
        *,
        key: str = "",
        key_path: str = "",
        passphrase: str = "",
        known_hosts_path: str = "",
        strict_host_key_checking: bool = True,
        hosts: Iterable[SSHHost] = (),
    ):
        self.key = key
        self.key_path = key_path
        self.passphrase = passphrase
        self.known_hosts_path = known_hosts_path
        self.strict_host_key_checking = strict_host_key_checking
        self.hosts = list(hosts)
        self.command: str = ""
        self.env: Dict[str, str] = {}
        self._staging: Optional[Path] = None
        register_secret(passphrase or None)

    def __enter__(self) -> "SSHSession":
        self._staging = Path(tempfile.mkdtemp(prefix="mirrorsync-ssh-"))
        try:
            self.command = self._build_command()
        except BaseException:
            self.cleanup()
            raise
        log_debug(f"GIT_SSH_COMMAND={self.command}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def _require_staging(self) -> Path:
        if self._staging is None:
            raise RuntimeError("SSHSession must be entered before staging files")
        return self._staging

    def _identity_file(self) -> Optional[Path]:
        if self.key:
            staging = self._require_staging()
            content = self.key if self.key.endswith("\n") else self.key + "\n"
            log_info("Staging SSH private key")
            return _write_private(staging / "id_mirrorsync", content)
        if self.key_path:
            return Path(self.key_path).expanduser()
        return None

    def _known_hosts_file(self) -> Optional[Path]:
        if not self.strict_host_key_checking:
            return None
        if self.known_hosts_path:
            return Path(self.known_hosts_path).expanduser()
        staging = self._require_staging()
        path = staging / "known_hosts"
        entries = [self._keyscan(host) for host in self.hosts]
        _write_private(path, "".join(entries))
        return path

    def _keyscan(self, host: SSHHost) -> str:
        args = ["ssh-keyscan"]
        if host.port:
            args += ["-p", str(host.port)]
        args.append(host.host)
        log_info(f"Fetching SSH host keys for {host}")
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            log_warning(f"ssh-keyscan failed for {host}: {e}")
            return ""
        if result.returncode != 0 or not result.stdout.strip():
            log_warning(f"ssh-keyscan returned no keys for {host}")
            return ""
        return result.stdout if result.stdout.endswith("\n") else result.stdout + "\n"

    def _askpass_file(self) -> Path:
        staging = self._require_staging()
        return _write_private(staging / "ssh-askpass.sh", SSH_ASKPASS_SCRIPT, stat.S_IRWXU)

    def _build_command(self) -> str:
        parts = ["ssh"]
        identity = self._identity_file()
        if identity is not None:
            parts += ["-i", shlex.quote(str(identity)), "-o", "IdentitiesOnly=yes"]

        if self.passphrase:
            self.env = {
                "SSH_ASKPASS": str(self._askpass_file()),
                "SSH_ASKPASS_REQUIRE": "force",
                "DISPLAY": os.environ.get("DISPLAY", ":0"),
                ENV_SSH_PASSPHRASE: self.passphrase,
            }
        else:
            parts += ["-o", "BatchMode=yes"]

        known_hosts = self._known_hosts_file()
        if known_hosts is None:
            parts += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        else:
            parts += [
                "-o",
                "StrictHostKeyChecking=yes",
                "-o",
                f"UserKnownHostsFile={shlex.quote(str(known_hosts))}",
            ]
        return " ".join(parts)

    @property
    def staging_dir(self) -> Optional[Path]:
        return self._staging

    def cleanup(self) -> None:
        """Remove staged files; failures are warnings."""
        if self._staging is None:
            return
        staging, self._staging = self._staging, None
        try:
            shutil.rmtree(staging)
        except OSError as e:
            log_warning(f"Could not remove staged SSH files in {staging}: {e}")
