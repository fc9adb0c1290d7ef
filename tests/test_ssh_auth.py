"""Tests for SSH URL parsing and SSH credential staging."""

from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path

import pytest

from mirrorsync import ssh_auth
from mirrorsync.ssh_auth import SSHHost, SSHSession, extract_ssh_host, is_ssh_url


class TestSSHUrls:
    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:org/repo.git",
            "deploy@git.example.com:group/project.git",
            "ssh://git@example.com/org/repo.git",
            "ssh://review.example.com:29418/project",
        ],
    )
    def test_is_ssh(self, url):
        assert is_ssh_url(url)

    @pytest.mark.parametrize("url", ["https://github.com/org/repo.git", "/srv/git/repo.git", ""])
    def test_not_ssh(self, url):
        assert not is_ssh_url(url)

    @pytest.mark.parametrize(
        "url, host",
        [
            ("git@github.com:org/repo.git", SSHHost("github.com")),
            ("ssh://git@example.com/org/repo.git", SSHHost("example.com")),
            ("ssh://user@review.example.com:29418/project", SSHHost("review.example.com", 29418)),
            ("ssh://[::1]:2222/repo", SSHHost("::1", 2222)),
            ("https://github.com/org/repo.git", None),
        ],
    )
    def test_extract_host(self, url, host):
        assert extract_ssh_host(url) == host

    def test_host_str(self):
        assert str(SSHHost("example.com", 2222)) == "example.com:2222"
        assert str(SSHHost("example.com")) == "example.com"


class TestSSHSession:
    def test_key_content_staged_private_and_removed(self):
        session = SSHSession(key="-----BEGIN KEY-----\nabc\n-----END KEY-----", strict_host_key_checking=False)
        with session:
            staging = session.staging_dir
            key_file = staging / "id_mirrorsync"
            assert key_file.read_text().endswith("-----END KEY-----\n")
            assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600
            assert f"-i {key_file}" in session.command
            assert "IdentitiesOnly=yes" in session.command
            assert "BatchMode=yes" in session.command
            assert "StrictHostKeyChecking=no" in session.command
            assert "UserKnownHostsFile=/dev/null" in session.command
        assert not staging.exists()

    def test_key_path_is_used_directly(self, tmp_path):
        key = tmp_path / "id_ed25519"
        key.write_text("KEY\n")
        known_hosts = tmp_path / "known_hosts"
        known_hosts.write_text("example.com ssh-ed25519 AAAA\n")
        with SSHSession(key_path=str(key), known_hosts_path=str(known_hosts)) as session:
            assert f"-i {key}" in session.command
            assert "StrictHostKeyChecking=yes" in session.command
            assert f"UserKnownHostsFile={known_hosts}" in session.command

    def test_keyscan_populates_known_hosts(self, monkeypatch):
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            return subprocess.CompletedProcess(args, 0, stdout=f"{args[-1]} ssh-ed25519 AAAA", stderr="")

        monkeypatch.setattr(ssh_auth.subprocess, "run", fake_run)
        hosts = [SSHHost("github.com"), SSHHost("review.example.com", 29418)]
        with SSHSession(key="KEY", hosts=hosts) as session:
            known_hosts = session.staging_dir / "known_hosts"
            assert known_hosts.read_text() == (
                "github.com ssh-ed25519 AAAA\nreview.example.com ssh-ed25519 AAAA\n"
            )
        assert calls == [
            ["ssh-keyscan", "github.com"],
            ["ssh-keyscan", "-p", "29418", "review.example.com"],
        ]

    def test_keyscan_failure_is_a_warning(self, monkeypatch):
        def fake_run(args, **kwargs):
            raise OSError("ssh-keyscan: not found")

        monkeypatch.setattr(ssh_auth.subprocess, "run", fake_run)
        with SSHSession(key="KEY", hosts=[SSHHost("github.com")]) as session:
            assert (session.staging_dir / "known_hosts").read_text() == ""

    def test_passphrase_uses_askpass(self):
        with SSHSession(key="KEY", passphrase="hunter22", strict_host_key_checking=False) as session:
            assert "BatchMode=yes" not in session.command
            assert session.env["SSH_ASKPASS_REQUIRE"] == "force"
            assert session.env[ssh_auth.ENV_SSH_PASSPHRASE] == "hunter22"
            askpass = session.env["SSH_ASKPASS"]
            output = subprocess.run(
                [askpass], env={**os.environ, **session.env}, capture_output=True, text=True, check=True
            ).stdout
            assert output == "hunter22\n"
            assert "hunter22" not in Path(askpass).read_text()

    def test_no_identity_uses_agent(self):
        with SSHSession(strict_host_key_checking=False) as session:
            assert "-i " not in session.command
            assert session.command.startswith("ssh -o BatchMode=yes")

    def test_staging_requires_entered_session(self):
        session = SSHSession(key="KEY", passphrase="hunter22")
        with pytest.raises(RuntimeError, match="must be entered"):
            session._identity_file()
        with pytest.raises(RuntimeError, match="must be entered"):
            session._askpass_file()
