"""Git collaborator used by every sync component.

All git work happens through ``GitRunner``: it runs git subcommands in an
explicit working directory (never via ``chdir``), captures stdout/stderr and
the exit status, and distinguishes three outcomes:

* the process could not be started at all -> ``GitExecutionError`` (fatal)
* non-zero exit with ``check=True`` -> ``GitOperationError`` (fatal)
* non-zero exit with ``check=False`` -> returned as data (ref lookups)

Credentials are injected per call through ``env`` so source and destination
operations can authenticate differently against the same working tree.
"""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Type

import git
from git import Repo
from git.exc import GitCommandError, GitCommandNotFound

from .errors import CloneError, GitExecutionError, GitOperationError
from .observability import log_action, log_debug, redact


# Disable interactive prompts so git fails fast instead of hanging when
# credentials are required (there is never a terminal in CI).
BASE_ENV: dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
}


@dataclass(frozen=True)
class GitResult:
    """Captured outcome of one git invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        """Non-empty, stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


def format_command(args: tuple[str, ...] | list[str]) -> str:
    """Render a git command for logs and error messages, credentials masked."""
    return redact(" ".join(shlex.quote(part) for part in ("git", *args)))


class GitRunner:
    """Runs git commands against one working tree.

    Attributes:
        working_dir: Directory every command runs in unless ``cwd`` is given
    """

    def __init__(self, working_dir: Path, *, env: Optional[Mapping[str, str]] = None):
        self.working_dir = Path(working_dir)
        self._env: dict[str, str] = dict(BASE_ENV)
        if env:
            self._env.update(env)

    def _merged_env(self, env: Optional[Mapping[str, str]]) -> dict[str, str]:
        merged = dict(self._env)
        if env:
            merged.update(env)
        return merged

    def run(
        self,
        *args: str,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        error_cls: Type[GitOperationError] = GitOperationError,
    ) -> GitResult:
        """Run ``git <args>`` and return its captured result.

        Args:
            *args: git subcommand and arguments
            check: Raise ``error_cls`` on non-zero exit (fatal semantics)
            env: Extra environment for this call only (credentials)
            cwd: Override the working directory for this call
            error_cls: Exception type raised when ``check`` fails

        Raises:
            GitExecutionError: git could not be executed
            GitOperationError: non-zero exit and ``check`` is True
        """
        workdir = Path(cwd) if cwd is not None else self.working_dir
        command_text = format_command(args)
        log_debug(f"RUN cwd={workdir} cmd={command_text}")
        start = time.perf_counter()
        try:
            status, stdout, stderr = git.Git(str(workdir)).execute(
                ["git", *args],
                with_extended_output=True,
                with_exceptions=False,
                env=self._merged_env(env),
            )
        except GitCommandNotFound as exc:
            raise GitExecutionError(f"Could not run {command_text}: {exc}") from exc
        except OSError as exc:
            raise GitExecutionError(f"Could not run {command_text}: {exc}") from exc

        result = GitResult(returncode=int(status), stdout=stdout or "", stderr=stderr or "")
        log_action(
            "git",
            outcome="ok" if result.ok else "error",
            duration_ms=(time.perf_counter() - start) * 1000.0,
            cmd=command_text,
            rc=result.returncode,
        )

        if check and not result.ok:
            raise error_cls(command_text, result.returncode, redact(result.stderr))
        return result

    def clone(self, url: str, *, env: Optional[Mapping[str, str]] = None) -> Repo:
        """Clone ``url`` into ``working_dir`` using GitPython.

        Raises:
            CloneError: If the clone fails
            GitExecutionError: If git is not available
        """
        command_text = format_command(["clone", url, str(self.working_dir)])
        self.working_dir.parent.mkdir(parents=True, exist_ok=True)
        log_debug(f"GIT_OP_START: {command_text}")
        try:
            repo = Repo.clone_from(url, str(self.working_dir), env=self._merged_env(env))
        except GitCommandNotFound as exc:
            raise GitExecutionError(f"Could not run {command_text}: {exc}") from exc
        except GitCommandError as exc:
            try:
                status = int(exc.status)
            except (TypeError, ValueError):
                status = 1
            raise CloneError(command_text, status, redact(str(exc.stderr or exc))) from exc
        log_debug(f"GIT_OP_END: {command_text}")
        return repo
