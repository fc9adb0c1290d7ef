"""Ref resolution lookups.

Missing refs are data, not failures: both lookups return ``None`` when git
reports the ref (or the common ancestor) does not exist. A merge-base failure
other than "no common ancestor" raises ``GitOperationError``.
"""

from __future__ import annotations

from typing import Optional

from .errors import GitOperationError
from .git_runner import GitRunner, format_command
from .observability import log_debug


class RefResolver:
    """Resolve refs and merge-bases inside one working tree."""

    def __init__(self, runner: GitRunner):
        self.runner = runner

    def resolve_commit(self, ref: str) -> Optional[str]:
        """Return the commit id ``ref`` points at, or None if it does not exist."""
        result = self.runner.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if not result.ok:
            log_debug(f"Reference {ref} does not exist (exit code: {result.returncode})")
            return None
        commit = result.stdout.strip()
        return commit or None

    def merge_base(self, ref_a: str, ref_b: str) -> Optional[str]:
        """Return the best common ancestor of two refs, or None if they share no history.

        ``git merge-base`` exits 1 with no output when there is no common
        ancestor; any other failure is a real error and raises.
        """
        args = ("merge-base", ref_a, ref_b)
        result = self.runner.run(*args, check=False)
        merge_base = result.stdout.strip()
        if result.returncode == 1 and not merge_base:
            log_debug(f"No merge base between {ref_a} and {ref_b}")
            return None
        if not result.ok or not merge_base:
            raise GitOperationError(format_command(args), result.returncode, result.stderr)
        return merge_base
