"""Exception hierarchy for mirrorsync.

Every fatal condition raised during a sync run derives from ``MirrorError`` so
the CLI can report it and exit non-zero. Best-effort cleanup failures are never
raised; they are logged as warnings where they happen.
"""

from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base exception for mirror sync failures."""
    pass


class ConfigurationError(MirrorError):
    """Missing or contradictory configuration (auth, branches, inputs)."""
    pass


class BranchNotFoundError(ConfigurationError):
    """Requested source branch does not exist and no fallback applies."""

    def __init__(self, branch: str, available: list[str], *, fallback_tried: bool):
        self.branch = branch
        self.available = list(available)
        self.fallback_tried = fallback_tried
        listing = ", ".join(self.available) or "none"
        if fallback_tried:
            message = (
                f'Branch "{branch}" not found, and no fallback (main/master) available. '
                f"Available branches: {listing}"
            )
        else:
            message = (
                f'Branch "{branch}" not found in source repository. '
                f"Available branches: {listing}"
            )
        super().__init__(message)


class GitExecutionError(MirrorError):
    """The git process could not be started at all."""
    pass


class GitOperationError(MirrorError):
    """A mutating git command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"
        super().__init__(f"`{command}` failed with exit code {returncode}: {detail}")


class CloneError(GitOperationError):
    """Cloning the destination repository failed."""
    pass


class PushRejectedError(GitOperationError):
    """A push was rejected by the destination (after any permitted retry)."""
    pass


class DivergedBranchError(MirrorError):
    """Destination branch holds commits that do not exist in the source.

    This is the one unconditional hard stop: the sync is aborted before any
    push so destination-only history is never discarded.
    """

    def __init__(
        self,
        branch: str,
        destination_commit: str,
        source_commit: str,
        merge_base: Optional[str],
    ):
        self.branch = branch
        self.destination_commit = destination_commit
        self.source_commit = source_commit
        self.merge_base = merge_base
        base = merge_base[:7] if merge_base else "none"
        super().__init__(
            f'Destination branch "{branch}" has been modified since last sync: '
            f"dest={destination_commit[:7]}, source={source_commit[:7]}, merge-base={base}. "
            "The destination contains commits that don't exist in the source; "
            "manually merge or rebase the destination changes. Manual intervention required."
        )
