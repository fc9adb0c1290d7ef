"""Source -> destination branch mapping.

Single-branch mode maps exactly one pair, optionally falling back to
``main``/``master`` when the configured source branch is missing. All-branch
mode maps every source branch to itself except the configured source branch,
which maps to the configured destination branch, and reports destination
branches that no longer have a counterpart as deletion candidates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .errors import BranchNotFoundError
from .git_runner import GitRunner
from .observability import log_debug, log_info, log_warning


FALLBACK_BRANCHES = ("main", "master")

# Gerrit exposes review pseudo-branches that must never be mirrored
REVIEW_REF_MARKERS = ("refs/for/", "refs/changes/")
REVIEW_REF_PREFIXES = ("for/", "changes/")


@dataclass(frozen=True)
class BranchPair:
    """One source branch and the destination branch it is mirrored to."""

    source: str
    destination: str

    def __str__(self) -> str:
        return f"{self.source} → {self.destination}"


@dataclass(frozen=True)
class BranchMapping:
    """All-branch mapping plus destination-only branches to delete."""

    pairs: tuple[BranchPair, ...]
    deletions: tuple[str, ...] = field(default_factory=tuple)
    skipped: tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, str]:
        return {pair.source: pair.destination for pair in self.pairs}


def is_review_ref(name: str) -> bool:
    return any(marker in name for marker in REVIEW_REF_MARKERS) or name.startswith(REVIEW_REF_PREFIXES)


def list_remote_branches(
    runner: GitRunner,
    remote: str,
    *,
    exclude_review_refs: bool = False,
) -> list[str]:
    """List branch names of a remote as seen by the local clone.

    Symbolic refs (``<remote>/HEAD``) are skipped. With ``exclude_review_refs``
    Gerrit ``refs/for/*`` and ``refs/changes/*`` pseudo-branches are skipped too.
    """
    prefix = f"refs/remotes/{remote}/"
    result = runner.run("for-each-ref", "--format=%(refname)%09%(symref)", prefix)
    names: list[str] = []
    for line in result.stdout.splitlines():
        if not line.strip():
            continue
        refname, _, symref = line.partition("\t")
        if symref.strip():
            continue
        name = refname.strip()[len(prefix):]
        if not name or name == "HEAD":
            continue
        if exclude_review_refs and is_review_ref(name):
            log_debug(f"Skipping review pseudo-branch: {name}")
            continue
        names.append(name)
    return sorted(names)


def select_fallback(available: Iterable[str]) -> Optional[str]:
    """Return the first of main/master present in ``available``."""
    present = set(available)
    for branch in FALLBACK_BRANCHES:
        if branch in present:
            log_info(f"Found fallback branch: {branch}")
            return branch
    return None


class BranchMapper:
    """Compute branch pairs for a sync run."""

    def __init__(
        self,
        source_branch: str,
        destination_branch: str,
        *,
        use_main_as_fallback: bool = True,
    ):
        self.source_branch = source_branch
        self.destination_branch = destination_branch
        self.use_main_as_fallback = use_main_as_fallback

    def resolve_source_branch(self, available: Sequence[str]) -> str:
        """Return the configured source branch, or its fallback.

        Raises:
            BranchNotFoundError: Branch missing and no fallback applies
        """
        if self.source_branch in available:
            return self.source_branch

        if not self.use_main_as_fallback:
            raise BranchNotFoundError(self.source_branch, list(available), fallback_tried=False)

        log_warning(f'Branch "{self.source_branch}" not found. Trying main or master...')
        fallback = select_fallback(available)
        if fallback is None:
            raise BranchNotFoundError(self.source_branch, list(available), fallback_tried=True)
        log_info(f"Using fallback branch: {fallback}")
        return fallback

    def map_single(self, available: Sequence[str]) -> list[BranchPair]:
        """Single-branch mode: exactly one pair."""
        source = self.resolve_source_branch(available)
        return [BranchPair(source, self.destination_branch)]

    def map_all(
        self,
        source_branches: Sequence[str],
        destination_branches: Sequence[str],
    ) -> BranchMapping:
        """All-branch mode: every source branch, plus deletion candidates.

        When the configured source branch is renamed, a source branch that
        already carries the destination name would target the same ref; it is
        skipped and reported in ``skipped``.
        """
        renamed = self.source_branch != self.destination_branch and self.source_branch in source_branches
        pairs = []
        skipped = []
        for branch in source_branches:
            if branch == self.source_branch:
                pairs.append(BranchPair(branch, self.destination_branch))
            elif renamed and branch == self.destination_branch:
                log_warning(
                    f'Skipping source branch "{branch}": "{self.source_branch}" is already mirrored to it'
                )
                skipped.append(branch)
            else:
                pairs.append(BranchPair(branch, branch))
        expected = {pair.destination for pair in pairs}
        deletions = tuple(branch for branch in destination_branches if branch not in expected)
        return BranchMapping(pairs=tuple(pairs), deletions=deletions, skipped=tuple(skipped))
