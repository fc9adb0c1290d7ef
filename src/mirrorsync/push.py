"""Push routing: repository kind detection, push planning and execution.

Standard hosts receive pushes directly on ``refs/heads/<branch>``. Gerrit hosts
receive them on ``refs/for/<branch>`` so changes enter the review queue, and a
rejected plain push is retried exactly once with force.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .branches import BranchPair
from .divergence import DivergenceReport, DivergenceVerdict
from .errors import DivergedBranchError, GitOperationError, PushRejectedError
from .git_runner import GitResult, GitRunner, format_command
from .observability import log_info, log_warning, redact, timeit


GERRIT_PATTERNS = (
    re.compile(r"gerrit", re.IGNORECASE),
    re.compile(r":29418"),
    re.compile(r"/r/"),
)


class RepositoryKind(str, Enum):
    STANDARD = "standard"
    GERRIT = "gerrit"

    @classmethod
    def detect(cls, url: str) -> "RepositoryKind":
        """Classify a repository URL; evaluated once per URL per run."""
        if any(pattern.search(url or "") for pattern in GERRIT_PATTERNS):
            return cls.GERRIT
        return cls.STANDARD

    @property
    def is_gerrit(self) -> bool:
        return self is RepositoryKind.GERRIT

    def branch_refspec(self, branch: str) -> str:
        if self.is_gerrit:
            return f"refs/for/{branch}"
        return f"refs/heads/{branch}"


@dataclass(frozen=True)
class PushPlan:
    """What to push where, and whether force is allowed."""

    source_refspec: str
    destination_refspec: str
    force: bool

    @property
    def refspec(self) -> str:
        return f"{self.source_refspec}:{self.destination_refspec}"


def plan_push(
    pair: BranchPair,
    report: DivergenceReport,
    kind: RepositoryKind,
    *,
    source_remote: str = "source",
) -> PushPlan:
    """Turn a divergence verdict into a push plan.

    Raises:
        DivergedBranchError: The destination has independent history
    """
    if report.verdict is DivergenceVerdict.DIVERGED:
        raise DivergedBranchError(
            pair.destination,
            report.destination_commit or "",
            report.source_commit or "",
            report.merge_base,
        )
    return PushPlan(
        source_refspec=f"refs/remotes/{source_remote}/{pair.source}",
        destination_refspec=kind.branch_refspec(pair.destination),
        force=report.verdict.needs_force,
    )


class PushRouter:
    """Plans and executes pushes against one destination remote.

    Attributes:
        kind: Destination repository kind
        remote: Name of the destination remote in the working tree
        forced_retries: Refspecs that needed the Gerrit forced retry
    """

    def __init__(
        self,
        runner: GitRunner,
        kind: RepositoryKind,
        *,
        remote: str = "origin",
        source_remote: str = "source",
        env: Optional[Mapping[str, str]] = None,
    ):
        self.runner = runner
        self.kind = kind
        self.remote = remote
        self.source_remote = source_remote
        self.env = dict(env or {})
        self.forced_retries: list[str] = []

    def plan(self, pair: BranchPair, report: DivergenceReport) -> PushPlan:
        return plan_push(pair, report, self.kind, source_remote=self.source_remote)

    def _push(self, *targets: str, force: bool) -> GitResult:
        args = ["push", self.remote, *targets]
        if force:
            args.append("--force")
        return self.runner.run(*args, check=False, env=self.env)

    def push_with_retry(self, *targets: str, force: bool) -> bool:
        """Push ``targets``; Gerrit gets one forced retry after a plain rejection.

        Returns:
            True if the forced retry was needed

        Raises:
            PushRejectedError: The push (and any permitted retry) failed
        """
        result = self._push(*targets, force=force)
        if result.ok:
            return False

        if self.kind.is_gerrit and not force:
            log_warning("Gerrit push failed, trying with force...", targets=list(targets))
            retry = self._push(*targets, force=True)
            if retry.ok:
                self.forced_retries.extend(targets)
                return True
            result = retry
            force = True

        command = format_command(["push", self.remote, *targets] + (["--force"] if force else []))
        raise PushRejectedError(command, result.returncode, redact(result.stderr))

    def execute(self, plan: PushPlan) -> bool:
        """Run a push plan. Returns True if a forced retry was needed."""
        mode = "force" if plan.force else "plain"
        target = "Gerrit review queue" if self.kind.is_gerrit else "destination"
        log_info(f"Pushing {plan.refspec} to {target} ({mode})")
        with timeit("push", refspec=plan.refspec, force=plan.force, kind=self.kind.value):
            return self.push_with_retry(plan.refspec, force=plan.force)

    def delete_branch(self, branch: str) -> bool:
        """Best-effort deletion of a destination branch; failures are warnings."""
        try:
            self.runner.run("push", self.remote, "--delete", branch, env=self.env)
        except GitOperationError as exc:
            log_warning(f"Failed to delete branch {branch}: {exc}")
            return False
        log_info(f"Deleted branch {branch} from destination")
        return True
