"""Divergence detection between a destination ref and a source ref.

The verdict decides whether a sync may push at all:

* ``EMPTY_DESTINATION``: destination ref missing (or source missing, nothing
  to compare), push with force.
* ``CLEAN_AHEAD``: destination is the merge-base, so it has no commits of
  its own; a plain push suffices.
* ``UNRELATED``: no common history; nothing destination-only can be
  identified, push with force to replace it.
* ``DIVERGED``: destination holds commits absent from the source. Blocks.

The verdict is a pure function of the three commit ids and is computed fresh
for every pair; nothing is cached between evaluations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .observability import log_debug
from .refs import RefResolver


class DivergenceVerdict(str, Enum):
    """Outcome of comparing destination history against source history."""

    EMPTY_DESTINATION = "empty_destination"
    CLEAN_AHEAD = "clean_ahead"
    DIVERGED = "diverged"
    UNRELATED = "unrelated"

    @property
    def blocks(self) -> bool:
        return self is DivergenceVerdict.DIVERGED

    @property
    def needs_force(self) -> bool:
        return self in (DivergenceVerdict.EMPTY_DESTINATION, DivergenceVerdict.UNRELATED)


def _short(commit: Optional[str]) -> str:
    return commit[:7] if commit else "none"


@dataclass(frozen=True)
class DivergenceReport:
    """A verdict together with the commit ids it was derived from."""

    verdict: DivergenceVerdict
    destination_ref: str
    source_ref: str
    destination_commit: Optional[str]
    source_commit: Optional[str]
    merge_base: Optional[str]

    @property
    def details(self) -> str:
        if self.destination_commit is None:
            return "Destination branch does not exist"
        if self.source_commit is None:
            return "Source branch does not exist"
        if self.merge_base is None:
            return "No common history"
        state = "diverged" if self.verdict is DivergenceVerdict.DIVERGED else "clean"
        return (
            f"Destination is {state}: dest={_short(self.destination_commit)}, "
            f"source={_short(self.source_commit)}, merge-base={_short(self.merge_base)}"
        )


def evaluate(
    destination_commit: Optional[str],
    source_commit: Optional[str],
    merge_base: Optional[str],
) -> DivergenceVerdict:
    """Pure verdict for the given commit ids (None means unresolved)."""
    if destination_commit is None:
        return DivergenceVerdict.EMPTY_DESTINATION
    if source_commit is None:
        # No comparison possible; callers check source existence before pushing
        return DivergenceVerdict.EMPTY_DESTINATION
    if merge_base is None:
        return DivergenceVerdict.UNRELATED
    if destination_commit == merge_base:
        return DivergenceVerdict.CLEAN_AHEAD
    return DivergenceVerdict.DIVERGED


class DivergenceClassifier:
    """Classify a destination ref against a source ref."""

    def __init__(self, resolver: RefResolver):
        self.resolver = resolver

    def classify(self, destination_ref: str, source_ref: str) -> DivergenceReport:
        # Source first, then destination: order is fixed so lookups are predictable
        source_commit = self.resolver.resolve_commit(source_ref)
        destination_commit = self.resolver.resolve_commit(destination_ref)

        merge_base: Optional[str] = None
        if destination_commit is not None and source_commit is not None:
            merge_base = self.resolver.merge_base(destination_ref, source_ref)

        report = DivergenceReport(
            verdict=evaluate(destination_commit, source_commit, merge_base),
            destination_ref=destination_ref,
            source_ref=source_ref,
            destination_commit=destination_commit,
            source_commit=source_commit,
            merge_base=merge_base,
        )
        log_debug(
            f"Destination modification check: {report.details}",
            verdict=report.verdict.value,
            destination_ref=destination_ref,
            source_ref=source_ref,
        )
        return report
