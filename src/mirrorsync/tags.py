"""Tag synchronisation.

``sync_tags`` is either ``"true"`` (every tag), a pattern (a regular
expression, or a plain substring when the pattern is not a valid regex), or
empty (no tag sync). Tags are never checked for divergence: standard
destinations receive them with force, Gerrit destinations get a plain push
and one forced retry.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from .git_runner import GitRunner
from .observability import log_debug, log_info, timeit
from .push import PushRouter


ALL_TAGS = "true"


def select_tags(tags: Iterable[str], pattern: str) -> list[str]:
    """Filter tag names by ``pattern`` (regex search, substring fallback)."""
    try:
        regex = re.compile(pattern)
    except re.error:
        log_debug(f"Tag pattern {pattern!r} is not a valid regex; matching as substring")
        return [tag for tag in tags if pattern in tag]
    return [tag for tag in tags if regex.search(tag)]


class TagSyncer:
    """Fetch tags from the source remote and push them to the destination."""

    def __init__(
        self,
        runner: GitRunner,
        router: PushRouter,
        *,
        source_remote: str = "source",
        source_env: Optional[Mapping[str, str]] = None,
    ):
        self.runner = runner
        self.router = router
        self.source_remote = source_remote
        self.source_env = dict(source_env or {})

    @property
    def force(self) -> bool:
        # Standard hosts take tags with force; Gerrit tries plain first
        return not self.router.kind.is_gerrit

    def fetch(self) -> list[str]:
        # Source tags replace same-named tags from the destination clone
        self.runner.run("fetch", self.source_remote, "--tags", "--force", env=self.source_env)
        return self.runner.run("tag").lines()

    def sync(self, pattern: Optional[str]) -> list[str]:
        """Mirror tags selected by ``pattern``; returns the tags pushed.

        Raises:
            PushRejectedError: A tag push failed (after any permitted retry)
        """
        pattern = (pattern or "").strip()
        if not pattern:
            log_debug("Tag sync disabled")
            return []

        with timeit("sync_tags", pattern=pattern) as info:
            if pattern == ALL_TAGS:
                log_info("Syncing all tags from source to destination")
                tags = self.fetch()
                self.router.push_with_retry("--tags", force=self.force)
            else:
                log_info(f"Syncing tags matching pattern: {pattern}")
                tags = select_tags(self.fetch(), pattern)
                if not tags:
                    log_info(f"No tags match pattern: {pattern}")
                for tag in tags:
                    self.router.push_with_retry(f"refs/tags/{tag}:refs/tags/{tag}", force=self.force)
            info["tags"] = len(tags)

        log_info(f"Tag sync complete: {len(tags)} tag(s)")
        return tags
