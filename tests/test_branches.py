"""Tests for branch mapping and branch enumeration."""

from __future__ import annotations

import pytest

from mirrorsync.branches import (
    BranchMapper,
    BranchPair,
    is_review_ref,
    list_remote_branches,
    select_fallback,
)
from mirrorsync.errors import BranchNotFoundError, ConfigurationError


class TestSingleBranch:
    """Single-branch mode."""

    def test_existing_branch(self):
        mapper = BranchMapper("develop", "main")
        assert mapper.map_single(["develop", "main"]) == [BranchPair("develop", "main")]

    def test_fallback_prefers_main(self):
        mapper = BranchMapper("trunk", "main")
        assert mapper.map_single(["master", "main"]) == [BranchPair("main", "main")]

    def test_fallback_to_master(self):
        mapper = BranchMapper("trunk", "stable")
        assert mapper.map_single(["master", "feature"]) == [BranchPair("master", "stable")]

    def test_no_fallback_candidate(self):
        mapper = BranchMapper("trunk", "main")
        with pytest.raises(BranchNotFoundError) as exc_info:
            mapper.map_single(["dev", "feature"])
        message = str(exc_info.value)
        assert "trunk" in message
        assert "dev, feature" in message
        assert "main/master" in message

    def test_fallback_disabled(self):
        mapper = BranchMapper("trunk", "main", use_main_as_fallback=False)
        with pytest.raises(BranchNotFoundError) as exc_info:
            mapper.map_single(["main"])
        assert exc_info.value.available == ["main"]
        assert not exc_info.value.fallback_tried

    def test_empty_source(self):
        with pytest.raises(BranchNotFoundError, match="none"):
            BranchMapper("main", "main").map_single([])

    def test_not_found_is_configuration_error(self):
        assert issubclass(BranchNotFoundError, ConfigurationError)

    def test_select_fallback(self):
        assert select_fallback(["x", "master"]) == "master"
        assert select_fallback(["x"]) is None


class TestAllBranches:
    """All-branch mode mapping and deletion candidates."""

    def test_configured_branch_is_renamed(self):
        mapping = BranchMapper("main", "develop").map_all(["feature", "main"], [])
        assert mapping.as_dict() == {"feature": "feature", "main": "develop"}

    def test_order_follows_source_enumeration(self):
        mapping = BranchMapper("main", "main").map_all(["a", "b", "main"], [])
        assert [pair.source for pair in mapping.pairs] == ["a", "b", "main"]

    def test_deletions_are_destination_only_branches(self):
        mapping = BranchMapper("main", "develop").map_all(
            ["feature", "main"],
            ["develop", "feature", "main", "stale"],
        )
        # main is not a mapping value (main -> develop), so it is a candidate too
        assert mapping.deletions == ("main", "stale")

    def test_no_deletions_when_in_sync(self):
        mapping = BranchMapper("main", "main").map_all(["main", "x"], ["main", "x"])
        assert mapping.deletions == ()

    def test_source_branch_named_like_rename_target_is_skipped(self):
        mapping = BranchMapper("main", "production").map_all(
            ["main", "production", "feature"],
            ["production", "feature"],
        )
        assert mapping.as_dict() == {"main": "production", "feature": "feature"}
        assert [pair.destination for pair in mapping.pairs].count("production") == 1
        assert mapping.skipped == ("production",)
        assert mapping.deletions == ()

    def test_no_skip_without_rename(self):
        mapping = BranchMapper("main", "main").map_all(["main", "production"], [])
        assert mapping.skipped == ()
        assert mapping.as_dict() == {"main": "main", "production": "production"}

    def test_no_skip_when_renamed_branch_is_absent(self):
        mapping = BranchMapper("develop", "production").map_all(["main", "production"], [])
        assert mapping.as_dict() == {"main": "main", "production": "production"}

    def test_review_refs(self):
        assert is_review_ref("refs/for/main")
        assert is_review_ref("changes/34/1234/2")
        assert not is_review_ref("feature/for-you")


class TestListRemoteBranches:
    def test_lists_sorted_short_names_without_head(self, source, destination, make_workspace):
        source.commit_and_push("main")
        source.commit_and_push("feature/x")
        source.commit_and_push("alpha")
        destination.seed_from(source)
        runner = make_workspace()
        assert list_remote_branches(runner, "source") == ["alpha", "feature/x", "main"]
        # origin/HEAD is a symbolic ref and is skipped
        assert list_remote_branches(runner, "origin") == ["alpha", "feature/x", "main"]

    def test_excludes_review_refs(self, source, make_workspace):
        source.commit_and_push("main")
        source.push("refs/heads/main:refs/heads/changes/01/1/1")
        runner = make_workspace()
        assert list_remote_branches(runner, "source") == ["changes/01/1/1", "main"]
        assert list_remote_branches(runner, "source", exclude_review_refs=True) == ["main"]

    def test_empty_remote(self, make_workspace):
        runner = make_workspace()
        assert list_remote_branches(runner, "source") == []
