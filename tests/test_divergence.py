"""Tests for ref resolution and divergence classification."""

from __future__ import annotations

import pytest

from mirrorsync.divergence import DivergenceClassifier, DivergenceVerdict, evaluate
from mirrorsync.errors import GitExecutionError, GitOperationError
from mirrorsync.git_runner import GitRunner
from mirrorsync.refs import RefResolver


DEST = "refs/remotes/origin/main"
SRC = "refs/remotes/source/main"


class TestEvaluate:
    """The pure verdict function."""

    def test_destination_missing(self):
        assert evaluate(None, "a" * 40, None) is DivergenceVerdict.EMPTY_DESTINATION

    def test_source_missing(self):
        assert evaluate("a" * 40, None, None) is DivergenceVerdict.EMPTY_DESTINATION

    def test_no_merge_base(self):
        assert evaluate("a" * 40, "b" * 40, None) is DivergenceVerdict.UNRELATED

    def test_destination_is_merge_base(self):
        assert evaluate("a" * 40, "b" * 40, "a" * 40) is DivergenceVerdict.CLEAN_AHEAD

    def test_identical_commits_are_clean(self):
        assert evaluate("a" * 40, "a" * 40, "a" * 40) is DivergenceVerdict.CLEAN_AHEAD

    def test_destination_ahead_of_merge_base(self):
        assert evaluate("a" * 40, "b" * 40, "c" * 40) is DivergenceVerdict.DIVERGED

    def test_only_diverged_blocks(self):
        blocking = [verdict for verdict in DivergenceVerdict if verdict.blocks]
        assert blocking == [DivergenceVerdict.DIVERGED]

    def test_force_verdicts(self):
        assert DivergenceVerdict.EMPTY_DESTINATION.needs_force
        assert DivergenceVerdict.UNRELATED.needs_force
        assert not DivergenceVerdict.CLEAN_AHEAD.needs_force


class TestRefResolver:
    def test_resolve_existing_ref(self, source, destination, make_workspace):
        sha = source.commit_and_push()
        runner = make_workspace()
        assert RefResolver(runner).resolve_commit(SRC) == sha

    def test_resolve_missing_ref_returns_none(self, source, make_workspace):
        source.commit_and_push()
        runner = make_workspace()
        assert RefResolver(runner).resolve_commit("refs/remotes/origin/nope") is None

    def test_merge_base_of_unrelated_histories_is_none(self, source, destination, make_workspace):
        assert source.commit_and_push() != destination.commit_and_push()
        runner = make_workspace()
        assert RefResolver(runner).merge_base(DEST, SRC) is None

    def test_merge_base_shared_history(self, source, destination, make_workspace):
        base = source.commit_and_push()
        destination.seed_from(source)
        source.commit_and_push()
        runner = make_workspace()
        assert RefResolver(runner).merge_base(DEST, SRC) == base

    def test_merge_base_error_is_not_unrelated(self, source, destination, make_workspace):
        source.commit_and_push()
        destination.seed_from(source)
        runner = make_workspace()
        with pytest.raises(GitOperationError) as exc_info:
            RefResolver(runner).merge_base(DEST, "0" * 40)
        assert exc_info.value.returncode == 128
        assert exc_info.value.command.startswith("git merge-base")

    def test_git_missing_is_fatal(self, tmp_path, monkeypatch):
        """Failing to start git is never reported as a missing ref."""
        runner = GitRunner(tmp_path)

        import git

        def boom(*args, **kwargs):
            raise git.exc.GitCommandNotFound("git", "not found")

        monkeypatch.setattr(git.Git, "execute", boom)
        with pytest.raises(GitExecutionError):
            RefResolver(runner).resolve_commit("HEAD")


class TestDivergenceClassifier:
    """Classification against real repositories."""

    def test_empty_destination(self, source, make_workspace):
        source.commit_and_push()
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(DEST, SRC)
        assert report.verdict is DivergenceVerdict.EMPTY_DESTINATION
        assert report.destination_commit is None
        assert report.merge_base is None

    def test_clean_ahead(self, source, destination, make_workspace):
        base = source.commit_and_push()
        destination.seed_from(source)
        tip = source.commit_and_push()
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(DEST, SRC)
        assert report.verdict is DivergenceVerdict.CLEAN_AHEAD
        assert report.destination_commit == base
        assert report.source_commit == tip
        assert report.merge_base == base

    def test_diverged(self, source, destination, make_workspace):
        base = source.commit_and_push()
        destination.seed_from(source)
        extra = destination.commit_and_push()
        source.commit_and_push()
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(DEST, SRC)
        assert report.verdict is DivergenceVerdict.DIVERGED
        assert report.destination_commit == extra
        assert report.merge_base == base
        assert "diverged" in report.details

    def test_destination_ahead_without_new_source_commits(self, source, destination, make_workspace):
        """Destination-only commits block even when the source did not move."""
        source.commit_and_push()
        destination.seed_from(source)
        destination.commit_and_push()
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(DEST, SRC)
        assert report.verdict is DivergenceVerdict.DIVERGED

    def test_unrelated(self, source, destination, make_workspace):
        source.commit_and_push()
        destination.commit_and_push()
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(DEST, SRC)
        assert report.verdict is DivergenceVerdict.UNRELATED
        assert report.details == "No common history"

    def test_missing_source(self, source, destination, make_workspace):
        source.commit_and_push()
        destination.seed_from(source)
        report = DivergenceClassifier(RefResolver(make_workspace())).classify(
            DEST, "refs/remotes/source/absent"
        )
        assert report.verdict is DivergenceVerdict.EMPTY_DESTINATION
        assert report.details == "Source branch does not exist"

    def test_classification_is_not_cached(self, source, destination, make_workspace):
        source.commit_and_push()
        destination.seed_from(source)
        runner = make_workspace()
        classifier = DivergenceClassifier(RefResolver(runner))
        assert classifier.classify(DEST, SRC).verdict is DivergenceVerdict.CLEAN_AHEAD

        destination.commit_and_push()
        runner.run("fetch", "origin")
        assert classifier.classify(DEST, SRC).verdict is DivergenceVerdict.DIVERGED
