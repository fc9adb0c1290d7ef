from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import pytest
from git import Actor, Repo
from git.exc import GitCommandError


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure `python -m mirrorsync` subprocesses resolve the source tree too
    os.environ.setdefault("PYTHONPATH", str(src))


ACTOR = Actor("Test User", "test@example.com")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from the real home directory and workflow inputs."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("MIRRORSYNC_LOG_DISABLE_FILE", "1")
    for name in list(os.environ):
        if name.startswith("INPUT_") or (name.startswith("MIRRORSYNC_") and name != "MIRRORSYNC_LOG_DISABLE_FILE"):
            monkeypatch.delenv(name, raising=False)

    from mirrorsync.observability import clear_secrets

    clear_secrets()
    yield home
    clear_secrets()


class GitRemote:
    """A bare repository plus a private working repo used to author commits."""

    def __init__(self, path: Path):
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self.bare = Repo.init(str(path), bare=True)
        self.bare.git.symbolic_ref("HEAD", "refs/heads/main")
        self.work_path = path.parent / f"{path.stem}-work"
        self.work = Repo.init(str(self.work_path))
        self.work.create_remote("origin", str(path))
        self._counter = 0

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(self, branch: str = "main", message: Optional[str] = None, *, start: Optional[str] = None) -> str:
        """Add one commit on ``branch`` in the working repo and return its sha."""
        heads = [head.name for head in self.work.heads]
        seeded = f"refs/remotes/seed/{branch}"
        if start is None and branch not in heads and any(ref.path == seeded for ref in self.work.refs):
            start = seeded
        if branch in heads:
            self.work.git.checkout(branch)
        elif start is not None:
            self.work.git.checkout("-b", branch, start)
        elif heads:
            self.work.git.checkout("-b", branch)
        else:
            self.work.git.symbolic_ref("HEAD", f"refs/heads/{branch}")

        self._counter += 1
        name = f"file{self._counter}.txt"
        (self.work_path / name).write_text(f"{self.path.stem} {branch} {self._counter}\n")
        self.work.index.add([name])
        commit = self.work.index.commit(
            message or f"{self.path.stem} {branch} commit {self._counter}",
            author=ACTOR,
            committer=ACTOR,
        )
        return commit.hexsha

    def push(self, *refspecs: str, force: bool = False) -> None:
        args = ["origin", *refspecs]
        if force:
            args.append("--force")
        self.work.git.push(*args)

    def commit_and_push(self, branch: str = "main", **kwargs) -> str:
        sha = self.commit(branch, **kwargs)
        self.push(f"refs/heads/{branch}:refs/heads/{branch}", force=True)
        return sha

    def seed_from(self, other: "GitRemote") -> None:
        """Copy every branch of ``other`` into this remote (shared history)."""
        self.work.git.fetch(str(other.path), "+refs/heads/*:refs/remotes/seed/*")
        for branch in other.branches():
            self.push(f"refs/remotes/seed/{branch}:refs/heads/{branch}", force=True)

    def tag(self, name: str, ref: str = "HEAD") -> None:
        self.work.create_tag(name, ref=ref)
        self.push(f"refs/tags/{name}:refs/tags/{name}")

    def head(self, branch: str = "main") -> Optional[str]:
        return self.ref(f"refs/heads/{branch}")

    def ref(self, refname: str) -> Optional[str]:
        try:
            return self.bare.git.rev_parse("--verify", refname)
        except GitCommandError:
            return None

    def branches(self) -> list[str]:
        return sorted(head.name for head in self.bare.heads)

    def tags(self) -> list[str]:
        return sorted(tag.name for tag in self.bare.tags)


@pytest.fixture
def make_remote(tmp_path):
    """Factory for bare remotes under tmp_path (``make_remote("r/dest")`` nests)."""

    def _make(name: str) -> GitRemote:
        return GitRemote(tmp_path / "remotes" / f"{name}.git")

    return _make


@pytest.fixture
def source(make_remote) -> GitRemote:
    return make_remote("source")


@pytest.fixture
def destination(make_remote) -> GitRemote:
    return make_remote("destination")


@pytest.fixture
def make_workspace(tmp_path, source, destination):
    """Clone destination and fetch source as ``source``; call after seeding.

    Returns a GitRunner bound to the clone.
    """
    from mirrorsync.git_runner import GitRunner

    def _make(name: str = "clone") -> GitRunner:
        path = tmp_path / name
        repo = Repo.clone_from(destination.url, str(path))
        repo.create_remote("source", source.url)
        repo.git.fetch("source")
        return GitRunner(path)

    return _make
