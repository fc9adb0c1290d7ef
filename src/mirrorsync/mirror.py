"""End-to-end mirror run.

``MirrorSync(config).run()`` validates authentication, clones the destination,
adds the source as a second remote, and then for every branch pair classifies
divergence and pushes (or aborts). Tags follow once every branch succeeded.
Cleanup is best effort and never masks the outcome of the run.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import httpx

from .auth_validation import format_validation_report, validate_authentication
from .branches import BranchMapper, BranchPair, list_remote_branches
from .config_schema import MirrorConfig
from .credentials import (
    ROLE_DESTINATION,
    ROLE_SOURCE,
    CredentialKind,
    CredentialProvider,
    FileCredentials,
    RepoRef,
    git_env,
    load_credentials,
    write_askpass_script,
)
from .divergence import DivergenceClassifier, DivergenceVerdict
from .errors import ConfigurationError
from .git_runner import GitRunner
from .observability import log_error, log_info, log_warning, timeit
from .push import PushRouter, RepositoryKind
from .refs import RefResolver
from .ssh_auth import SSHSession, extract_ssh_host
from .tags import TagSyncer


@dataclass
class SyncResult:
    """Summary of one sync run."""

    destination_kind: RepositoryKind = RepositoryKind.STANDARD
    verdicts: Dict[str, DivergenceVerdict] = field(default_factory=dict)
    pushed: list[BranchPair] = field(default_factory=list)
    up_to_date: list[BranchPair] = field(default_factory=list)
    forced_retries: list[str] = field(default_factory=list)
    deleted_branches: list[str] = field(default_factory=list)
    failed_deletions: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{len(self.pushed)} branch(es) pushed, {len(self.up_to_date)} up to date, "
            f"{len(self.deleted_branches)} deleted, {len(self.tags)} tag(s) synced"
        )


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except OSError as e:
        log_warning(f"Could not remove temporary directory {path}: {e}")


def log_gerrit_info(source_url: str, destination_url: str) -> None:
    log_info("Gerrit destination detected: pushes go to refs/for/<branch> for review")
    log_info(f"  Source:      {source_url}")
    log_info(f"  Destination: {destination_url}")
    log_info("  Rejected pushes are retried once with --force")


class MirrorSync:
    """Run a branch/tag mirror from the source to the destination repository."""

    def __init__(
        self,
        config: MirrorConfig,
        *,
        file_credentials: Optional[FileCredentials] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self.file_credentials = file_credentials if file_credentials is not None else load_credentials()
        self.http_client = http_client

    # -- setup -------------------------------------------------------------

    def validate(self) -> None:
        """Fail before any git call when inputs or credentials are unusable.

        Raises:
            ConfigurationError: Missing inputs or invalid authentication setup
        """
        missing = self.config.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required input(s): {', '.join(missing)}")

        validation = validate_authentication(self.config.sync, self.config.auth, self.file_credentials)
        report = format_validation_report(validation)
        if not validation.is_valid:
            log_error(report or "Authentication configuration is invalid")
            raise ConfigurationError("Authentication configuration is invalid. See errors above.")
        if report:
            log_warning(report)

    def _ssh_session(self, source: RepoRef, destination: RepoRef) -> Optional[SSHSession]:
        refs = [ref for ref in (source, destination) if ref.credential.kind is CredentialKind.SSH]
        if not refs:
            return None
        hosts = []
        for ref in refs:
            host = extract_ssh_host(ref.url)
            if host is not None and host not in hosts:
                hosts.append(host)
        auth = self.config.auth
        return SSHSession(
            key=auth.ssh_key,
            key_path=refs[0].credential.ssh_key_path or "",
            passphrase=auth.ssh_passphrase,
            known_hosts_path=auth.ssh_known_hosts_path,
            strict_host_key_checking=auth.ssh_strict_host_key_checking,
            hosts=hosts,
        )

    def _prepare_work_tree(self, runner: GitRunner, destination: RepoRef, env: Dict[str, str]) -> None:
        remote = self.config.git.destination_remote
        if (runner.working_dir / ".git").is_dir():
            log_info(f"Reusing working tree at {runner.working_dir}")
            runner.run("remote", "set-url", remote, destination.url)
            runner.run("fetch", remote, "--prune", env=env)
            return
        log_info(f"Cloning destination repository: {destination.url}")
        runner.clone(destination.url, env=env)
        log_info("Destination repository cloned successfully")

    def _configure_identity(self, runner: GitRunner) -> None:
        runner.run("config", "user.name", self.config.git.user_name)
        runner.run("config", "user.email", self.config.git.user_email)

    def _setup_source_remote(self, runner: GitRunner, source: RepoRef, env: Dict[str, str]) -> None:
        remote = self.config.git.source_remote
        if remote in runner.run("remote").lines():
            log_info("Updating existing source remote...")
            runner.run("remote", "set-url", remote, source.url)
        else:
            log_info("Adding source remote...")
            runner.run("remote", "add", remote, source.url)
        log_info("Fetching from source...")
        runner.run("fetch", remote, "--prune", env=env)

    def _remove_source_remote(self, runner: GitRunner) -> None:
        remote = self.config.git.source_remote
        result = runner.run("remote", "remove", remote, check=False)
        if not result.ok:
            log_warning(f"Could not remove {remote} remote: {result.stderr.strip()}")

    # -- branches ----------------------------------------------------------

    def _sync_pair(
        self,
        pair: BranchPair,
        classifier: DivergenceClassifier,
        router: PushRouter,
        result: SyncResult,
    ) -> None:
        git = self.config.git
        log_info(f"Syncing branch: {pair}")
        report = classifier.classify(
            f"refs/remotes/{git.destination_remote}/{pair.destination}",
            f"refs/remotes/{git.source_remote}/{pair.source}",
        )
        result.verdicts[str(pair)] = report.verdict

        if report.verdict.blocks:
            log_error(f'SYNC BLOCKED: Destination branch "{pair.destination}" has been modified since last sync.')
            log_error("The destination contains commits that don't exist in the source.")
            log_error(f"Details: {report.details}")
        plan = router.plan(pair, report)

        identical = report.verdict is DivergenceVerdict.CLEAN_AHEAD and report.destination_commit == report.source_commit
        if identical:
            log_info(f"Branch {pair.destination} is already up to date")
            result.up_to_date.append(pair)
            # Gerrit rejects a review push that carries no new changes
            if router.kind.is_gerrit:
                return

        router.execute(plan)
        if not identical:
            result.pushed.append(pair)
        log_info(f"Branch synced: {pair}")

    def _sync_branches(
        self,
        runner: GitRunner,
        router: PushRouter,
        gerrit_involved: bool,
        result: SyncResult,
    ) -> None:
        sync = self.config.sync
        git = self.config.git
        mapper = BranchMapper(
            sync.source_branch,
            sync.destination_branch,
            use_main_as_fallback=sync.use_main_as_fallback,
        )
        classifier = DivergenceClassifier(RefResolver(runner))
        source_branches = list_remote_branches(runner, git.source_remote, exclude_review_refs=gerrit_involved)

        if not sync.sync_all_branches:
            for pair in mapper.map_single(source_branches):
                self._sync_pair(pair, classifier, router, result)
            return

        log_info("=== Syncing All Branches ===")
        log_info(f"Found {len(source_branches)} branches in source to sync")
        destination_branches = list_remote_branches(
            runner, git.destination_remote, exclude_review_refs=gerrit_involved
        )
        log_info(f"Found {len(destination_branches)} branches in destination")
        mapping = mapper.map_all(source_branches, destination_branches)
        log_info(f"Branch mapping: {json.dumps(mapping.as_dict(), sort_keys=True)}")

        # Fail fast: the first diverged pair aborts before any deletion happens
        for pair in mapping.pairs:
            self._sync_pair(pair, classifier, router, result)

        if not mapping.deletions:
            log_info("No destination-only branches to delete")
        elif router.kind.is_gerrit:
            log_info(
                f"Skipping deletion of {len(mapping.deletions)} destination-only branch(es) on Gerrit",
                branches=list(mapping.deletions),
            )
        else:
            log_info(f"Deleting {len(mapping.deletions)} destination-only branches...")
            for branch in mapping.deletions:
                if router.delete_branch(branch):
                    result.deleted_branches.append(branch)
                else:
                    result.failed_deletions.append(branch)

    # -- run ---------------------------------------------------------------

    def run(self) -> SyncResult:
        """Execute the sync.

        Raises:
            MirrorError: Any fatal condition (configuration, divergence, push rejection)
        """
        self.validate()
        sync = self.config.sync
        git = self.config.git

        source_kind = RepositoryKind.detect(sync.source_repo)
        destination_kind = RepositoryKind.detect(sync.destination_repo)
        result = SyncResult(destination_kind=destination_kind)

        provider = CredentialProvider(
            self.config.auth,
            file_credentials=self.file_credentials,
            http_client=self.http_client,
        )
        source = provider.repo_ref(sync.source_repo, ROLE_SOURCE)
        destination = provider.repo_ref(sync.destination_repo, ROLE_DESTINATION)
        log_info(f"Source:      {source}")
        log_info(f"Destination: {destination}")
        if destination_kind.is_gerrit:
            log_gerrit_info(source.url, destination.url)

        with timeit("sync", destination_kind=destination_kind.value) as info, ExitStack() as stack:
            staging = Path(tempfile.mkdtemp(prefix="mirrorsync-"))
            stack.callback(_remove_tree, staging)

            ssh_session = self._ssh_session(source, destination)
            ssh_command: Optional[str] = None
            ssh_env: Dict[str, str] = {}
            if ssh_session is not None:
                stack.enter_context(ssh_session)
                ssh_command, ssh_env = ssh_session.command, ssh_session.env

            askpass = None
            if CredentialKind.TOKEN in (source.credential.kind, destination.credential.kind):
                askpass = write_askpass_script(staging / "bin")
            source_env = git_env(source.credential, askpass_path=askpass, ssh_command=ssh_command, ssh_env=ssh_env)
            destination_env = git_env(
                destination.credential, askpass_path=askpass, ssh_command=ssh_command, ssh_env=ssh_env
            )

            work_dir = Path(git.work_dir).expanduser() if git.work_dir else staging / "repo"
            runner = GitRunner(work_dir)
            self._prepare_work_tree(runner, destination, destination_env)
            self._configure_identity(runner)
            stack.callback(self._remove_source_remote, runner)
            self._setup_source_remote(runner, source, source_env)

            router = PushRouter(
                runner,
                destination_kind,
                remote=git.destination_remote,
                source_remote=git.source_remote,
                env=destination_env,
            )
            gerrit_involved = source_kind.is_gerrit or destination_kind.is_gerrit
            self._sync_branches(runner, router, gerrit_involved, result)

            syncer = TagSyncer(runner, router, source_remote=git.source_remote, source_env=source_env)
            result.tags = syncer.sync(sync.sync_tags)
            result.forced_retries = list(router.forced_retries)
            info["pushed"] = len(result.pushed)

        log_info(f"Sync complete: {result.summary()}")
        return result
