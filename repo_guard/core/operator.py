"""Defensive git operations: commit, branch, push, prune.

The stages run in order for one repository. Any stage may be a no-op. A git
failure aborts the remaining stages of that repository only; push problems
degrade to a warning.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .errors import DegradedOperation, GitTimeoutError, RepositoryFailure
from .git import GitRunner
from .inspector import RepositoryStateInspector
from .models import (
    BACKUP_BRANCH_PREFIX, BackupBranch, RepositoryBackupResult, RepositorySnapshot,
    StageOutcome, StageStatus,
)
from .retention import RetentionPruner


WIP_TAG = "WIP backup commit"

STAGE_AUTO_COMMIT = "auto_commit"
STAGE_BACKUP_BRANCH = "backup_branch"
STAGE_PUSH = "push"
STAGE_PRUNE = "prune"
STAGES = (STAGE_AUTO_COMMIT, STAGE_BACKUP_BRANCH, STAGE_PUSH, STAGE_PRUNE)


class DefensiveGitOperator:
    """Runs the commit/branch/push/prune sequence for single repositories."""

    def __init__(self, git: GitRunner, inspector: RepositoryStateInspector,
                 pruner: RetentionPruner, auto_commit_branches: Iterable[str],
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize git operator.

        Args:
            git: Git runner.
            inspector: Used for live state checks between stages.
            pruner: Decides which backup branches to delete.
            auto_commit_branches: Branches that may receive WIP commits.
            clock: Source of timestamps for commit messages and branch names.
        """
        self.git = git
        self.inspector = inspector
        self.pruner = pruner
        self.auto_commit_branches = set(auto_commit_branches)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def protect(self, snapshot: RepositorySnapshot,
                cancel_event: Optional[threading.Event] = None) -> RepositoryBackupResult:
        """Run every stage for one repository.

        Args:
            snapshot: State captured before this run.
            cancel_event: When set, no further stage is started.

        Returns:
            Per-stage outcomes. Never raises RepositoryFailure.
        """
        result = RepositoryBackupResult(path=snapshot.path, name=snapshot.name, snapshot=snapshot)
        handlers = [
            (STAGE_AUTO_COMMIT, self._auto_commit),
            (STAGE_BACKUP_BRANCH, self._create_backup_branch),
            (STAGE_PUSH, self._push),
            (STAGE_PRUNE, self._prune),
        ]

        for index, (stage, handler) in enumerate(handlers):
            if cancel_event is not None and cancel_event.is_set():
                for remaining, _ in handlers[index:]:
                    result.stages.append(StageOutcome(remaining, StageStatus.CANCELLED, "run cancelled"))
                break

            try:
                if snapshot.detached:
                    raise RepositoryFailure("HEAD is detached", snapshot.path)
                outcome = handler(snapshot, result)
            except DegradedOperation as e:
                self.logger.warning(f"[{snapshot.name}] {stage} degraded: {e}")
                outcome = StageOutcome(stage, StageStatus.DEGRADED, str(e))
            except RepositoryFailure as e:
                self.logger.error(f"[{snapshot.name}] {stage} failed: {e}")
                result.error = str(e)
                result.stages.append(StageOutcome(stage, StageStatus.FAILED, str(e)))
                for remaining, _ in handlers[index + 1:]:
                    result.stages.append(StageOutcome(remaining, StageStatus.SKIPPED,
                                                      f"aborted after {stage} failure"))
                break

            result.stages.append(outcome)
            if outcome.status == StageStatus.DONE:
                self.logger.info(f"[{snapshot.name}] {stage}: {outcome.detail}")
            else:
                self.logger.debug(f"[{snapshot.name}] {stage} {outcome.status.value}: {outcome.detail}")

        return result

    def _auto_commit(self, snapshot: RepositorySnapshot, result: RepositoryBackupResult) -> StageOutcome:
        if snapshot.branch not in self.auto_commit_branches:
            return StageOutcome(STAGE_AUTO_COMMIT, StageStatus.SKIPPED,
                                f"branch {snapshot.branch} not in auto-commit set")
        if not snapshot.dirty:
            return StageOutcome(STAGE_AUTO_COMMIT, StageStatus.SKIPPED, "no changes")

        repo = snapshot.path
        self._ensure_no_conflicts(repo)
        self.git.run(repo, "add", "-A")
        staged = self.git.lines(repo, "diff", "--cached", "--name-only")
        if not staged:
            return StageOutcome(STAGE_AUTO_COMMIT, StageStatus.SKIPPED, "nothing staged")

        self.git.run(repo, "commit", "-m", self._wip_message(snapshot.branch, len(staged)))
        return StageOutcome(STAGE_AUTO_COMMIT, StageStatus.DONE,
                            f"committed {len(staged)} files on {snapshot.branch}")

    def _create_backup_branch(self, snapshot: RepositorySnapshot,
                              result: RepositoryBackupResult) -> StageOutcome:
        branch = snapshot.branch
        if branch not in self.auto_commit_branches:
            return StageOutcome(STAGE_BACKUP_BRANCH, StageStatus.SKIPPED,
                                f"branch {branch} not in auto-commit set")
        if not snapshot.dirty and not (snapshot.ahead or 0) > 0:
            return StageOutcome(STAGE_BACKUP_BRANCH, StageStatus.SKIPPED, "nothing to protect")

        repo = snapshot.path
        if not self.git.succeeds(repo, "rev-parse", "--verify", "-q", "HEAD"):
            return StageOutcome(STAGE_BACKUP_BRANCH, StageStatus.SKIPPED, "no commits yet")

        name = BackupBranch.make_name(branch, self.clock())
        if self.git.succeeds(repo, "rev-parse", "--verify", "-q", f"refs/heads/{name}"):
            return StageOutcome(STAGE_BACKUP_BRANCH, StageStatus.SKIPPED, f"{name} already exists")

        self.git.run(repo, "checkout", "-b", name)

        commit_error = None
        try:
            if self.inspector.is_dirty(repo):
                self.git.run(repo, "add", "-A")
                stamp = self.clock().strftime("%Y-%m-%d %H:%M:%S")
                self.git.run(repo, "commit", "-m", f"Backup branch created - {stamp}")
        except RepositoryFailure as e:
            commit_error = e

        restored = self.git.run(repo, "checkout", branch, check=False)
        if restored.returncode != 0:
            self.logger.error(f"[{snapshot.name}] could not return to {branch} from {name}: "
                              f"{restored.stderr.strip()}")
            raise RepositoryFailure(f"left on {name}; checkout of {branch} failed", repo)
        if commit_error is not None:
            self.logger.error(f"[{snapshot.name}] commit on {name} failed, returned to {branch}")
            raise commit_error

        result.backup_branch = name
        return StageOutcome(STAGE_BACKUP_BRANCH, StageStatus.DONE, f"created {name}")

    def _push(self, snapshot: RepositorySnapshot, result: RepositoryBackupResult) -> StageOutcome:
        repo = snapshot.path
        if not self.git.succeeds(repo, "remote", "get-url", "origin"):
            raise DegradedOperation("no remote origin configured; push skipped")

        ahead, _ = self.inspector.ahead_behind(repo)
        if ahead is None:
            raise DegradedOperation(f"branch {snapshot.branch} has no upstream; push skipped")
        if ahead == 0:
            return StageOutcome(STAGE_PUSH, StageStatus.SKIPPED, "nothing to push")

        try:
            pushed = self.git.run(repo, "push", "origin", snapshot.branch, network=True, check=False)
        except GitTimeoutError as e:
            raise DegradedOperation(f"push timed out: {e}")
        if pushed.returncode != 0:
            raise DegradedOperation("push failed (network or authentication): "
                                    f"{pushed.stderr.strip()[-200:]}")

        backups = self.list_backup_branches(repo)
        failed = []
        for backup in backups:
            try:
                proc = self.git.run(repo, "push", "origin", backup.name, network=True, check=False)
                ok = proc.returncode == 0
            except GitTimeoutError:
                ok = False
            if not ok:
                failed.append(backup.name)
                self.logger.warning(f"[{snapshot.name}] could not push backup branch {backup.name}")

        detail = f"pushed {ahead} commits; {len(backups) - len(failed)}/{len(backups)} backup branches"
        return StageOutcome(STAGE_PUSH, StageStatus.DONE, detail)

    def _prune(self, snapshot: RepositorySnapshot, result: RepositoryBackupResult) -> StageOutcome:
        repo = snapshot.path
        excess = self.pruner.select_excess_branches(self.list_backup_branches(repo))
        if not excess:
            return StageOutcome(STAGE_PRUNE, StageStatus.SKIPPED, "within keep-count")

        for backup in excess:
            proc = self.git.run(repo, "branch", "-D", backup.name, check=False)
            if proc.returncode == 0:
                result.pruned_branches.append(backup.name)
            else:
                self.logger.warning(f"[{snapshot.name}] could not delete {backup.name}: "
                                    f"{proc.stderr.strip()}")

        return StageOutcome(STAGE_PRUNE, StageStatus.DONE,
                            f"deleted {len(result.pruned_branches)} old backup branches")

    def list_backup_branches(self, repo: str) -> List[BackupBranch]:
        """All local backup branches of a repository."""
        names = self.git.lines(repo, "for-each-ref", "--format=%(refname:short)",
                               f"refs/heads/{BACKUP_BRANCH_PREFIX}")
        return [BackupBranch.parse(name) for name in names]

    def _ensure_no_conflicts(self, repo: str) -> None:
        if self.git.lines(repo, "ls-files", "--unmerged"):
            raise RepositoryFailure("unresolved merge conflicts", repo)

    def _wip_message(self, branch: str, file_count: int) -> str:
        stamp = self.clock().strftime("%Y-%m-%d %H:%M:%S")
        return (
            f"WIP: Auto-commit backup - {stamp}\n"
            "\n"
            f"{WIP_TAG} created by the repository guard.\n"
            "Contains work in progress that may not be ready for production.\n"
            "\n"
            f"Branch: {branch}\n"
            f"Files modified: {file_count}\n"
            f"Timestamp: {stamp}"
        )
