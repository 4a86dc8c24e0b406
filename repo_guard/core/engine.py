"""Main repository guard coordinator."""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ArtifactFailure, FatalConfigurationError, NotARepositoryError, RepositoryFailure
from .git import GitRunner
from .inspector import RepositoryStateInspector
from .locator import RepositoryLocator
from .lock import RunLock
from .models import (
    CHECK_DEPENDENCIES, CHECK_FILE_SECURITY, CHECK_INTEGRITY, CHECK_SECRETS,
    ArchiveResult, CheckResult, CheckStatus, RepositoryBackupResult, SecurityScanResult, StageStatus,
)
from .operator import DefensiveGitOperator
from .retention import RetentionPruner
from ..archive.archive_manager import ArchiveManager
from ..archive.crypto import KeyStore
from ..config.config_manager import ConfigManager
from ..reporters.email_reporter import EmailReporter, Notifier
from ..reporters.report_generator import ReportGenerator
from ..security.dependency_auditor import DependencyAuditor
from ..security.file_auditor import FileSecurityAuditor
from ..security.file_set import RepositoryFileSet
from ..security.integrity_monitor import IntegrityMonitor
from ..security.patterns import DEFAULT_PATTERNS, patterns_from_config
from ..security.quarantine import Quarantine
from ..security.secrets_scanner import SecretsScanner


class GuardEngine:
    """Runs backup, security and archive batches over the configured repositories."""

    def __init__(self, config_path: Optional[str] = None, config_data: Optional[Dict[str, Any]] = None):
        """Initialize the engine.

        Args:
            config_path: Optional path to configuration file.
            config_data: Already-parsed configuration; takes precedence over the file.
        """
        self.config_manager = ConfigManager(config_path)
        if config_data is not None:
            self.config = self.config_manager.load_dict(config_data)
        else:
            self.config = self.config_manager.load_config()
        self.logger = logging.getLogger(__name__)

        self._initialize_components()

    def _initialize_components(self):
        cm = self.config_manager
        git_config = cm.get_git_config()
        security_config = cm.get_security_config()
        archive_config = cm.get_archive_config()
        reports_config = cm.get_reports_config()

        self.state_dir = cm.get_state_dir()
        self.lock_dir = self.state_dir / "locks"
        self.report_dir = Path(reports_config['directory']).expanduser()
        self.inactivity_days = git_config['inactivity_days']
        self.workers = cm.get_concurrency_config().get('workers', 4)

        self.git = GitRunner(
            timeout_seconds=git_config['timeout_seconds'],
            network_timeout_seconds=git_config['network_timeout_seconds'],
            author_name=git_config.get('author_name'),
            author_email=git_config.get('author_email'),
        )
        self.locator = RepositoryLocator(cm.get_search_roots(), max_depth=git_config['max_depth'])

        status_dir = self.report_dir / "status" if reports_config.get('status_records', True) else None
        self.inspector = RepositoryStateInspector(self.git, status_dir=str(status_dir) if status_dir else None)

        policy = cm.get_retention_policy()
        self.pruner = RetentionPruner(policy)
        self.operator = DefensiveGitOperator(
            self.git, self.inspector, self.pruner,
            auto_commit_branches=git_config['auto_commit_branches'],
        )

        self.file_set = RepositoryFileSet(
            self.git,
            exclude_dirs=security_config['exclude_dirs'],
            exclude_files=security_config['exclude_files'],
        )
        try:
            patterns = DEFAULT_PATTERNS + patterns_from_config(security_config.get('extra_patterns', []))
        except ValueError as e:
            raise FatalConfigurationError(str(e))
        self.secrets_scanner = SecretsScanner(
            self.git, self.file_set, patterns=patterns,
            history_depth=security_config['history_depth'],
            max_file_size_mb=security_config['max_scan_file_mb'],
        )
        self.file_auditor = FileSecurityAuditor(self.file_set, large_file_mb=security_config['large_file_mb'])
        self.dependency_auditor = DependencyAuditor(timeout_seconds=security_config['dependency_timeout_seconds'])
        self.integrity_monitor = IntegrityMonitor(self.file_set, str(self.report_dir / "integrity"))
        self.quarantine = Quarantine(security_config['quarantine_dir'])

        self.key_store = KeyStore(archive_config['key_file'])
        self.archive_manager = ArchiveManager(
            archive_config['directory'], self.key_store, self.pruner,
            temp_dir=archive_config.get('temp_dir'),
        )

        self.report_generator = ReportGenerator(
            str(self.report_dir),
            inactivity_days=self.inactivity_days,
            auto_commit_branches=git_config['auto_commit_branches'],
            max_backup_branches=policy.keep_count,
        )

        email_config = cm.get_email_config()
        email_reporter = EmailReporter.from_config(email_config) if email_config else None
        self.notifier = Notifier(email_reporter, subject_prefix=email_config.get('subject_prefix', 'repo-guard'))

    # Discovery

    def discover(self, repo: Optional[str] = None) -> List[str]:
        """Repositories to process: the configured roots, or a single repository.

        Raises:
            NotARepositoryError: If ``repo`` is given and is not a repository root.
        """
        if repo is None:
            repositories = self.locator.find_repositories()
            self.logger.info(f"Found {len(repositories)} repositories")
            return repositories

        path = os.path.realpath(os.path.expanduser(repo))
        if not RepositoryLocator.is_repository_root(path):
            raise NotARepositoryError(f"Not a git repository: {repo}", path)
        return [path]

    def _require_git(self):
        if not self.git.is_available():
            raise FatalConfigurationError("git executable not found")

    def _map(self, func, items: List[Any]) -> List[Any]:
        """Apply ``func`` to every item on the worker pool, keeping input order."""
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=max(1, min(self.workers, len(items)))) as pool:
            return list(pool.map(func, items))

    # Status

    def inspect_all(self, repo: Optional[str] = None) -> List[RepositoryBackupResult]:
        """Read-only snapshot of every repository; nothing is committed or recorded."""
        self._require_git()

        def inspect(path: str) -> RepositoryBackupResult:
            result = RepositoryBackupResult(path=path, name=os.path.basename(path))
            try:
                result.snapshot = self.inspector.inspect(path, record=False)
            except RepositoryFailure as e:
                self.logger.error(f"Failed to inspect {path}: {e}")
                result.error = str(e)
            return result

        return self._map(inspect, self.discover(repo))

    # Backup

    def run_backup(self, force: bool = False, repo: Optional[str] = None,
                   cancel_event: Optional[threading.Event] = None,
                   save_report: bool = True) -> Dict[str, Any]:
        """Run the defensive git sequence over all repositories.

        Args:
            force: Also process repositories past the inactivity threshold.
            repo: Process only this repository.
            cancel_event: Stops the run between stages and repositories when set.
            save_report: Whether to save the project report.

        Returns:
            Dictionary with ``results``, ``report``, ``report_file`` and
            ``locked`` (True when another backup run held the lock).
        """
        self._require_git()
        cancel_event = cancel_event or threading.Event()

        with RunLock(str(self.lock_dir), "backup") as lock:
            if not lock.acquired:
                return {'results': [], 'report': None, 'report_file': None, 'locked': True}

            self.logger.info(f"Starting backup run{' (forced)' if force else ''}")
            repositories = self.discover(repo)
            results = self._map(lambda path: self._backup_repository(path, force, cancel_event), repositories)

            report = self.report_generator.project_report(results)
            report_file = self._save_report(report, "project-report") if save_report else None

            failures = sum(1 for r in results if r.error)
            actions = sum(r.actions_performed for r in results)
            self.notifier.notify(
                "Project Backup",
                f"Processed {len(results)} repositories: {actions} actions, {failures} failures",
                body=report, alert=failures > 0,
            )
            self.logger.info("Backup run completed")
            return {'results': results, 'report': report, 'report_file': report_file, 'locked': False}

    def _backup_repository(self, path: str, force: bool, cancel_event: threading.Event) -> RepositoryBackupResult:
        name = os.path.basename(path)
        result = RepositoryBackupResult(path=path, name=name)
        if cancel_event.is_set():
            result.skipped_reason = "run cancelled"
            return result

        try:
            snapshot = self.inspector.inspect(path)
        except Exception as e:
            self.logger.error(f"Failed to inspect {name}: {e}")
            result.error = str(e)
            return result

        if (not force and snapshot.days_inactive is not None
                and snapshot.days_inactive > self.inactivity_days):
            self.logger.info(f"Skipping inactive repository {name} ({snapshot.days_inactive} days)")
            result.snapshot = snapshot
            result.skipped_reason = f"inactive for {snapshot.days_inactive} days"
            return result

        try:
            return self.operator.protect(snapshot, cancel_event)
        except Exception as e:
            self.logger.error(f"Backup of {name} failed: {e}")
            result.snapshot = snapshot
            result.error = str(e)
            return result

    # Security

    def run_security_scan(self, repo: Optional[str] = None,
                          cancel_event: Optional[threading.Event] = None,
                          save_report: bool = True) -> Dict[str, Any]:
        """Run every security check over all repositories."""
        self._require_git()
        cancel_event = cancel_event or threading.Event()

        with RunLock(str(self.lock_dir), "security") as lock:
            if not lock.acquired:
                return {'results': [], 'report': None, 'report_file': None, 'locked': True}

            self.logger.info("Starting security scan")
            repositories = self.discover(repo)
            results = self._map(lambda path: self.scan_repository(path, cancel_event), repositories)

            report = self.report_generator.security_report(results)
            report_file = self._save_report(report, "security-report") if save_report else None

            flagged = [r.name for r in results
                       if any(r.checks.get(c) and r.checks[c].status == CheckStatus.FINDINGS
                              for c in (CHECK_SECRETS, CHECK_FILE_SECURITY))]
            if flagged:
                self.notifier.notify("Security Alert", f"Security issues found in {len(flagged)} repositories",
                                     body=report, alert=True)
            else:
                self.notifier.notify("Security Scan", f"Scanned {len(results)} repositories, no issues")
            self.logger.info("Security scan completed")
            return {'results': results, 'report': report, 'report_file': report_file, 'locked': False}

    def scan_repository(self, path: str, cancel_event: Optional[threading.Event] = None) -> SecurityScanResult:
        """Run the four checks on one repository. A failing check never stops the others."""
        result = SecurityScanResult(path=path, name=os.path.basename(path))
        checks = [
            (CHECK_SECRETS, self._check_secrets),
            (CHECK_FILE_SECURITY, self._check_files),
            (CHECK_DEPENDENCIES, self.dependency_auditor.audit),
            (CHECK_INTEGRITY, self._check_integrity),
        ]
        for check, handler in checks:
            if cancel_event is not None and cancel_event.is_set():
                result.checks[check] = CheckResult(CheckStatus.NOT_RUN)
                continue
            try:
                result.checks[check] = handler(path)
            except Exception as e:
                self.logger.error(f"{check} check failed for {result.name}: {e}")
                result.checks[check] = CheckResult(CheckStatus.FAILED, error=str(e))
        return result

    def _check_secrets(self, path: str) -> CheckResult:
        findings = self.secrets_scanner.scan(path)
        return CheckResult(CheckStatus.FINDINGS if findings else CheckStatus.CLEAN, findings)

    def _check_files(self, path: str) -> CheckResult:
        findings = self.file_auditor.audit(path)
        return CheckResult(CheckStatus.FINDINGS if findings else CheckStatus.CLEAN, findings)

    def _check_integrity(self, path: str) -> CheckResult:
        report = self.integrity_monitor.check(path)
        if report.has_changes:
            return CheckResult(CheckStatus.CHANGED, report.modified + report.deleted + report.new)
        return CheckResult(CheckStatus.CLEAN)

    # Archives

    def run_archive(self, set_names: Optional[List[str]] = None, prune: bool = True,
                    cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Archive the configured backup sets, then apply archive retention.

        Raises:
            FatalConfigurationError: If a requested set is not configured.
        """
        cancel_event = cancel_event or threading.Event()
        backup_sets = self.config_manager.get_backup_sets()
        names = list(set_names) if set_names else list(backup_sets)
        unknown = [n for n in names if n not in backup_sets]
        if unknown:
            raise FatalConfigurationError(f"Unknown backup sets: {', '.join(unknown)}")

        with RunLock(str(self.lock_dir), "archive") as lock:
            if not lock.acquired:
                return {'results': [], 'pruned': [], 'locked': True}

            self.logger.info(f"Starting archive run for {len(names)} backup sets")
            results: List[ArchiveResult] = []
            for name in names:
                if cancel_event.is_set():
                    results.append(ArchiveResult(backup_set=name, skipped=True, error="run cancelled"))
                    continue
                try:
                    results.append(self.archive_manager.create(name, backup_sets[name]))
                except ArtifactFailure as e:
                    results.append(ArchiveResult(backup_set=name, error=str(e)))

            pruned = self.archive_manager.prune() if prune and not cancel_event.is_set() else []

            successful = sum(1 for r in results if r.succeeded)
            failed = sum(1 for r in results if r.error and not r.skipped)
            self.notifier.notify("Encrypted Backup",
                                 f"Completed {successful}/{len(results)} backup sets, {failed} failed",
                                 alert=failed > 0)
            return {'results': results, 'pruned': pruned, 'locked': False}

    # Reports

    def _save_report(self, content: str, prefix: str) -> Optional[Path]:
        reports_config = self.config_manager.get_reports_config()
        if not reports_config.get('save_local', True):
            return None
        report_file = self.report_generator.save(content, prefix)
        self.report_generator.cleanup_old_reports(reports_config.get('retention_days', 30))
        return report_file

    def summarize(self, results: List[RepositoryBackupResult]) -> Dict[str, int]:
        """Counts used by the CLI summary line."""
        return {
            'repositories': len(results),
            'actions': sum(r.actions_performed for r in results),
            'failures': sum(1 for r in results if r.error),
            'degraded': sum(1 for r in results for s in r.stages if s.status == StageStatus.DEGRADED),
            'skipped': sum(1 for r in results if r.skipped_reason),
        }
