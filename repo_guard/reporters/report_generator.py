"""Markdown reports for backup and security runs."""

import logging
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..core.models import (
    CHECK_DEPENDENCIES, CHECK_FILE_SECURITY, CHECK_INTEGRITY, CHECK_SECRETS, SECURITY_CHECKS,
    CheckStatus, RepositoryBackupResult, SecurityScanResult, StageStatus,
)
from ..utils.formatters import (
    CHECK_LEGEND, REPOSITORY_LEGEND, format_date, format_optional_count, get_check_indicator,
    get_repository_indicator,
)


CHECK_TITLES = {
    CHECK_SECRETS: "Secrets",
    CHECK_FILE_SECURITY: "File Security",
    CHECK_DEPENDENCIES: "Dependencies",
    CHECK_INTEGRITY: "Integrity",
}

REPORT_PREFIXES = ("project-report-", "security-report-")


class ReportGenerator:
    """Builds and stores the run summary reports."""

    def __init__(self, report_dir: str, inactivity_days: int = 30,
                 auto_commit_branches: Sequence[str] = (), max_backup_branches: int = 10,
                 clock=datetime.now):
        self.report_dir = Path(report_dir).expanduser()
        self.inactivity_days = inactivity_days
        self.auto_commit_branches = list(auto_commit_branches)
        self.max_backup_branches = max_backup_branches
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def project_report(self, results: Sequence[RepositoryBackupResult]) -> str:
        """Status table of every repository in a backup run, with statistics and legend."""
        lines = [
            "# Project Backup Status Report",
            "",
            f"Generated: {format_date(self.clock())}",
            "",
            "## Summary",
            "",
            "| Repository | Branch | Status | Days Inactive | Commits Ahead | Commits Behind | Stashes |",
            "|------------|--------|--------|---------------|---------------|----------------|---------|",
        ]

        active = with_changes = need_push = failed = 0
        for result in results:
            snapshot = result.snapshot
            if result.error:
                failed += 1
            if snapshot is None:
                lines.append(f"| {result.name} | - | {get_repository_indicator(None)} | - | - | - | - |")
                continue

            if snapshot.days_inactive is None or snapshot.days_inactive <= self.inactivity_days:
                active += 1
            if snapshot.dirty:
                with_changes += 1
            if snapshot.ahead:
                need_push += 1

            indicator = get_repository_indicator(snapshot, self.inactivity_days)
            days = "-" if snapshot.days_inactive is None else str(snapshot.days_inactive)
            lines.append(
                f"| {snapshot.name} | {snapshot.branch} | {indicator} | {days} | "
                f"{format_optional_count(snapshot.ahead)} | {format_optional_count(snapshot.behind)} | "
                f"{snapshot.stashes} |"
            )

        inspected = sum(1 for r in results if r.snapshot is not None)
        lines += [
            "",
            "## Statistics",
            "",
            f"- **Total Repositories**: {len(results)}",
            f"- **Active Repositories**: {active} (last {self.inactivity_days} days)",
            f"- **Repositories with Changes**: {with_changes}",
            f"- **Repositories Need Push**: {need_push}",
            f"- **Inactive Repositories**: {inspected - active}",
            f"- **Repositories with Errors**: {failed}",
            "",
            "## Legend",
            "",
        ]
        lines += [f"- {icon} {label}: {meaning}" for icon, label, meaning in REPOSITORY_LEGEND]
        lines += ["", "## Actions Taken", ""]
        lines += self._actions_taken(results)
        lines += [
            "",
            "## Notes",
            "",
            f"- WIP commits are only created on: {', '.join(self.auto_commit_branches) or 'none'}",
            f"- Maximum backup branches per repository: {self.max_backup_branches}",
            f"- Repositories inactive for more than {self.inactivity_days} days are skipped unless forced",
            "- Ahead/behind shows n/a when the branch has no upstream",
            "",
            "---",
            "",
            "*Report generated by repo-guard*",
            "",
        ]
        return "\n".join(lines)

    def _actions_taken(self, results: Sequence[RepositoryBackupResult]) -> List[str]:
        done = Counter()
        degraded = []
        skipped = []
        for result in results:
            if result.skipped_reason:
                skipped.append(f"{result.name} ({result.skipped_reason})")
            for outcome in result.stages:
                if outcome.status == StageStatus.DONE:
                    done[outcome.stage] += 1
                elif outcome.status == StageStatus.DEGRADED:
                    degraded.append(f"{result.name} {outcome.stage}: {outcome.detail}")

        lines = [
            f"- WIP commits created: {done['auto_commit']}",
            f"- Backup branches created: {done['backup_branch']}",
            f"- Repositories pushed: {done['push']}",
            f"- Old backup branches removed: {sum(len(r.pruned_branches) for r in results)}",
        ]
        if skipped:
            lines.append(f"- Skipped: {', '.join(skipped)}")
        for entry in degraded:
            lines.append(f"- Degraded: {entry}")
        for result in results:
            if result.error:
                lines.append(f"- Failed: {result.name}: {result.error}")
        return lines

    def security_report(self, results: Sequence[SecurityScanResult]) -> str:
        """One row per repository, one column per check category."""
        header = "| Repository | " + " | ".join(CHECK_TITLES[c] for c in SECURITY_CHECKS) + " |"
        divider = "|------------|" + "|".join("-" * (len(CHECK_TITLES[c]) + 2) for c in SECURITY_CHECKS) + "|"
        lines = [
            "# Security Scan Report",
            "",
            f"Generated: {format_date(self.clock())}",
            "",
            "## Summary",
            "",
            header,
            divider,
        ]

        for result in results:
            cells = []
            for check in SECURITY_CHECKS:
                check_result = result.checks.get(check)
                if check_result is None:
                    cells.append(get_check_indicator(CheckStatus.NOT_RUN))
                else:
                    cells.append(get_check_indicator(check_result.status, check_result.count))
            lines.append(f"| {result.name} | " + " | ".join(cells) + " |")

        def count(check: str, statuses) -> int:
            return sum(1 for r in results if r.checks.get(check) and r.checks[check].status in statuses)

        issues = (CheckStatus.FINDINGS,)
        lines += [
            "",
            "## Summary Statistics",
            "",
            f"- **Total Repositories Scanned**: {len(results)}",
            f"- **Repositories with Potential Secrets**: {count(CHECK_SECRETS, issues)}",
            f"- **Repositories with Security Issues**: {count(CHECK_FILE_SECURITY, issues)}",
            f"- **Repositories with Vulnerable Dependencies**: {count(CHECK_DEPENDENCIES, issues)}",
            f"- **Repositories with Integrity Changes**: {count(CHECK_INTEGRITY, (CheckStatus.CHANGED,))}",
            f"- **Checks Failed**: {sum(1 for r in results for c in r.checks.values() if c.status == CheckStatus.FAILED)}",
            "",
            "## Legend",
            "",
        ]
        lines += [f"- {icon} {label}: {meaning}" for icon, label, meaning in CHECK_LEGEND]

        failures = [(r.name, name, c.error) for r in results for name, c in r.checks.items()
                    if c.status == CheckStatus.FAILED]
        failures += [(r.name, "scan", r.error) for r in results if r.error]
        if failures:
            lines += ["", "## Failed Checks", ""]
            lines += [f"- {repo} {check}: {error or 'unknown error'}" for repo, check, error in failures]

        lines += [
            "",
            "## Recommendations",
            "",
            "### If Secrets Were Found:",
            "1. Rotate any exposed credentials immediately",
            "2. Remove secrets from git history; historical findings stay exposed until history is rewritten",
            "3. Move secrets to environment variables or a secret manager",
            "",
            "### If File Security Issues Were Found:",
            "1. Remove world-writable permissions",
            "2. Clear executable bits on data files",
            "3. Move credential files out of the repository",
            "",
            "### If Vulnerabilities Were Found:",
            "1. Update vulnerable dependencies",
            "2. Review the advisories for affected packages",
            "",
            "---",
            "",
            "*Report generated by repo-guard*",
            "",
        ]
        return "\n".join(lines)

    def save(self, content: str, prefix: str) -> Path:
        """Write a report as ``<prefix>-<timestamp>.md`` in the report directory."""
        self.report_dir.mkdir(parents=True, exist_ok=True)
        timestamp = self.clock().strftime('%Y%m%d_%H%M%S')
        report_file = self.report_dir / f"{prefix}-{timestamp}.md"
        report_file.write_text(content, encoding='utf-8')
        self.logger.info(f"Report saved: {report_file}")
        return report_file

    def cleanup_old_reports(self, retention_days: int, now: Optional[float] = None) -> int:
        """Delete saved reports older than ``retention_days``. Returns the number removed."""
        if not self.report_dir.is_dir():
            return 0
        cutoff_time = (now if now is not None else time.time()) - (retention_days * 24 * 60 * 60)
        removed = 0
        for report_file in self.report_dir.glob('*.md'):
            if not report_file.name.startswith(REPORT_PREFIXES):
                continue
            if report_file.stat().st_mtime < cutoff_time:
                try:
                    report_file.unlink()
                    removed += 1
                    self.logger.debug(f"Deleted old report: {report_file}")
                except OSError as e:
                    self.logger.warning(f"Could not delete old report {report_file}: {e}")
        return removed
