"""Pattern-based secret detection in working trees and recent history."""

import logging
import os
from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..core.errors import RepositoryFailure
from ..core.git import GitRunner
from ..core.models import SecretFinding
from .file_set import RepositoryFileSet
from .patterns import DEFAULT_PATTERNS, SecretPattern


CONTEXT_LIMIT = 120


class SecretsScanner:
    """Flags potential credential leaks in a repository."""

    def __init__(self, git: GitRunner, file_set: RepositoryFileSet,
                 patterns: Optional[Sequence[SecretPattern]] = None,
                 history_depth: int = 10, max_file_size_mb: int = 5):
        """Initialize secrets scanner.

        Args:
            git: Git runner used for history access.
            file_set: Selects the files to scan.
            patterns: Ordered detection patterns.
            history_depth: Number of most recent commits whose diffs are scanned.
            max_file_size_mb: Larger working-tree files are skipped.
        """
        self.git = git
        self.file_set = file_set
        self.patterns = list(patterns if patterns is not None else DEFAULT_PATTERNS)
        self.history_depth = history_depth
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self.logger = logging.getLogger(__name__)

    def scan(self, repo_path: str) -> List[SecretFinding]:
        """Scan the working tree and recent history of a repository."""
        name = os.path.basename(repo_path)
        findings = self.scan_working_tree(repo_path) + self.scan_history(repo_path)

        if findings:
            # Categories and counts only, never the matched text
            self.logger.warning(f"Potential secrets in {name}: {summarize_findings(findings)}")
        else:
            self.logger.info(f"No secrets detected in {name}")
        return findings

    def scan_working_tree(self, repo_path: str) -> List[SecretFinding]:
        name = os.path.basename(repo_path)
        findings = []
        for rel_path in self.file_set.list_files(repo_path):
            text = self._read_text(os.path.join(repo_path, rel_path))
            if text is None:
                continue
            for line_no, line in enumerate(text.splitlines(), 1):
                findings.extend(self._match_line(name, line, f"{rel_path}:{line_no}", historical=False))
        return findings

    def scan_history(self, repo_path: str) -> List[SecretFinding]:
        """Scan added lines in the diffs of the most recent commits.

        A match here is reported even if the working tree no longer contains it.
        """
        if self.history_depth <= 0:
            return []
        name = os.path.basename(repo_path)
        try:
            proc = self.git.run(repo_path, "log", "--all", "--full-history", "-p",
                                f"-{self.history_depth}", "--no-color", "--format=commit %H",
                                check=False)
        except RepositoryFailure as e:
            self.logger.warning(f"Could not read history of {name}: {e}")
            return []
        if proc.returncode != 0:
            # No commits yet
            return []

        findings = []
        commit = "unknown"
        for line in proc.stdout.splitlines():
            if line.startswith("commit "):
                commit = line[7:14]
                continue
            if not line.startswith("+") or line.startswith("+++"):
                continue
            findings.extend(self._match_line(name, line[1:], f"history:{commit}", historical=True))
        return findings

    def _match_line(self, repository: str, line: str, location: str,
                    historical: bool) -> List[SecretFinding]:
        findings = []
        seen = set()
        for pattern in self.patterns:
            match = pattern.search(line)
            if not match or pattern.category in seen:
                continue
            seen.add(pattern.category)
            findings.append(SecretFinding(
                repository=repository,
                category=pattern.category,
                location=location,
                context=line.strip()[:CONTEXT_LIMIT],
                historical=historical,
            ))
        return findings

    def _read_text(self, path: str) -> Optional[str]:
        try:
            if os.path.getsize(path) > self.max_file_size:
                return None
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            self.logger.debug(f"Skipping unreadable file {path}: {e}")
            return None
        if b"\x00" in data[:8192]:
            return None
        return data.decode("utf-8", errors="ignore")


def summarize_findings(findings: Sequence[SecretFinding]) -> Dict[str, int]:
    """Category counts, with historical matches counted under ``historical``."""
    counts = Counter(f.category for f in findings)
    historical = sum(1 for f in findings if f.historical)
    summary = dict(sorted(counts.items()))
    if historical:
        summary["historical"] = historical
    return summary
