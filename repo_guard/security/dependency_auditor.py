"""Dependency vulnerability checks for Node, Python and Ruby projects.

Each ecosystem check is optional: a missing manifest or missing tool makes it
not applicable rather than failed.
"""

import json
import logging
import os
import re
import shutil
import subprocess
from typing import Dict, List, Optional, Tuple

from packaging.requirements import InvalidRequirement, Requirement
from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from ..core.models import CheckResult, CheckStatus, DependencyFinding


# Known vulnerable version ranges for common Python packages
KNOWN_VULNERABLE_PYTHON = {
    "django": "<3.0",
    "requests": "<2.20",
    "pillow": "<6.2.0",
    "jinja2": "<2.10.1",
    "urllib3": "<1.24.2",
    "pyyaml": "<5.4",
}

NPM_SEVERITIES = ("moderate", "high", "critical")


class DependencyAuditor:
    """Delegates to ecosystem audit tools when their manifests are present."""

    def __init__(self, timeout_seconds: int = 120,
                 vulnerable_python: Optional[Dict[str, str]] = None):
        self.timeout_seconds = timeout_seconds
        self.vulnerable_python = {
            canonicalize_name(name): SpecifierSet(spec)
            for name, spec in (vulnerable_python or KNOWN_VULNERABLE_PYTHON).items()
        }
        self.logger = logging.getLogger(__name__)

    def audit(self, repo_path: str) -> CheckResult:
        """Run every applicable ecosystem check and combine their results."""
        results = [
            self.audit_node(repo_path),
            self.audit_python(repo_path),
            self.audit_ruby(repo_path),
        ]

        findings: List[DependencyFinding] = []
        errors = []
        for result in results:
            findings.extend(result.findings)
            if result.error:
                errors.append(result.error)

        statuses = {result.status for result in results}
        if findings:
            status = CheckStatus.FINDINGS
        elif CheckStatus.FAILED in statuses:
            status = CheckStatus.FAILED
        elif CheckStatus.CLEAN in statuses:
            status = CheckStatus.CLEAN
        else:
            status = CheckStatus.NOT_APPLICABLE

        name = os.path.basename(repo_path)
        if findings:
            self.logger.warning(f"Dependency vulnerabilities in {name}: {len(findings)}")
        elif status == CheckStatus.FAILED:
            self.logger.error(f"Dependency audit failed for {name}: {'; '.join(errors)}")
        return CheckResult(status=status, findings=findings, error="; ".join(errors) or None)

    def audit_node(self, repo_path: str) -> CheckResult:
        if not os.path.isfile(os.path.join(repo_path, "package.json")):
            return CheckResult(CheckStatus.NOT_APPLICABLE)
        if shutil.which("npm") is None:
            return CheckResult(CheckStatus.NOT_APPLICABLE)

        ok, proc, error = self._run_tool(["npm", "audit", "--json", "--audit-level=moderate"], repo_path)
        if not ok:
            return CheckResult(CheckStatus.FAILED, error=f"npm audit: {error}")
        try:
            report = json.loads(proc.stdout or "{}")
        except ValueError:
            return CheckResult(CheckStatus.FAILED, error="npm audit: unreadable output")
        if "error" in report:
            detail = report["error"].get("summary") if isinstance(report["error"], dict) else report["error"]
            return CheckResult(CheckStatus.FAILED, error=f"npm audit: {detail}")

        counts = report.get("metadata", {}).get("vulnerabilities", {})
        findings = [
            DependencyFinding("npm", "(audit)", f"{counts[severity]} {severity} vulnerabilities")
            for severity in NPM_SEVERITIES if counts.get(severity)
        ]
        return CheckResult(CheckStatus.FINDINGS if findings else CheckStatus.CLEAN, findings)

    def audit_python(self, repo_path: str) -> CheckResult:
        requirements = os.path.join(repo_path, "requirements.txt")
        if not os.path.isfile(requirements):
            return CheckResult(CheckStatus.NOT_APPLICABLE)
        try:
            with open(requirements, "r", encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            return CheckResult(CheckStatus.FAILED, error=f"requirements.txt: {e}")

        findings = []
        for line in lines:
            finding = self._check_requirement(line)
            if finding:
                findings.append(finding)
        return CheckResult(CheckStatus.FINDINGS if findings else CheckStatus.CLEAN, findings)

    def audit_ruby(self, repo_path: str) -> CheckResult:
        if not os.path.isfile(os.path.join(repo_path, "Gemfile")):
            return CheckResult(CheckStatus.NOT_APPLICABLE)
        if shutil.which("bundle") is None:
            return CheckResult(CheckStatus.NOT_APPLICABLE)

        ok, proc, error = self._run_tool(["bundle", "audit", "check"], repo_path)
        if not ok:
            return CheckResult(CheckStatus.FAILED, error=f"bundle audit: {error}")
        output = (proc.stdout or "") + (proc.stderr or "")
        if "No vulnerabilities found" in output:
            return CheckResult(CheckStatus.CLEAN)
        if "Could not find command" in output or "Unknown command" in output:
            # bundler-audit plugin not installed
            return CheckResult(CheckStatus.NOT_APPLICABLE)

        gems = re.findall(r"^Name:\s*(\S+)", output, re.MULTILINE)
        if not gems:
            return CheckResult(CheckStatus.FAILED, error="bundle audit: unrecognized output")
        findings = [DependencyFinding("bundler", gem, "advisory reported by bundle audit") for gem in gems]
        return CheckResult(CheckStatus.FINDINGS, findings)

    def _check_requirement(self, line: str) -> Optional[DependencyFinding]:
        text = line.split("#", 1)[0].strip()
        if not text or text.startswith("-"):
            return None
        try:
            requirement = Requirement(text)
        except InvalidRequirement:
            return None

        name = canonicalize_name(requirement.name)
        vulnerable = self.vulnerable_python.get(name)
        if vulnerable is None:
            return None

        # Pinned versions are checked exactly; a declared range is flagged when it
        # repeats the vulnerable range verbatim
        pinned = self._pinned_version(requirement)
        if pinned is not None:
            if pinned in vulnerable:
                return DependencyFinding("pip", requirement.name,
                                         f"{pinned} matches known vulnerable range {vulnerable}")
            return None
        if str(requirement.specifier) == str(vulnerable):
            return DependencyFinding("pip", requirement.name,
                                     f"requirement {requirement.specifier} only allows vulnerable versions")
        return None

    @staticmethod
    def _pinned_version(requirement: Requirement) -> Optional[Version]:
        for spec in requirement.specifier:
            if spec.operator in ("==", "===") and "*" not in spec.version:
                try:
                    return Version(spec.version)
                except InvalidVersion:
                    return None
        return None

    def _run_tool(self, command: List[str], cwd: str) -> Tuple[bool, Optional[subprocess.CompletedProcess], str]:
        try:
            proc = subprocess.run(command, cwd=cwd, capture_output=True, text=True,
                                  timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            return False, None, f"timed out after {self.timeout_seconds}s"
        except OSError as e:
            return False, None, str(e)
        return True, proc, ""
