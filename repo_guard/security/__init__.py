"""Security checks for repositories."""

from .dependency_auditor import DependencyAuditor
from .file_auditor import FileSecurityAuditor
from .file_set import RepositoryFileSet
from .integrity_monitor import IntegrityMonitor
from .quarantine import Quarantine
from .secrets_scanner import SecretsScanner

__all__ = ["DependencyAuditor", "FileSecurityAuditor", "RepositoryFileSet", "IntegrityMonitor",
           "Quarantine", "SecretsScanner"]
