"""Core repository discovery, inspection and git protection."""

from .errors import (
    GuardError, FatalConfigurationError, RepositoryFailure, DegradedOperation, ArtifactFailure,
)
from .git import GitRunner
from .inspector import RepositoryStateInspector
from .locator import RepositoryLocator
from .lock import RunLock
from .models import RepositorySnapshot, BackupBranch, RetentionPolicy
from .operator import DefensiveGitOperator
from .retention import RetentionPruner

__all__ = [
    "GuardError", "FatalConfigurationError", "RepositoryFailure", "DegradedOperation", "ArtifactFailure",
    "GitRunner", "RepositoryStateInspector", "RepositoryLocator", "RunLock",
    "RepositorySnapshot", "BackupBranch", "RetentionPolicy", "DefensiveGitOperator", "RetentionPruner",
]
