"""
Repo Guard - defensive backup and security scanning for local git repositories.

This package finds git repositories, protects uncommitted work with WIP commits,
backup branches and pushes, scans repositories for leaked secrets and risky
files, and keeps encrypted archives of sensitive configuration files.
"""

__version__ = "1.0.0"

from .core.engine import GuardEngine
from .core.locator import RepositoryLocator
from .archive.archive_manager import ArchiveManager

__all__ = ["GuardEngine", "RepositoryLocator", "ArchiveManager"]
