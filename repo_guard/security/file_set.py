"""The set of repository files the security checks look at."""

import fnmatch
import logging
import os
from typing import Iterable, List, Optional

from ..core.errors import RepositoryFailure
from ..core.git import GitRunner


DEFAULT_EXCLUDE_DIRS = [".git", "node_modules", ".venv", "venv", "__pycache__"]
DEFAULT_EXCLUDE_FILES = ["*.log", "*.tmp"]

logger = logging.getLogger(__name__)


class RepositoryFileSet:
    """Lists tracked and untracked-but-not-ignored files of a repository."""

    def __init__(self, git: GitRunner, exclude_dirs: Optional[Iterable[str]] = None,
                 exclude_files: Optional[Iterable[str]] = None):
        self.git = git
        self.exclude_dirs = set(exclude_dirs if exclude_dirs is not None else DEFAULT_EXCLUDE_DIRS)
        self.exclude_files = list(exclude_files if exclude_files is not None else DEFAULT_EXCLUDE_FILES)

    def list_files(self, repo_path: str) -> List[str]:
        """Relative POSIX paths of every non-excluded regular file, sorted."""
        try:
            candidates = self.git.lines(repo_path, "-c", "core.quotepath=off", "ls-files",
                                        "--cached", "--others", "--exclude-standard")
        except RepositoryFailure as e:
            logger.debug(f"git ls-files failed for {repo_path}, walking tree instead: {e}")
            candidates = self._walk(repo_path)

        files = set()
        for rel_path in candidates:
            if self.is_excluded(rel_path):
                continue
            full_path = os.path.join(repo_path, rel_path)
            if os.path.isfile(full_path) and not os.path.islink(full_path):
                files.add(rel_path)
        return sorted(files)

    def is_excluded(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        if any(part in self.exclude_dirs for part in parts[:-1]):
            return True
        return any(fnmatch.fnmatch(parts[-1], pattern) for pattern in self.exclude_files)

    def _walk(self, repo_path: str) -> List[str]:
        found = []
        for root, dirs, files in os.walk(repo_path):
            dirs[:] = [d for d in dirs if d not in self.exclude_dirs]
            for name in files:
                rel = os.path.relpath(os.path.join(root, name), repo_path)
                found.append(rel.replace(os.sep, "/"))
        return found
