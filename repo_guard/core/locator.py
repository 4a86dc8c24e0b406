"""Repository discovery under configured search roots."""

import os
import logging
from typing import Iterable, List, Optional

from .errors import FatalConfigurationError


DEFAULT_SKIP_DIRS = ["node_modules", ".venv", "venv", "__pycache__", ".tox", ".cache"]


class RepositoryLocator:
    """Finds git working trees below a set of search roots."""

    def __init__(self, search_roots: List[str], max_depth: int = 6,
                 skip_dirs: Optional[Iterable[str]] = None):
        """Initialize repository locator.

        Args:
            search_roots: Directories to search. ``~`` is expanded.
            max_depth: Maximum directory depth below each root.
            skip_dirs: Directory names never descended into.
        """
        self.search_roots = list(search_roots or [])
        self.max_depth = max_depth
        self.skip_dirs = set(skip_dirs if skip_dirs is not None else DEFAULT_SKIP_DIRS)
        self.logger = logging.getLogger(__name__)

    def find_repositories(self) -> List[str]:
        """Return every repository below the search roots.

        Returns:
            Sorted, de-duplicated list of absolute repository paths. Empty when
            no repository exists under valid roots.

        Raises:
            FatalConfigurationError: If no search roots are configured.
        """
        if not self.search_roots:
            raise FatalConfigurationError("No search roots configured")

        found = set()
        for root in self.search_roots:
            base_path = os.path.abspath(os.path.expanduser(root))
            if not os.path.isdir(base_path):
                self.logger.debug(f"Skipping missing search root: {base_path}")
                continue
            for repo in self._walk_root(base_path):
                found.add(os.path.realpath(repo))

        repositories = sorted(found)
        self.logger.info(f"Found {len(repositories)} git repositories under "
                         f"{len(self.search_roots)} search roots")
        return repositories

    def _walk_root(self, base_path: str) -> List[str]:
        repositories = []
        for root, dirs, files in os.walk(base_path):
            depth = root[len(base_path):].count(os.sep)

            if ".git" in dirs or ".git" in files:
                repositories.append(root)

            if depth >= self.max_depth:
                dirs[:] = []
                continue

            dirs[:] = [d for d in dirs if d != ".git" and d not in self.skip_dirs]
        return repositories

    @staticmethod
    def is_repository_root(path: str) -> bool:
        """Return True if ``path`` carries git metadata."""
        return os.path.exists(os.path.join(path, ".git"))
