"""Point-in-time repository state inspection."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from .errors import NotARepositoryError
from .git import GitRunner
from .locator import DEFAULT_SKIP_DIRS
from .models import RepositorySnapshot


# Files whose modification time counts as developer activity
ACTIVITY_EXTENSIONS = {
    ".py", ".js", ".ts", ".rb", ".go", ".java", ".php", ".rs", ".c", ".h",
    ".md", ".txt", ".json", ".yaml", ".yml", ".toml", ".sh",
}


class RepositoryStateInspector:
    """Builds RepositorySnapshot records for single repositories."""

    def __init__(self, git: GitRunner, status_dir: Optional[str] = None):
        """Initialize state inspector.

        Args:
            git: Git runner used for every query.
            status_dir: Directory for timestamped status records. None disables them.
        """
        self.git = git
        self.status_dir = status_dir
        self.logger = logging.getLogger(__name__)

    def inspect(self, repo_path: str, record: bool = True,
                now: Optional[datetime] = None) -> RepositorySnapshot:
        """Capture the current state of a repository.

        Args:
            repo_path: Repository working tree.
            record: Also write the snapshot to a status record.
            now: Reference time for the inactivity age.

        Returns:
            The snapshot.

        Raises:
            NotARepositoryError: If ``repo_path`` is not a repository root.
        """
        path = os.path.realpath(os.path.expanduser(repo_path))
        if not os.path.isdir(path):
            raise NotARepositoryError(f"Not a directory: {path}", path)
        toplevel = self.git.toplevel(path)
        if toplevel is None or os.path.realpath(toplevel) != path:
            raise NotARepositoryError(f"Not a git repository: {path}", path)

        now = now or datetime.now()
        untracked, staged, modified = self._count_changes(path)
        ahead, behind = self.ahead_behind(path)

        snapshot = RepositorySnapshot(
            path=path,
            name=os.path.basename(path),
            branch=self._current_branch(path),
            dirty=(untracked + staged + modified) > 0,
            untracked=untracked,
            staged=staged,
            modified=modified,
            stashes=len(self.git.lines(path, "stash", "list", check=False)),
            ahead=ahead,
            behind=behind,
            last_commit=self._last_commit(path),
            remote_url=self._remote_url(path),
            days_inactive=self._days_inactive(path, now),
            timestamp=now,
        )

        if record and self.status_dir:
            self.write_status_record(snapshot)

        return snapshot

    def write_status_record(self, snapshot: RepositorySnapshot) -> Optional[Path]:
        """Write a snapshot as a timestamped JSON status record.

        A failing write is logged and never propagated.
        """
        try:
            status_dir = Path(self.status_dir).expanduser()
            status_dir.mkdir(parents=True, exist_ok=True)
            stamp = snapshot.timestamp.strftime("%Y%m%d_%H%M%S")
            record_file = status_dir / f"repo-status-{snapshot.name}-{stamp}.json"
            record_file.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
            return record_file
        except OSError as e:
            self.logger.warning(f"Could not write status record for {snapshot.name}: {e}")
            return None

    def is_dirty(self, repo_path: str) -> bool:
        """Live dirty check, used between operator stages."""
        return bool(self.git.lines(repo_path, "status", "--porcelain=v1"))

    def _current_branch(self, path: str) -> str:
        proc = self.git.run(path, "symbolic-ref", "--short", "-q", "HEAD", check=False)
        if proc.returncode == 0 and proc.stdout.strip():
            return proc.stdout.strip()
        return "HEAD"

    def _count_changes(self, path: str) -> Tuple[int, int, int]:
        untracked = staged = modified = 0
        for line in self.git.lines(path, "status", "--porcelain=v1"):
            index_state, tree_state = line[0], line[1]
            if index_state == "?":
                untracked += 1
                continue
            if index_state not in (" ", "!"):
                staged += 1
            if tree_state not in (" ", "!"):
                modified += 1
        return untracked, staged, modified

    def ahead_behind(self, path: str) -> Tuple[Optional[int], Optional[int]]:
        proc = self.git.run(path, "rev-list", "--left-right", "--count", "@{upstream}...HEAD",
                            check=False)
        if proc.returncode != 0:
            return None, None
        parts = proc.stdout.split()
        if len(parts) != 2:
            return None, None
        behind, ahead = int(parts[0]), int(parts[1])
        return ahead, behind

    def _last_commit(self, path: str) -> Optional[str]:
        proc = self.git.run(path, "log", "-1", "--format=%h %s", check=False)
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        return proc.stdout.strip()

    def _remote_url(self, path: str) -> Optional[str]:
        proc = self.git.run(path, "remote", "get-url", "origin", check=False)
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        return proc.stdout.strip()

    def _days_inactive(self, path: str, now: datetime) -> Optional[int]:
        latest = self._latest_activity(path)
        if latest is None:
            proc = self.git.run(path, "log", "-1", "--format=%ct", check=False)
            if proc.returncode == 0 and proc.stdout.strip():
                latest = float(proc.stdout.strip())
        if latest is None:
            return None
        return max(0, int((now.timestamp() - latest) // 86400))

    def _latest_activity(self, path: str) -> Optional[float]:
        latest = None
        skip = set(DEFAULT_SKIP_DIRS) | {".git"}
        for root, dirs, files in os.walk(path):
            dirs[:] = [d for d in dirs if d not in skip]
            for name in files:
                if os.path.splitext(name)[1].lower() not in ACTIVITY_EXTENSIONS:
                    continue
                try:
                    mtime = os.stat(os.path.join(root, name)).st_mtime
                except OSError:
                    continue
                if latest is None or mtime > latest:
                    latest = mtime
        return latest
