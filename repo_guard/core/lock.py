"""Directory lock that keeps two runs of the same kind from overlapping."""

import errno
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional


class RunLock:
    """A ``mkdir``-based lock. A second invocation skips instead of waiting.

    Usage::

        with RunLock(lock_dir, "backup") as lock:
            if not lock.acquired:
                return
            ...
    """

    PID_GRACE_SECONDS = 30

    def __init__(self, lock_dir: str, name: str):
        self.path = Path(lock_dir).expanduser() / f"{name}.lock"
        self.name = name
        self.acquired = False
        self.logger = logging.getLogger(__name__)

    def acquire(self) -> bool:
        """Try once to take the lock. Returns False if another live process holds it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                os.mkdir(self.path)
            except FileExistsError:
                holder = self._holder_pid(self.path)
                if holder is not None and self._pid_alive(holder):
                    self.logger.warning(f"{self.name} run already in progress (pid {holder}); skipping")
                    return False
                if holder is None and self._age_seconds(self.path) < self.PID_GRACE_SECONDS:
                    # Holder has created the directory but not yet written its pid
                    self.logger.warning(f"{self.name} run is starting in another process; skipping")
                    return False
                if not self._reclaim(holder):
                    return False
                continue
            (self.path / "pid").write_text(str(os.getpid()), encoding="utf-8")
            self.acquired = True
            return True
        return False

    def release(self) -> None:
        if self.acquired:
            shutil.rmtree(self.path, ignore_errors=True)
            self.acquired = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _reclaim(self, holder: Optional[int]) -> bool:
        """Move a stale lock aside. Of several contenders only one rename succeeds."""
        stale = self.path.with_name(f"{self.path.name}.stale-{os.getpid()}-{time.monotonic_ns()}")
        try:
            os.rename(self.path, stale)
        except FileNotFoundError:
            self.logger.warning(f"Stale {self.name} lock was reclaimed by another process; skipping")
            return False

        moved = self._holder_pid(stale)
        taken = (moved is not None and moved != holder and self._pid_alive(moved)) or (
            moved is None and self._age_seconds(stale) < self.PID_GRACE_SECONDS)
        if taken:
            # A new holder took the lock between the staleness check and the rename
            try:
                os.rename(stale, self.path)
            except OSError as e:
                self.logger.error(f"Could not restore {self.name} lock of pid {moved}: {e}")
            self.logger.warning(f"{self.name} run already in progress (pid {moved}); skipping")
            return False

        self.logger.warning(f"Reclaimed stale {self.name} lock (pid {holder})")
        shutil.rmtree(stale, ignore_errors=True)
        return True

    @staticmethod
    def _holder_pid(lock_path: Path) -> Optional[int]:
        try:
            return int((lock_path / "pid").read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    @staticmethod
    def _age_seconds(lock_path: Path) -> float:
        try:
            return time.time() - lock_path.stat().st_mtime
        except OSError:
            return float("inf")

    @staticmethod
    def _pid_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except OSError as e:
            return e.errno == errno.EPERM
        return True
