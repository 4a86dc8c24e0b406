"""Retention decisions for backup branches and archives.

Both policies are pure functions of the artifact list (and, for archives, a
reference time), so they can be re-run with a fixed ``now``:

- count-based: keep the ``keep_count`` newest backup branches by the timestamp
  embedded in their name.
- tiered: keep every archive inside the daily window, archives whose age is a
  whole number of weeks inside the weekly window, the newest archive of each
  30-day bucket inside the monthly window, and nothing older. Within a bucket
  an archive with a complete manifest is preferred over a newer invalid one.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from .models import BackupBranch, RetentionPolicy


T = TypeVar("T")


class RetentionPruner:
    """Decides which backup artifacts to delete. Never deletes anything itself."""

    def __init__(self, policy: RetentionPolicy):
        self.policy = policy
        self.logger = logging.getLogger(__name__)

    def select_excess_branches(self, branches: Sequence[BackupBranch]) -> List[BackupBranch]:
        """Return the backup branches beyond the keep-count, oldest first.

        Branches without a parseable timestamp are never selected.
        """
        dated = [b for b in branches if b.created_at is not None]
        newest_first = sorted(dated, key=lambda b: (b.created_at, b.name), reverse=True)
        excess = newest_first[max(self.policy.keep_count, 0):]
        excess.reverse()
        return excess

    def plan_archives(self, artifacts: Sequence[T], now: Optional[datetime] = None) -> Tuple[List[T], List[T]]:
        """Split archives into (keep, delete) under the tiered policy.

        Args:
            artifacts: Objects with ``created_at`` (datetime) and ``name``.
            now: Reference time. Defaults to the current time.

        Returns:
            Keep and delete lists, each sorted oldest first.
        """
        now = now or datetime.now()
        policy = self.policy
        keep: List[T] = []
        delete: List[T] = []
        monthly_buckets: Dict[int, T] = {}

        for artifact in artifacts:
            age = self.age_in_days(artifact.created_at, now)

            if age <= policy.daily_window:
                keep.append(artifact)
            elif age <= policy.weekly_window:
                if age % 7 == 0:
                    keep.append(artifact)
                else:
                    delete.append(artifact)
            elif age <= policy.monthly_window:
                bucket = age // 30
                current = monthly_buckets.get(bucket)
                if current is None:
                    monthly_buckets[bucket] = artifact
                elif self._newer(artifact, current):
                    delete.append(current)
                    monthly_buckets[bucket] = artifact
                else:
                    delete.append(artifact)
            else:
                delete.append(artifact)

        keep.extend(monthly_buckets.values())
        keep.sort(key=lambda a: (a.created_at, a.name))
        delete.sort(key=lambda a: (a.created_at, a.name))
        return keep, delete

    def select_expired_archives(self, artifacts: Sequence[T], now: Optional[datetime] = None) -> List[T]:
        """Return the archives the tiered policy deletes, oldest first."""
        return self.plan_archives(artifacts, now)[1]

    @staticmethod
    def age_in_days(created_at: datetime, now: datetime) -> int:
        """Whole days between ``created_at`` and ``now``; future timestamps count as 0."""
        return max(0, int((now - created_at).total_seconds() // 86400))

    @staticmethod
    def _newer(candidate, current) -> bool:
        # A valid archive always outranks an invalid one in the same bucket
        def rank(a):
            return (getattr(a, "valid", True), a.created_at, a.name)
        return rank(candidate) > rank(current)
