"""Data models for repository guard runs."""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


BACKUP_BRANCH_PREFIX = "backup/"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_BACKUP_BRANCH_RE = re.compile(r"^backup/(?P<stamp>\d{8}_\d{6})_(?P<source>.+)$")


@dataclass(frozen=True)
class RepositorySnapshot:
    """Point-in-time status of one repository.

    ``ahead`` and ``behind`` are ``None`` when no upstream tracking branch
    exists, which is distinct from being level with the upstream (``0``).
    """
    path: str
    name: str
    branch: str
    dirty: bool
    untracked: int
    staged: int
    modified: int
    stashes: int
    ahead: Optional[int]
    behind: Optional[int]
    last_commit: Optional[str]
    remote_url: Optional[str]
    days_inactive: Optional[int]
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def has_upstream(self) -> bool:
        return self.ahead is not None

    @property
    def has_remote(self) -> bool:
        return self.remote_url is not None

    @property
    def detached(self) -> bool:
        return self.branch == "HEAD"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat(timespec="seconds")
        data["last_commit"] = self.last_commit or "none"
        return data


@dataclass(frozen=True)
class BackupBranch:
    """A ``backup/<timestamp>_<source>`` branch inside a repository."""
    name: str
    source_branch: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def parse(cls, name: str) -> "BackupBranch":
        match = _BACKUP_BRANCH_RE.match(name)
        if not match:
            return cls(name=name, source_branch=None, created_at=None)
        try:
            created = datetime.strptime(match.group("stamp"), BACKUP_TIMESTAMP_FORMAT)
        except ValueError:
            created = None
        return cls(name=name, source_branch=match.group("source"), created_at=created)

    @staticmethod
    def make_name(source_branch: str, when: datetime) -> str:
        return f"{BACKUP_BRANCH_PREFIX}{when.strftime(BACKUP_TIMESTAMP_FORMAT)}_{source_branch}"


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention limits for backup branches and archives.

    Attributes:
        keep_count: Number of most recent backup branches to keep.
        daily: Keep every archive up to this many days old.
        weekly: Weekly window in weeks; keeps archives whose age is a multiple of 7 days.
        monthly: Monthly window in 30-day months; keeps one archive per 30-day bucket.
    """
    keep_count: int = 10
    daily: int = 7
    weekly: int = 4
    monthly: int = 12

    @property
    def daily_window(self) -> int:
        return self.daily

    @property
    def weekly_window(self) -> int:
        return self.weekly * 7

    @property
    def monthly_window(self) -> int:
        return self.monthly * 30


class CheckStatus(Enum):
    """Outcome of a single security check."""
    CLEAN = "clean"
    FINDINGS = "findings"
    CHANGED = "changed"
    NOT_APPLICABLE = "not_applicable"
    NOT_RUN = "not_run"
    FAILED = "failed"


@dataclass
class CheckResult:
    """Result of one check category for one repository."""
    status: CheckStatus
    findings: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.findings)


@dataclass(frozen=True)
class SecretFinding:
    """A potential credential leak. Never persisted verbatim."""
    repository: str
    category: str
    location: str
    context: str
    historical: bool = False

    def __repr__(self) -> str:
        # Keep matched content out of tracebacks and debug logs
        return (f"SecretFinding(repository={self.repository!r}, category={self.category!r}, "
                f"location={self.location!r}, historical={self.historical})")


@dataclass(frozen=True)
class FileFinding:
    """A file security issue."""
    repository: str
    check: str
    path: str
    detail: str = ""


@dataclass(frozen=True)
class DependencyFinding:
    """A vulnerable dependency reported by an ecosystem check."""
    ecosystem: str
    package: str
    detail: str


@dataclass
class IntegrityReport:
    """Drift between the previous checksum manifest and the current tree."""
    repository: str
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    new: List[str] = field(default_factory=list)
    baseline: bool = False
    file_count: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.modified or self.deleted or self.new)


class StageStatus(Enum):
    """Outcome of one defensive git stage."""
    DONE = "done"
    SKIPPED = "skipped"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageOutcome:
    stage: str
    status: StageStatus
    detail: str = ""


@dataclass
class RepositoryBackupResult:
    """Everything the backup run did for one repository."""
    path: str
    name: str
    snapshot: Optional[RepositorySnapshot] = None
    stages: List[StageOutcome] = field(default_factory=list)
    error: Optional[str] = None
    skipped_reason: Optional[str] = None
    backup_branch: Optional[str] = None
    pruned_branches: List[str] = field(default_factory=list)

    @property
    def actions_performed(self) -> int:
        return sum(1 for stage in self.stages if stage.status == StageStatus.DONE)

    def stage(self, name: str) -> Optional[StageOutcome]:
        for outcome in self.stages:
            if outcome.stage == name:
                return outcome
        return None


# Security check categories, in report column order
CHECK_SECRETS = "secrets"
CHECK_FILE_SECURITY = "file_security"
CHECK_DEPENDENCIES = "dependencies"
CHECK_INTEGRITY = "integrity"
SECURITY_CHECKS = [CHECK_SECRETS, CHECK_FILE_SECURITY, CHECK_DEPENDENCIES, CHECK_INTEGRITY]


@dataclass
class SecurityScanResult:
    """All security check results for one repository."""
    path: str
    name: str
    checks: Dict[str, CheckResult] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class ArchiveManifest:
    """Companion manifest of an archive.

    ``archive_size``, ``encrypted_size`` and ``checksum`` stay empty until
    encryption succeeded; a manifest with any of them empty is incomplete.
    """
    backup_set: str
    timestamp: str
    date: str
    hostname: str
    user: str
    paths: List[str]
    encrypted: bool = True
    compressed: bool = True
    archive_size: Optional[int] = None
    encrypted_size: Optional[int] = None
    checksum: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return (self.archive_size is not None and self.encrypted_size is not None
                and bool(self.checksum))

    @property
    def created_at(self) -> datetime:
        return datetime.strptime(self.timestamp, BACKUP_TIMESTAMP_FORMAT)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchiveManifest":
        def _size(value):
            if value in (None, ""):
                return None
            return int(value)

        return cls(
            backup_set=str(data["backup_set"]),
            timestamp=str(data["timestamp"]),
            date=str(data.get("date", "")),
            hostname=str(data.get("hostname", "")),
            user=str(data.get("user", "")),
            paths=list(data.get("paths", [])),
            encrypted=bool(data.get("encrypted", True)),
            compressed=bool(data.get("compressed", True)),
            archive_size=_size(data.get("archive_size")),
            encrypted_size=_size(data.get("encrypted_size")),
            checksum=data.get("checksum") or None,
        )


@dataclass
class ArchiveEntry:
    """An archive found in the archive directory."""
    path: Path
    backup_set: str
    created_at: datetime
    size: int
    manifest: Optional[ArchiveManifest] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def valid(self) -> bool:
        return self.manifest is not None and self.manifest.is_complete


@dataclass
class ArchiveResult:
    """Outcome of one backup set during an archive run."""
    backup_set: str
    archive: Optional[Path] = None
    manifest: Optional[ArchiveManifest] = None
    file_count: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.archive is not None and self.error is None
