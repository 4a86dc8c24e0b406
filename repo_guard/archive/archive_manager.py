"""Encrypted archives of configured backup sets."""

import fnmatch
import getpass
import glob
import json
import logging
import os
import re
import shutil
import socket
import tarfile
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..core.errors import ArtifactFailure, BackupEncryptionError
from ..core.models import BACKUP_TIMESTAMP_FORMAT, ArchiveEntry, ArchiveManifest, ArchiveResult
from ..core.retention import RetentionPruner
from ..utils.checksums import file_sha256
from .crypto import KeyStore, decrypt_file, encrypt_file, is_encrypted_archive, verify_file


ARCHIVE_SUFFIXES = (".tar.gz.enc", ".tar.enc", ".tar.gz", ".tar")
_ARCHIVE_RE = re.compile(
    r"^(?P<set>.+)-(?P<stamp>\d{8}_\d{6})(?P<suffix>\.tar\.gz\.enc|\.tar\.enc|\.tar\.gz|\.tar)$"
)


def archive_suffix(encrypted: bool, compressed: bool) -> str:
    suffix = ".tar.gz" if compressed else ".tar"
    return suffix + ".enc" if encrypted else suffix


@dataclass
class VerificationResult:
    """Checksum and decryption outcome for one archive.

    ``decrypt_ok`` is ``None`` for plain archives, which are verified by
    checksum only.
    """
    archive: Path
    checksum_ok: bool = False
    decrypt_ok: Optional[bool] = None
    error: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.checksum_ok and self.decrypt_ok is not False and self.error is None


class ArchiveManager:
    """Creates, verifies, restores and prunes backup-set archives."""

    def __init__(self, archive_dir: str, key_store: KeyStore, pruner: RetentionPruner,
                 temp_dir: Optional[str] = None, clock=datetime.now):
        """Initialize archive manager.

        Args:
            archive_dir: Directory holding archives and their manifests.
            key_store: Source of the archive key.
            pruner: Retention policy applied by ``prune``.
            temp_dir: Where plaintext intermediates are staged (system default if None).
            clock: Returns the current time; injectable for tests.
        """
        self.archive_dir = Path(archive_dir).expanduser()
        self.key_store = key_store
        self.pruner = pruner
        self.temp_dir = temp_dir
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # Creation

    def resolve_paths(self, patterns: Sequence[str], exclude_patterns: Sequence[str] = ()) -> List[str]:
        """Expand ``~`` and globs into a sorted list of existing files.

        Directories are walked; a file is dropped if its name or any directory
        component matches an exclusion pattern.
        """
        resolved = set()
        for pattern in patterns:
            expanded = os.path.expanduser(os.path.expandvars(pattern))
            matches = glob.glob(expanded) if glob.has_magic(expanded) else [expanded]
            for match in matches:
                if os.path.isfile(match) and not os.path.islink(match):
                    if not self._excluded(match, exclude_patterns):
                        resolved.add(os.path.abspath(match))
                elif os.path.isdir(match):
                    for root, dirs, files in os.walk(match):
                        dirs[:] = [d for d in dirs if not self._matches(d, exclude_patterns)]
                        for name in files:
                            full = os.path.join(root, name)
                            if os.path.islink(full) or self._excluded(full, exclude_patterns):
                                continue
                            resolved.add(os.path.abspath(full))
        return sorted(resolved)

    def create(self, set_name: str, set_config: Dict[str, Any]) -> ArchiveResult:
        """Archive one backup set.

        A set that resolves to no files is skipped, not failed.

        Raises:
            ArtifactFailure: If archiving or encryption fails. The plaintext
                intermediate, the partial archive and the manifest are removed.
        """
        files = self.resolve_paths(set_config.get("paths", []), set_config.get("exclude_patterns", []))
        if not files:
            self.logger.info(f"No files found for backup set: {set_name}")
            return ArchiveResult(backup_set=set_name, skipped=True)

        encrypted = bool(set_config.get("encryption", True))
        compressed = bool(set_config.get("compression", True))
        key = self.key_store.get_or_create() if encrypted else None

        now = self.clock()
        stamp = now.strftime(BACKUP_TIMESTAMP_FORMAT)
        self.archive_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        archive_path = self.archive_dir / f"{set_name}-{stamp}{archive_suffix(encrypted, compressed)}"
        manifest_path = self.manifest_path_for(archive_path)

        manifest = ArchiveManifest(
            backup_set=set_name,
            timestamp=stamp,
            date=now.astimezone().isoformat(timespec="seconds"),
            hostname=socket.gethostname(),
            user=getpass.getuser(),
            paths=files,
            encrypted=encrypted,
            compressed=compressed,
        )
        self._write_manifest(manifest_path, manifest)

        self.logger.info(f"Creating archive for {set_name} ({len(files)} files)")
        fd, plaintext = tempfile.mkstemp(prefix=f"{set_name}-{stamp}-", suffix=".tar", dir=self.temp_dir)
        os.close(fd)
        plaintext_path = Path(plaintext)
        try:
            try:
                with tarfile.open(plaintext, "w:gz" if compressed else "w") as tar:
                    for path in files:
                        tar.add(path, arcname=path.lstrip(os.sep), recursive=False)
                archive_size = plaintext_path.stat().st_size
                if encrypted:
                    encrypt_file(plaintext_path, archive_path, key)
                else:
                    shutil.copyfile(plaintext, archive_path)
                    os.chmod(archive_path, 0o600)
            finally:
                # Never leave plaintext behind, whatever happened above
                plaintext_path.unlink()
        except (OSError, tarfile.TarError, BackupEncryptionError) as e:
            for leftover in (archive_path, manifest_path):
                if leftover.exists():
                    leftover.unlink()
            self.logger.error(f"Failed to create archive for {set_name}: {e}")
            raise ArtifactFailure(f"Backup set {set_name}: {e}") from e

        manifest.archive_size = archive_size
        manifest.encrypted_size = archive_path.stat().st_size
        manifest.checksum = file_sha256(archive_path)
        self._write_manifest(manifest_path, manifest)

        self.logger.info(f"Archive created: {archive_path.name}")
        return ArchiveResult(backup_set=set_name, archive=archive_path, manifest=manifest,
                             file_count=len(files))

    # Inspection

    def list_archives(self) -> List[ArchiveEntry]:
        """Archives in the archive directory, newest first."""
        if not self.archive_dir.is_dir():
            return []
        entries = []
        for path in self.archive_dir.iterdir():
            match = _ARCHIVE_RE.match(path.name)
            if not match or not path.is_file():
                continue
            try:
                created = datetime.strptime(match.group("stamp"), BACKUP_TIMESTAMP_FORMAT)
            except ValueError:
                continue
            entries.append(ArchiveEntry(
                path=path,
                backup_set=match.group("set"),
                created_at=created,
                size=path.stat().st_size,
                manifest=self.load_manifest(path),
            ))
        entries.sort(key=lambda e: (e.created_at, e.name), reverse=True)
        return entries

    def find_archive(self, name_or_path: str) -> Path:
        """Resolve an archive given as a path or as a file name in the archive directory."""
        path = Path(name_or_path).expanduser()
        if path.is_file():
            return path
        candidate = self.archive_dir / name_or_path
        if candidate.is_file():
            return candidate
        raise ArtifactFailure(f"Archive not found: {name_or_path}")

    def load_manifest(self, archive_path: Path) -> Optional[ArchiveManifest]:
        manifest_path = self.manifest_path_for(archive_path)
        if not manifest_path.is_file():
            return None
        try:
            with open(manifest_path, "r", encoding="utf-8") as f:
                return ArchiveManifest.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Unreadable manifest {manifest_path.name}: {e}")
            return None

    @staticmethod
    def manifest_path_for(archive_path: Path) -> Path:
        name = archive_path.name
        for suffix in ARCHIVE_SUFFIXES:
            if name.endswith(suffix):
                name = name[:-len(suffix)]
                break
        return archive_path.with_name(name + ".manifest")

    def status(self) -> Dict[str, Any]:
        archives = self.list_archives()
        return {
            "key": self.key_store.info(),
            "archive_dir": str(self.archive_dir),
            "archive_dir_exists": self.archive_dir.is_dir(),
            "archive_count": len(archives),
            "total_size": sum(a.size for a in archives),
            "newest": archives[0] if archives else None,
            "incomplete": [a.name for a in archives if not a.valid],
        }

    # Verification and restore

    def verify(self, archive_path: Path) -> VerificationResult:
        """Compare the archive checksum with its manifest and test-decrypt it."""
        result = VerificationResult(archive=archive_path)
        manifest = self.load_manifest(archive_path)
        if manifest is None:
            result.error = "manifest missing"
            self.logger.error(f"Manifest not found for {archive_path.name}")
            return result
        if not manifest.checksum:
            result.error = "manifest incomplete"
            self.logger.error(f"Manifest for {archive_path.name} has no checksum")
            return result

        actual = file_sha256(archive_path)
        result.checksum_ok = actual == manifest.checksum
        if not result.checksum_ok:
            self.logger.error(f"Checksum mismatch for {archive_path.name}: expected "
                              f"{manifest.checksum}, got {actual}")

        if manifest.encrypted:
            try:
                verify_file(archive_path, self.key_store.load())
                result.decrypt_ok = True
            except ArtifactFailure as e:
                result.decrypt_ok = False
                result.error = str(e)
                self.logger.error(f"Decryption test failed for {archive_path.name}: {e}")

        if result.verified:
            self.logger.info(f"Archive verified: {archive_path.name}")
        return result

    def restore(self, archive_path: Path, output_dir: Optional[str] = None) -> Path:
        """Decrypt and unpack an archive into ``output_dir``.

        The output directory must be new or empty. On any failure it is removed
        again together with the decrypted intermediate.

        Raises:
            ArtifactFailure: If decryption or extraction fails.
        """
        if output_dir is None:
            output_dir = os.path.join(tempfile.gettempdir(),
                                      f"restored-{self.clock().strftime(BACKUP_TIMESTAMP_FORMAT)}")
        output = Path(output_dir).expanduser()
        if output.exists() and (not output.is_dir() or any(output.iterdir())):
            raise ArtifactFailure(f"Restore target is not an empty directory: {output}")
        output.mkdir(parents=True, exist_ok=True, mode=0o700)

        fd, plaintext = tempfile.mkstemp(prefix="decrypted-", suffix=".tar", dir=self.temp_dir)
        os.close(fd)
        plaintext_path = Path(plaintext)
        try:
            if is_encrypted_archive(archive_path):
                decrypt_file(archive_path, plaintext_path, self.key_store.load())
            else:
                shutil.copyfile(archive_path, plaintext_path)
            with tarfile.open(plaintext, "r:*") as tar:
                self._check_members(tar)
                tar.extractall(str(output), filter="data")
        except (OSError, tarfile.TarError, ArtifactFailure) as e:
            shutil.rmtree(output, ignore_errors=True)
            self.logger.error(f"Failed to restore {archive_path.name}: {e}")
            if isinstance(e, ArtifactFailure):
                raise
            raise ArtifactFailure(f"Failed to restore {archive_path.name}: {e}") from e
        finally:
            if plaintext_path.exists():
                plaintext_path.unlink()

        self.logger.info(f"Archive {archive_path.name} restored to {output}")
        return output

    # Retention

    def prune(self, now: Optional[datetime] = None, dry_run: bool = False) -> List[ArchiveEntry]:
        """Delete archives (and manifests) the tiered retention policy no longer keeps.

        The policy is applied to each backup set separately, oldest first
        within each set.
        """
        now = now or self.clock()
        by_set: Dict[str, List[ArchiveEntry]] = {}
        for entry in self.list_archives():
            by_set.setdefault(entry.backup_set, []).append(entry)

        expired: List[ArchiveEntry] = []
        for backup_set in sorted(by_set):
            entries = by_set[backup_set]
            invalid = [e.name for e in entries if not e.valid]
            if invalid:
                self.logger.warning(f"Backup set {backup_set} has archives with incomplete manifests: "
                                    f"{', '.join(invalid)}")
            expired.extend(self.pruner.select_expired_archives(entries, now))

        for entry in expired:
            if dry_run:
                self.logger.info(f"Would remove old archive: {entry.name}")
                continue
            entry.path.unlink()
            manifest_path = self.manifest_path_for(entry.path)
            if manifest_path.exists():
                manifest_path.unlink()
            self.logger.info(f"Removed old archive: {entry.name}")
        if expired and not dry_run:
            self.logger.info(f"Cleaned up {len(expired)} old archives")
        return expired

    # Helpers

    def _write_manifest(self, path: Path, manifest: ArchiveManifest):
        data = manifest.to_dict()
        # Blank until the archive exists
        for key in ("archive_size", "encrypted_size", "checksum"):
            if data[key] is None:
                data[key] = ""
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)

    @staticmethod
    def _check_members(tar: tarfile.TarFile):
        for member in tar.getmembers():
            name = member.name
            if name.startswith("/") or ".." in Path(name).parts:
                raise ArtifactFailure(f"Unsafe path in archive: {name}")

    @staticmethod
    def _matches(name: str, patterns: Sequence[str]) -> bool:
        return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)

    def _excluded(self, path: str, patterns: Sequence[str]) -> bool:
        return any(self._matches(part, patterns) for part in Path(path).parts)
