"""Checksum manifests and change detection for repository files."""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..core.models import IntegrityReport
from ..utils.checksums import file_sha256
from .file_set import RepositoryFileSet


class IntegrityMonitor:
    """Compares each repository against its last checksum manifest.

    Manifests use the ``sha256sum`` text format and hold only the latest state:
    every check rewrites the manifest, so drift is reported once.
    """

    def __init__(self, file_set: RepositoryFileSet, manifest_dir: str):
        self.file_set = file_set
        self.manifest_dir = Path(manifest_dir).expanduser()
        self.logger = logging.getLogger(__name__)

    def manifest_path(self, repo_path: str) -> Path:
        # Repositories with the same directory name live under different roots
        suffix = hashlib.sha1(os.path.realpath(repo_path).encode("utf-8")).hexdigest()[:8]
        return self.manifest_dir / f"{os.path.basename(repo_path)}-{suffix}.sha256"

    def check(self, repo_path: str) -> IntegrityReport:
        """Hash the current file set, diff it against the manifest and replace the manifest."""
        name = os.path.basename(repo_path)
        manifest = self.manifest_path(repo_path)
        previous, previous_mtime = self._load_manifest(manifest)
        current = self.compute(repo_path)

        report = IntegrityReport(repository=name, file_count=len(current))
        if previous is None:
            report.baseline = True
            self.logger.info(f"Created integrity baseline for {name} ({len(current)} files)")
        else:
            for rel_path, digest in current.items():
                if rel_path in previous:
                    if previous[rel_path] != digest:
                        report.modified.append(rel_path)
                elif self._mtime(repo_path, rel_path) > previous_mtime:
                    report.new.append(rel_path)
            report.deleted = sorted(set(previous) - set(current))

        self._write_manifest(manifest, current)

        if report.has_changes:
            self.logger.warning(
                f"Integrity changes in {name}: {len(report.modified)} modified, "
                f"{len(report.deleted)} deleted, {len(report.new)} new"
            )
        return report

    def compute(self, repo_path: str) -> Dict[str, str]:
        hashes = {}
        for rel_path in self.file_set.list_files(repo_path):
            try:
                hashes[rel_path] = file_sha256(os.path.join(repo_path, rel_path))
            except OSError as e:
                self.logger.debug(f"Cannot hash {rel_path} in {repo_path}: {e}")
        return hashes

    def _load_manifest(self, manifest: Path) -> Tuple[Optional[Dict[str, str]], float]:
        """Previous hashes and manifest mtime; ``None`` when there is no usable manifest."""
        if not manifest.exists():
            return None, 0.0
        entries = {}
        try:
            with open(manifest, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.rstrip("\n")
                    if not line:
                        continue
                    digest, sep, rel_path = line.partition("  ")
                    if sep:
                        entries[rel_path] = digest
            mtime = manifest.stat().st_mtime
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Unreadable integrity manifest {manifest.name}, creating a new baseline: {e}")
            return None, 0.0
        return entries, mtime

    def _write_manifest(self, manifest: Path, hashes: Dict[str, str]):
        manifest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(manifest.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for rel_path in sorted(hashes):
                    if "\n" in rel_path:
                        continue
                    f.write(f"{hashes[rel_path]}  {rel_path}\n")
            os.replace(tmp_path, manifest)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @staticmethod
    def _mtime(repo_path: str, rel_path: str) -> float:
        try:
            return os.stat(os.path.join(repo_path, rel_path)).st_mtime
        except OSError:
            return 0.0
