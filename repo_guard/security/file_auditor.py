"""File permission and placement heuristics."""

import logging
import os
import stat
from typing import Iterable, List, Optional

from ..core.models import FileFinding
from .file_set import RepositoryFileSet


WORLD_WRITABLE = "world_writable"
SUSPICIOUS_EXECUTABLE = "suspicious_executable"
HIDDEN_CREDENTIAL_FILE = "hidden_credential_file"
LARGE_FILE = "large_file"

DATA_EXTENSIONS = {".txt", ".md", ".json", ".yml", ".yaml", ".csv", ".xml", ".ini", ".toml"}
CREDENTIAL_EXTENSIONS = {".env", ".key", ".pem", ".p12", ".pfx", ".crt", ".cer", ".der", ".jks"}


class FileSecurityAuditor:
    """Runs independent file checks and collects their findings."""

    def __init__(self, file_set: RepositoryFileSet, large_file_mb: int = 10,
                 data_extensions: Optional[Iterable[str]] = None,
                 credential_extensions: Optional[Iterable[str]] = None):
        self.file_set = file_set
        self.large_file_bytes = large_file_mb * 1024 * 1024
        self.data_extensions = set(data_extensions or DATA_EXTENSIONS)
        self.credential_extensions = set(credential_extensions or CREDENTIAL_EXTENSIONS)
        self.logger = logging.getLogger(__name__)

    def audit(self, repo_path: str) -> List[FileFinding]:
        """Return findings from every check. An empty list means clean."""
        name = os.path.basename(repo_path)
        findings: List[FileFinding] = []

        for rel_path in self._candidate_files(repo_path):
            full_path = os.path.join(repo_path, rel_path)
            try:
                st = os.lstat(full_path)
            except OSError as e:
                self.logger.debug(f"Skipping {full_path}: {e}")
                continue
            if not stat.S_ISREG(st.st_mode):
                continue

            base = os.path.basename(rel_path)
            extension = os.path.splitext(base)[1].lower()

            if st.st_mode & stat.S_IWOTH:
                findings.append(FileFinding(name, WORLD_WRITABLE, rel_path,
                                            f"mode {stat.filemode(st.st_mode)}"))

            if extension in self.data_extensions and st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
                findings.append(FileFinding(name, SUSPICIOUS_EXECUTABLE, rel_path,
                                            f"mode {stat.filemode(st.st_mode)}"))

            if base.startswith(".") and self._credential_like(base):
                findings.append(FileFinding(name, HIDDEN_CREDENTIAL_FILE, rel_path))

            if st.st_size > self.large_file_bytes:
                findings.append(FileFinding(name, LARGE_FILE, rel_path,
                                            f"{st.st_size // (1024 * 1024)}MB"))

        if findings:
            checks = sorted({f.check for f in findings})
            self.logger.warning(f"File security issues in {name}: {len(findings)} ({', '.join(checks)})")
        else:
            self.logger.info(f"No file security issues in {name}")
        return findings

    def _credential_like(self, base: str) -> bool:
        lowered = base.lower()
        return any(lowered.endswith(ext) for ext in self.credential_extensions)

    def _candidate_files(self, repo_path: str) -> List[str]:
        # Includes git-ignored files
        found = []
        for root, dirs, files in os.walk(repo_path):
            dirs[:] = [d for d in dirs if d not in self.file_set.exclude_dirs]
            for file_name in files:
                rel = os.path.relpath(os.path.join(root, file_name), repo_path).replace(os.sep, "/")
                found.append(rel)
        return sorted(found)
