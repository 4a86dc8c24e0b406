"""Two-step quarantine of suspicious files.

Copying a file into quarantine never touches the original. Removing the
original is a separate call that only proceeds once the quarantined copy is
verified against it.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..core.errors import GuardError
from ..utils.checksums import file_sha256


logger = logging.getLogger(__name__)


class QuarantineError(GuardError):
    """A quarantine copy or removal could not be completed."""


@dataclass
class QuarantineEntry:
    original: Path
    copy: Path
    reason: str
    sha256: str
    created_at: datetime


class Quarantine:
    """Keeps copies of suspicious files under ``<directory>/<timestamp>/``."""

    def __init__(self, directory: str, clock=datetime.now):
        self.directory = Path(directory).expanduser()
        self.clock = clock

    def copy(self, path: str, reason: str) -> QuarantineEntry:
        """Copy ``path`` into a new timestamped quarantine folder with a ``.reason`` file."""
        original = Path(path).expanduser().resolve()
        if not original.is_file():
            raise QuarantineError(f"Not a regular file: {original}")

        now = self.clock()
        target_dir = self.directory / now.strftime("%Y%m%d_%H%M%S")
        target_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        target = target_dir / original.name
        if target.exists():
            raise QuarantineError(f"Quarantine copy already exists: {target}")

        shutil.copy2(str(original), str(target))
        digest = file_sha256(str(target))
        with open(str(target) + ".reason", "w", encoding="utf-8") as f:
            f.write(f"original: {original}\n")
            f.write(f"reason: {reason}\n")
            f.write(f"sha256: {digest}\n")
            f.write(f"quarantined: {now.isoformat(timespec='seconds')}\n")

        logger.warning(f"Quarantined {original} -> {target} ({reason})")
        return QuarantineEntry(original=original, copy=target, reason=reason,
                               sha256=digest, created_at=now)

    def remove_original(self, entry: QuarantineEntry) -> None:
        """Delete the original file once its quarantined copy matches it.

        Raises:
            QuarantineError: If the copy is missing or the hashes differ.
        """
        if not entry.copy.is_file():
            raise QuarantineError(f"Quarantine copy missing: {entry.copy}")
        if not entry.original.exists():
            logger.info(f"Original already gone: {entry.original}")
            return

        copy_hash = file_sha256(str(entry.copy))
        original_hash = file_sha256(str(entry.original))
        if copy_hash != entry.sha256 or original_hash != copy_hash:
            raise QuarantineError(f"Hash mismatch, refusing to remove {entry.original}")

        os.unlink(entry.original)
        logger.warning(f"Removed original {entry.original} (copy kept at {entry.copy})")

    def list_entries(self) -> List[Path]:
        """Quarantined copies, oldest folder first."""
        if not self.directory.exists():
            return []
        entries = []
        for folder in sorted(p for p in self.directory.iterdir() if p.is_dir()):
            entries.extend(sorted(p for p in folder.iterdir()
                                  if p.is_file() and p.suffix != ".reason"))
        return entries

    def load_entry(self, copy_path: str) -> Optional[QuarantineEntry]:
        """Rebuild an entry from a quarantined copy and its ``.reason`` file."""
        copy = Path(copy_path).expanduser()
        reason_file = Path(str(copy) + ".reason")
        if not reason_file.is_file():
            return None
        fields = {}
        with open(reason_file, "r", encoding="utf-8") as f:
            for line in f:
                key, sep, value = line.rstrip("\n").partition(": ")
                if sep:
                    fields[key] = value
        if "original" not in fields or "sha256" not in fields:
            return None
        created = fields.get("quarantined")
        return QuarantineEntry(
            original=Path(fields["original"]),
            copy=copy,
            reason=fields.get("reason", ""),
            sha256=fields["sha256"],
            created_at=datetime.fromisoformat(created) if created else datetime.fromtimestamp(copy.stat().st_mtime),
        )
