"""Encrypted archives of backup sets."""

from .archive_manager import ArchiveManager
from .crypto import KeyStore

__all__ = ["ArchiveManager", "KeyStore"]
