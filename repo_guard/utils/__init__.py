"""Utility modules for repository guard."""

from .checksums import file_sha256
from .formatters import format_file_size, format_date, get_check_indicator, get_repository_indicator

__all__ = ["file_sha256", "format_file_size", "format_date", "get_check_indicator", "get_repository_indicator"]
