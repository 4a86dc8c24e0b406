"""Formatting utilities for repository guard reports."""

from datetime import datetime
from typing import List, Optional, Tuple

from ..core.models import CheckStatus, RepositorySnapshot


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Human readable size string.
    """
    if size_bytes < 1024:
        return f"{size_bytes}B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f}KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f}MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f}GB"


def format_date(dt: Optional[datetime], short: bool = False) -> str:
    if dt is None:
        return "-"
    if short:
        return dt.strftime('%Y-%m-%d %H:%M')
    return dt.strftime('%Y-%m-%d %H:%M:%S')


def format_optional_count(value: Optional[int]) -> str:
    """Render ahead/behind style counts, where ``None`` means no upstream."""
    return "n/a" if value is None else str(value)


REPOSITORY_LEGEND: List[Tuple[str, str, str]] = [
    ("🟢", "CLEAN", "No uncommitted changes, nothing to push"),
    ("🟡", "CHANGES", "Uncommitted changes in the working tree"),
    ("🔵", "PUSH", "Local commits not yet pushed"),
    ("⚪", "INACTIVE", "No activity within the inactivity threshold"),
    ("🔴", "ERROR", "Repository could not be inspected or backed up"),
]

CHECK_LEGEND: List[Tuple[str, str, str]] = [
    ("✅", "Clean", "Check ran and found no issues"),
    ("⚠️", "Findings", "Check ran and reported issues"),
    ("🔄", "Changed", "Files changed since the last integrity manifest"),
    ("➖", "N/A", "Nothing to check (tool or manifest absent)"),
    ("⏸️", "Not run", "Check was not executed"),
    ("❌", "Failed", "Check could not complete"),
]


def get_repository_indicator(snapshot: Optional[RepositorySnapshot], inactivity_days: int = 30,
                             use_emoji: bool = True) -> str:
    """Status indicator for a repository row.

    Args:
        snapshot: Repository snapshot, or None if inspection failed.
        inactivity_days: Threshold after which a repository counts as inactive.
        use_emoji: Whether to use emoji indicators.
    """
    if snapshot is None:
        label = "ERROR"
    elif snapshot.dirty:
        label = "CHANGES"
    elif snapshot.ahead:
        label = "PUSH"
    elif snapshot.days_inactive is not None and snapshot.days_inactive > inactivity_days:
        label = "INACTIVE"
    else:
        label = "CLEAN"

    if not use_emoji:
        return label
    icon = next(icon for icon, name, _ in REPOSITORY_LEGEND if name == label)
    return f"{icon} {label}"


def get_check_indicator(status: CheckStatus, count: int = 0, use_emoji: bool = True) -> str:
    """Indicator for one security check cell. Keeps 'not run' apart from 'failed'."""
    labels = {
        CheckStatus.CLEAN: ("✅", "Clean"),
        CheckStatus.FINDINGS: ("⚠️", f"{count} found"),
        CheckStatus.CHANGED: ("🔄", f"{count} changed"),
        CheckStatus.NOT_APPLICABLE: ("➖", "N/A"),
        CheckStatus.NOT_RUN: ("⏸️", "Not run"),
        CheckStatus.FAILED: ("❌", "Failed"),
    }
    icon, text = labels[status]
    return f"{icon} {text}" if use_emoji else text


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate string to maximum length.

    Args:
        text: Text to truncate.
        max_length: Maximum length.
        suffix: Suffix to add when truncating.

    Returns:
        Truncated string.
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix
