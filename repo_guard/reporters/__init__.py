"""Run reports and notifications."""

from .email_reporter import EmailReporter, Notifier
from .report_generator import ReportGenerator

__all__ = ["EmailReporter", "Notifier", "ReportGenerator"]
