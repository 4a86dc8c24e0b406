"""Run notifications: always logged, optionally emailed."""

import logging
import re
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional


class EmailReporter:
    """Sends run reports via SMTP."""

    def __init__(self, smtp_server: str = None, smtp_port: int = 587, smtp_user: str = None,
                 smtp_pass: str = None, from_address: str = None,
                 to_addresses: List[str] = None, use_tls: bool = True, timeout: int = 30):
        """Initialize email reporter.

        Args:
            smtp_server: SMTP server hostname.
            smtp_port: SMTP server port.
            smtp_user: SMTP username.
            smtp_pass: SMTP password.
            from_address: From email address.
            to_addresses: List of recipient email addresses.
            use_tls: Whether to use STARTTLS.
            timeout: Connection timeout in seconds.
        """
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.from_address = from_address
        self.to_addresses = to_addresses or []
        self.use_tls = use_tls
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def send_report(self, subject: str, text_content: str) -> bool:
        """Send a report via email.

        Returns:
            True if the email was sent.
        """
        if not self.to_addresses:
            self.logger.error("No recipient addresses configured")
            return False

        if not text_content:
            self.logger.error("No content provided for email")
            return False

        try:
            self._send_message(self._create_message(subject, text_content))
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send email report: {e}")
            return False

        self.logger.info(f"Email report sent successfully to {len(self.to_addresses)} recipients")
        return True

    def _create_message(self, subject: str, text_content: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.from_address
        msg['To'] = ', '.join(self.to_addresses)
        msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        return msg

    def _send_message(self, msg: MIMEMultipart) -> None:
        self.logger.debug(f"Connecting to SMTP server {self.smtp_server}:{self.smtp_port}")

        with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
                self.logger.debug("Started TLS encryption")

            if self.smtp_user and self.smtp_pass:
                server.login(self.smtp_user, self.smtp_pass)
                self.logger.debug(f"Authenticated as {self.smtp_user}")

            server.send_message(msg)

    def validate_configuration(self) -> List[str]:
        """Validate email configuration.

        Returns:
            List of validation errors (empty if valid).
        """
        errors = []

        if not self.smtp_server:
            errors.append("SMTP server not configured")

        if not self.from_address:
            errors.append("From address not configured")

        if not self.to_addresses:
            errors.append("No recipient addresses configured")

        email_pattern = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

        if self.from_address and not email_pattern.match(self.from_address):
            errors.append(f"Invalid from address: {self.from_address}")

        for addr in self.to_addresses:
            if not email_pattern.match(addr):
                errors.append(f"Invalid recipient address: {addr}")

        return errors

    @classmethod
    def from_config(cls, email_config: Dict[str, Any]) -> "EmailReporter":
        return cls(
            smtp_server=email_config['smtp_server'],
            smtp_port=int(email_config.get('smtp_port', 587)),
            smtp_user=email_config.get('smtp_user'),
            smtp_pass=email_config.get('smtp_pass'),
            from_address=email_config['from_address'],
            to_addresses=email_config['to_addresses'],
            use_tls=email_config.get('use_tls', True),
        )


class Notifier:
    """The notification sink of backup, scan and archive runs.

    Every notification is logged; when an email reporter is configured the
    message (and an optional report body) is also mailed.
    """

    def __init__(self, email_reporter: Optional[EmailReporter] = None,
                 subject_prefix: str = "repo-guard"):
        self.email_reporter = email_reporter
        self.subject_prefix = subject_prefix
        self.logger = logging.getLogger(__name__)
        self.sent: List[str] = []

    def notify(self, title: str, message: str, body: Optional[str] = None,
               alert: bool = False) -> bool:
        """Record a notification. Returns False only if an email was due and failed."""
        log = self.logger.warning if alert else self.logger.info
        log(f"{title}: {message}")
        self.sent.append(f"{title}: {message}")

        if self.email_reporter is None:
            return True
        subject = f"{self.subject_prefix} - {title} - {datetime.now().strftime('%Y-%m-%d')}"
        content = message if body is None else f"{message}\n\n{body}"
        return self.email_reporter.send_report(subject, content)
