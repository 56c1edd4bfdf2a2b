"""E-mail alerts on repeated pipeline failures."""

import logging
import smtplib
import time
import traceback
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class AlertManager:
    """Count consecutive failures per pipeline and e-mail once a threshold is hit.

    Alerts for the same pipeline are rate limited by a cooldown. Sending
    problems are logged and never raised to the caller.
    """

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_use_tls: bool = False,
        smtp_user: str = "",
        smtp_password: str = "",
        email_to: str = "",
        email_from: str = "leadsync@localhost",
        failure_threshold: int = 3,
        cooldown_minutes: int = 15,
        smtp_factory: Optional[Callable[..., Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_use_tls = smtp_use_tls
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.email_to = email_to
        self.email_from = email_from
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_minutes * 60
        self._smtp_factory = smtp_factory or smtplib.SMTP
        self._clock = clock or time.monotonic

        self.failure_counts: dict[str, int] = {}
        self.last_alert_at: dict[str, float] = {}
        self.sent_count = 0

    @classmethod
    def from_settings(cls, settings) -> "AlertManager":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_use_tls=settings.smtp_use_tls,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            email_to=settings.alert_email_to,
            email_from=settings.alert_email_from,
            failure_threshold=settings.alert_failure_threshold,
            cooldown_minutes=settings.alert_cooldown_minutes,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and self.email_to)

    def record_success(self, pipeline: str):
        if self.failure_counts.get(pipeline):
            logger.debug(f"Resetting {pipeline} failure count after a clean run")
        self.failure_counts[pipeline] = 0

    def record_failure(self, pipeline: str, error: BaseException, context: Optional[dict] = None):
        """Count a failure; send an alert once the threshold is reached."""
        count = self.failure_counts.get(pipeline, 0) + 1
        self.failure_counts[pipeline] = count
        logger.warning(
            f"Recorded {pipeline} pipeline failure "
            f"({count} consecutive, threshold {self.failure_threshold})"
        )

        if count >= self.failure_threshold:
            self.send_alert(pipeline, error, context or {})

    def can_send(self, pipeline: str) -> bool:
        last = self.last_alert_at.get(pipeline)
        return last is None or (self._clock() - last) >= self.cooldown_seconds

    def send_alert(self, pipeline: str, error: BaseException, context: dict) -> bool:
        """Send one alert e-mail. Returns True if a message went out."""
        if not self.enabled:
            logger.warning(f"E-mail alerts disabled, not notifying about {pipeline} failures")
            return False

        if not self.can_send(pipeline):
            logger.debug(f"Alert cooldown active for {pipeline}")
            return False

        message = EmailMessage()
        message["Subject"] = f"[ALERT] leadsync - {pipeline} pipeline failures"
        message["From"] = self.email_from
        message["To"] = self.email_to
        message.set_content(self.format_body(pipeline, error, context))

        try:
            with self._smtp_factory(self.smtp_host, self.smtp_port, timeout=30) as smtp:
                if self.smtp_use_tls:
                    smtp.starttls()
                if self.smtp_user:
                    smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send {pipeline} alert e-mail: {e}")
            return False

        self.last_alert_at[pipeline] = self._clock()
        self.sent_count += 1
        logger.info(f"Alert e-mail sent to {self.email_to} for {pipeline} pipeline")
        return True

    def format_body(self, pipeline: str, error: BaseException, context: dict) -> str:
        count = self.failure_counts.get(pipeline, 0)
        status = getattr(error, "status_code", None)
        lines = [
            "leadsync alert",
            "==============",
            "",
            f"Pipeline: {pipeline}",
            f"Timestamp: {datetime.now(timezone.utc).isoformat()}",
            f"Consecutive failures: {count}",
            "",
            "Error",
            "-----",
            f"{type(error).__name__}: {error}",
        ]
        if status:
            lines.append(f"HTTP status: {status}")
        if error.__traceback__ is not None:
            lines.append("")
            lines.extend(traceback.format_tb(error.__traceback__))

        if context:
            lines.extend(["", "Context", "-------"])
            lines.extend(f"{key}: {value}" for key, value in context.items())

        lines.extend([
            "",
            f"The {pipeline} pipeline has failed {count} consecutive times.",
            "Check API credentials, rate limits and upstream service status.",
        ])
        return "\n".join(lines)

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "failure_threshold": self.failure_threshold,
            "failure_counts": dict(self.failure_counts),
            "alerts_sent": self.sent_count,
        }

    def reset(self):
        self.failure_counts.clear()
        self.last_alert_at.clear()
