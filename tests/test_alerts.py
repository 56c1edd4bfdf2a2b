"""Tests for failure alerting."""

import smtplib

from conftest import FakeClock
from leadsync.alerts import AlertManager
from leadsync.errors import RemoteAPIError


class FakeSMTP:
    """Stands in for smtplib.SMTP and records what was sent."""

    sent = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = user

    def send_message(self, message):
        if FakeSMTP.fail:
            raise smtplib.SMTPException("relay refused")
        FakeSMTP.sent.append(message)


def make_manager(clock: FakeClock, **kwargs) -> AlertManager:
    """Create an alert manager with a fake SMTP server."""
    FakeSMTP.sent = []
    FakeSMTP.fail = False
    defaults = {
        "smtp_host": "smtp.test",
        "email_to": "ops@example.com",
        "failure_threshold": 2,
        "cooldown_minutes": 15,
        "smtp_factory": FakeSMTP,
        "clock": clock,
    }
    defaults.update(kwargs)
    return AlertManager(**defaults)


class TestAlertManager:
    """Tests for thresholds and cooldowns."""

    def test_alerts_only_at_threshold(self):
        manager = make_manager(FakeClock())
        manager.record_failure("lead", RemoteAPIError("boom", 500))
        assert FakeSMTP.sent == []

        manager.record_failure("lead", RemoteAPIError("boom", 500), {"record_id": "c1"})
        assert len(FakeSMTP.sent) == 1
        message = FakeSMTP.sent[0]
        assert "lead pipeline failures" in message["Subject"]
        assert message["To"] == "ops@example.com"
        body = message.get_content()
        assert "Consecutive failures: 2" in body
        assert "HTTP status: 500" in body
        assert "record_id: c1" in body

    def test_success_resets_count(self):
        manager = make_manager(FakeClock())
        manager.record_failure("lead", RuntimeError("x"))
        manager.record_success("lead")
        manager.record_failure("lead", RuntimeError("x"))
        assert FakeSMTP.sent == []
        assert manager.failure_counts["lead"] == 1

    def test_cooldown_suppresses_repeat_alerts(self):
        clock = FakeClock()
        manager = make_manager(clock, failure_threshold=1)
        manager.record_failure("lead", RuntimeError("x"))
        manager.record_failure("lead", RuntimeError("x"))
        assert len(FakeSMTP.sent) == 1

        clock.now += 15 * 60
        manager.record_failure("lead", RuntimeError("x"))
        assert len(FakeSMTP.sent) == 2

    def test_disabled_without_smtp_host(self):
        manager = make_manager(FakeClock(), smtp_host="", failure_threshold=1)
        assert not manager.enabled
        assert not manager.send_alert("lead", RuntimeError("x"), {})

    def test_smtp_errors_are_logged_not_raised(self):
        manager = make_manager(FakeClock(), failure_threshold=1)
        FakeSMTP.fail = True
        manager.record_failure("lead", RuntimeError("x"))
        assert manager.status()["alerts_sent"] == 0
