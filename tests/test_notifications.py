import smtplib

import pytest

from summary_hub.config import NotificationSettings
from summary_hub.services.errors import NotificationError
from summary_hub.services.notifications import (
    LogNotifier,
    NotificationDispatcher,
    SmtpNotifier,
    build_notifier,
    describe_size,
)


class ExplodingNotifier:
    def send(self, subject: str, body: str) -> None:
        raise NotificationError("relay down")


def test_build_notifier_uses_log_when_smtp_missing() -> None:
    assert isinstance(build_notifier(NotificationSettings()), LogNotifier)
    settings = NotificationSettings(smtp_host="smtp.example.org", sender="hub@example.org")
    assert isinstance(build_notifier(settings), SmtpNotifier)


def test_dispatch_delivers_in_background(dispatcher, notifier) -> None:
    future = dispatcher.dispatch("Subject", "Body")

    assert future is not None
    assert dispatcher.wait_idle()
    assert notifier.sent == [("Subject", "Body")]


def test_failures_are_logged_not_raised(caplog) -> None:
    dispatcher = NotificationDispatcher(ExplodingNotifier())
    try:
        with caplog.at_level("ERROR"):
            dispatcher.dispatch("Subject", "Body")
            assert dispatcher.wait_idle()
    finally:
        dispatcher.shutdown()

    assert "relay down" in caplog.text


def test_dispatch_after_shutdown_is_dropped(notifier) -> None:
    dispatcher = NotificationDispatcher(notifier)
    dispatcher.shutdown()

    assert dispatcher.dispatch("late", "body") is None
    assert notifier.sent == []


def test_smtp_errors_become_notification_errors(monkeypatch) -> None:
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(smtplib, "SMTP_SSL", refuse)
    notifier = SmtpNotifier(NotificationSettings(smtp_host="smtp.example.org", sender="a@b.c"))

    with pytest.raises(NotificationError):
        notifier.send("Subject", "Body")


def test_describe_size_uses_megabytes() -> None:
    assert describe_size(3 * 1048576) == "3.00 MB"
    assert describe_size(0) == "0.00 MB"
