"""Best-effort operator notifications."""

from __future__ import annotations

import logging
import smtplib
import ssl
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from email.message import EmailMessage
from typing import Optional, Protocol, Set

from ..config import NotificationSettings
from .errors import NotificationError


LOGGER = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30.0


class Notifier(Protocol):
    """Protocol describing a notification transport."""

    def send(self, subject: str, body: str) -> None:
        """Deliver a message or raise :class:`NotificationError`."""


class LogNotifier:
    """Writes notifications to the application log."""

    def send(self, subject: str, body: str) -> None:
        LOGGER.info("Notification: %s\n%s", subject, body)


class SmtpNotifier:
    """Sends notifications by e-mail."""

    def __init__(self, settings: NotificationSettings) -> None:
        self._settings = settings

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._settings.sender
        message["To"] = self._settings.recipient or self._settings.sender
        message.set_content(body)
        return message

    def send(self, subject: str, body: str) -> None:
        settings = self._settings
        message = self._build_message(subject, body)
        try:
            if settings.use_ssl:
                client: smtplib.SMTP = smtplib.SMTP_SSL(
                    settings.smtp_host,
                    settings.smtp_port,
                    timeout=SMTP_TIMEOUT_SECONDS,
                    context=ssl.create_default_context(),
                )
            else:
                client = smtplib.SMTP(
                    settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT_SECONDS
                )
            with client:
                if not settings.use_ssl:
                    client.starttls(context=ssl.create_default_context())
                if settings.username:
                    client.login(settings.username, settings.password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as error:
            raise NotificationError(f"SMTP delivery failed: {error}") from error


def build_notifier(settings: NotificationSettings) -> Notifier:
    if settings.enabled:
        return SmtpNotifier(settings)
    LOGGER.info("SMTP is not configured; notifications will be logged only")
    return LogNotifier()


class NotificationDispatcher:
    """Fire-and-forget delivery on a dedicated worker thread.

    ``dispatch`` never raises and never waits for the transport.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notifications")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def _deliver(self, subject: str, body: str) -> None:
        try:
            self._notifier.send(subject, body)
        except NotificationError as error:
            LOGGER.error("Notification '%s' was not delivered: %s", subject, error)
            return
        LOGGER.debug("Delivered notification '%s'", subject)

    def _finished(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            LOGGER.error(
                "Notification delivery failed: %s",
                error,
                exc_info=(type(error), error, error.__traceback__),
            )

    def dispatch(self, subject: str, body: str) -> Optional[Future]:
        try:
            future = self._executor.submit(self._deliver, subject, body)
        except RuntimeError as error:
            LOGGER.warning("Dropping notification '%s': %s", subject, error)
            return None
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)
        return future

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until queued notifications are done; ``False`` on timeout."""

        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def describe_size(size_bytes: int) -> str:
    return f"{size_bytes / 1048576:.2f} MB"


__all__ = [
    "LogNotifier",
    "NotificationDispatcher",
    "Notifier",
    "SmtpNotifier",
    "build_notifier",
    "describe_size",
]
