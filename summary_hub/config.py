"""Configuration loading utilities for the Summary Hub application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from .services.sessions import hash_password


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".summary_hub_write_check"

DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024
DEFAULT_MAX_BATCH_FILES = 20
DEFAULT_SESSION_TTL_SECONDS = 3600

ADMIN_PASSWORD_ENV = "SUMMARY_HUB_ADMIN_PASSWORD"
ADMIN_PASSWORD_HASH_ENV = "SUMMARY_HUB_ADMIN_PASSWORD_HASH"
SMTP_PASSWORD_ENV = "SUMMARY_HUB_SMTP_PASSWORD"
MAX_UPLOAD_BYTES_ENV = "SUMMARY_HUB_MAX_UPLOAD_BYTES"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The returned flag tells whether a
    fallback was used. When nothing can be prepared ``preferred`` is returned
    unchanged so that later steps report the failure.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_int(value: Any, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring invalid integer setting %r; using %s", value, default)
        return default


@dataclass(frozen=True)
class NotificationSettings:
    """SMTP parameters for operator notifications."""

    smtp_host: str = ""
    smtp_port: int = 465
    use_ssl: bool = True
    username: str = ""
    password: str = ""
    sender: str = ""
    recipient: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and (self.recipient or self.sender))

    @classmethod
    def from_mapping(cls, mapping: Optional[Dict[str, Any]]) -> "NotificationSettings":
        mapping = dict(mapping or {})
        password = os.environ.get(SMTP_PASSWORD_ENV) or str(mapping.get("password") or "")
        username = str(mapping.get("username") or "")
        sender = str(mapping.get("sender") or username)
        return cls(
            smtp_host=str(mapping.get("smtp_host") or ""),
            smtp_port=_coerce_int(mapping.get("smtp_port"), 465),
            use_ssl=bool(mapping.get("use_ssl", True)),
            username=username,
            password=password,
            sender=sender,
            recipient=str(mapping.get("recipient") or sender),
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and limits for the application."""

    storage_root: Path
    upload_root: Path
    records_file: Path
    chat_file: Path
    logs_file: Path
    admin_password_hash: str = ""
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_batch_files: int = DEFAULT_MAX_BATCH_FILES
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @property
    def incoming_root(self) -> Path:
        """Scratch directory for uploads that are not yet part of a record."""

        return (self.storage_root / "_incoming").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping.get("storage_root", "storage")).resolve()
        storage_fallback = Path.home() / ".summary_hub" / "storage"
        storage_root, _ = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        upload_root = (storage_root / mapping.get("upload_dir", "uploads")).resolve()
        records_file = (storage_root / mapping.get("records_file", "records.json")).resolve()
        chat_file = (storage_root / mapping.get("chat_file", "chat.json")).resolve()
        logs_file = (storage_root / mapping.get("logs_file", "logs.json")).resolve()

        admin_section = mapping.get("admin") or {}
        password_hash = os.environ.get(ADMIN_PASSWORD_HASH_ENV) or str(
            admin_section.get("password_hash") or ""
        )
        if not password_hash:
            plain_password = os.environ.get(ADMIN_PASSWORD_ENV)
            if plain_password:
                password_hash = hash_password(plain_password)
                LOGGER.info("Admin password taken from %s", ADMIN_PASSWORD_ENV)

        max_upload_bytes = _coerce_int(
            os.environ.get(MAX_UPLOAD_BYTES_ENV) or mapping.get("max_upload_bytes"),
            DEFAULT_MAX_UPLOAD_BYTES,
        )

        return cls(
            storage_root=storage_root,
            upload_root=upload_root,
            records_file=records_file,
            chat_file=chat_file,
            logs_file=logs_file,
            admin_password_hash=password_hash,
            session_ttl_seconds=_coerce_int(
                mapping.get("session_ttl_seconds"), DEFAULT_SESSION_TTL_SECONDS
            ),
            max_upload_bytes=max_upload_bytes,
            max_batch_files=_coerce_int(mapping.get("max_batch_files"), DEFAULT_MAX_BATCH_FILES),
            notifications=NotificationSettings.from_mapping(mapping.get("notifications")),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "NotificationSettings", "load_config"]
