from __future__ import annotations

import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from summary_hub.bootstrap import Bootstrapper
from summary_hub.config import AppConfig
from summary_hub.services.journals import ChatJournal, ModerationLog
from summary_hub.services.moderation import ModerationService
from summary_hub.services.notifications import NotificationDispatcher
from summary_hub.services.records import RecordStore
from summary_hub.services.sessions import hash_password
from summary_hub.services.uploads import IncomingFile, UploadPipeline


ADMIN_PASSWORD = "correct horse"
FIXED_MOMENT = datetime(2025, 10, 14, 9, 30, 0)


class RecordingNotifier:
    """Notifier double that keeps every message it is asked to send."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, subject: str, body: str) -> None:
        with self._lock:
            self.sent.append((subject, body))


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SUMMARY_HUB_ADMIN_PASSWORD",
        "SUMMARY_HUB_ADMIN_PASSWORD_HASH",
        "SUMMARY_HUB_SMTP_PASSWORD",
        "SUMMARY_HUB_MAX_UPLOAD_BYTES",
        "SUMMARY_HUB_ROOT_PATH",
        "SUMMARY_HUB_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "upload_dir": "uploads",
            "max_upload_bytes": 1024 * 1024,
            "max_batch_files": 5,
            "session_ttl_seconds": 600,
            "admin": {"password_hash": hash_password(ADMIN_PASSWORD, iterations=1000)},
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def dispatcher(notifier: RecordingNotifier):
    dispatcher = NotificationDispatcher(notifier)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture()
def store(temp_config: AppConfig) -> RecordStore:
    return RecordStore(temp_config)


@pytest.fixture()
def pipeline(temp_config: AppConfig, store: RecordStore, dispatcher) -> UploadPipeline:
    return UploadPipeline(temp_config, store, dispatcher, clock=lambda: FIXED_MOMENT)


@pytest.fixture()
def moderation_log(temp_config: AppConfig) -> ModerationLog:
    return ModerationLog(temp_config.logs_file, label="logs")


@pytest.fixture()
def chat(temp_config: AppConfig) -> ChatJournal:
    return ChatJournal(temp_config.chat_file, label="chat")


@pytest.fixture()
def moderation(temp_config: AppConfig, store: RecordStore, moderation_log: ModerationLog):
    return ModerationService(temp_config, store, moderation_log, clock=lambda: FIXED_MOMENT)


@pytest.fixture()
def incoming(temp_config: AppConfig):
    """Factory writing a file into the incoming directory the way the web layer does."""

    counter = {"value": 0}

    def _make(original_name: str, payload: bytes = b"%PDF-1.4 sample") -> IncomingFile:
        counter["value"] += 1
        path = temp_config.incoming_root / f"staged-{counter['value']}{Path(original_name).suffix}"
        path.write_bytes(payload)
        return IncomingFile(path=path, original_name=original_name, size_bytes=len(payload))

    return _make
