"""Bootstrap logic that prepares runtime directories and the JSON documents."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config
from .services.errors import StorageError
from .services.journals import JournalStore
from .services.records import RecordStore

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_documents()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        if not config_module._ensure_writable_directory(self._config.storage_root):
            raise BootstrapError(
                f"Storage directory '{self._config.storage_root}' is not writable"
            )
        for path in (self._config.upload_root, self._config.incoming_root):
            path.mkdir(parents=True, exist_ok=True)
            LOGGER.debug("Ensured directory exists: %s", path)

        incoming_root = self._config.incoming_root
        for child in incoming_root.iterdir():
            try:
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            except OSError as error:  # pragma: no cover - best effort cleanup
                LOGGER.warning("Could not remove stale upload %s: %s", child, error)
        LOGGER.debug("Cleared incoming directory: %s", incoming_root)

    def _ensure_documents(self) -> None:
        documents = (
            RecordStore(self._config),
            JournalStore(self._config.chat_file, label="chat"),
            JournalStore(self._config.logs_file, label="logs"),
        )
        for document in documents:
            try:
                created = document.ensure_exists()
            except StorageError as error:
                raise BootstrapError(str(error)) from error
            if created:
                LOGGER.info("Created empty document %s", document.path)


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
