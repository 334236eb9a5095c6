import json
from pathlib import Path

import pytest

import summary_hub.config as config_module
from summary_hub.bootstrap import BootstrapError, Bootstrapper
from summary_hub.config import AppConfig


def _config(tmp_path: Path) -> AppConfig:
    storage_root = tmp_path / "storage"
    return AppConfig(
        storage_root=storage_root,
        upload_root=storage_root / "uploads",
        records_file=storage_root / "records.json",
        chat_file=storage_root / "chat.json",
        logs_file=storage_root / "logs.json",
    )


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    config = _config(tmp_path)

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == config.storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_creates_directories_and_empty_documents(tmp_path: Path) -> None:
    config = _config(tmp_path)

    Bootstrapper(config).initialize()

    assert config.upload_root.is_dir()
    assert config.incoming_root.is_dir()
    for document in (config.records_file, config.chat_file, config.logs_file):
        assert json.loads(document.read_text(encoding="utf-8")) == []


def test_bootstrapper_keeps_existing_records_and_clears_incoming(tmp_path: Path) -> None:
    config = _config(tmp_path)
    Bootstrapper(config).initialize()

    existing = [{"id": 4, "kind": "video-link", "storageLocator": "https://example.org/v"}]
    config.records_file.write_text(json.dumps(existing), encoding="utf-8")
    stale = config.incoming_root / "leftover.pdf"
    stale.write_bytes(b"partial")
    (config.incoming_root / "request-dir").mkdir()

    Bootstrapper(config).initialize()

    assert json.loads(config.records_file.read_text(encoding="utf-8")) == existing
    assert list(config.incoming_root.iterdir()) == []
