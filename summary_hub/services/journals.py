"""Append-only chat and moderation log journals."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from .errors import NotFoundError
from .jsonfile import JsonArrayFile
from .naming import format_timestamp


LOGGER = logging.getLogger(__name__)


class JournalStore:
    """Ordered list of entries keyed by a locally unique integer id.

    Entries written before ids were introduced are numbered in file order the
    first time the journal is loaded.
    """

    def __init__(self, path: Path, *, label: str) -> None:
        self._document = JsonArrayFile(path, label=label)
        self._label = label

    @property
    def path(self) -> Path:
        return self._document.path

    def ensure_exists(self) -> bool:
        return self._document.ensure_exists()

    def _load(self) -> List[Dict[str, Any]]:
        entries = self._document.read()
        next_id = 1
        for entry in entries:
            try:
                entry_id = int(entry.get("id"))
            except (TypeError, ValueError):
                continue
            entry["id"] = entry_id
            next_id = max(next_id, entry_id + 1)
        for entry in entries:
            if not isinstance(entry.get("id"), int):
                entry["id"] = next_id
                next_id += 1
        return entries

    def list(self) -> List[Dict[str, Any]]:
        with self._document.lock:
            return self._load()

    def append(self, **fields: Any) -> Dict[str, Any]:
        with self._document.lock:
            entries = self._load()
            entry: Dict[str, Any] = {
                "id": max((item["id"] for item in entries), default=0) + 1,
                "date": format_timestamp(),
                **fields,
            }
            entries.append(entry)
            self._document.write(entries)
        LOGGER.debug("Appended %s entry %s", self._label, entry["id"])
        return entry

    def delete(self, entry_id: int) -> Dict[str, Any]:
        with self._document.lock:
            entries = self._load()
            remaining = [item for item in entries if item["id"] != entry_id]
            if len(remaining) == len(entries):
                raise NotFoundError(f"{self._label.capitalize()} entry {entry_id} not found")
            removed = next(item for item in entries if item["id"] == entry_id)
            self._document.write(remaining)
        return removed

    def clear(self) -> int:
        with self._document.lock:
            count = len(self._load())
            self._document.write([])
        LOGGER.info("Cleared %s %s entries", count, self._label)
        return count


class ModerationLog(JournalStore):
    """Audit trail of administrative actions."""

    def record(self, action: str) -> Dict[str, Any]:
        LOGGER.info("Audit: %s", action)
        return self.append(action=action)


class ChatJournal(JournalStore):
    """Public message board."""

    def post(self, author: str, message: str) -> Dict[str, Any]:
        return self.append(author=author, message=message)


__all__ = ["ChatJournal", "JournalStore", "ModerationLog"]
