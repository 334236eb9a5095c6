"""Serialized access to a JSON document holding a top-level array."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator, List

from .errors import StorageError
from .events import emit_store_event


LOGGER = logging.getLogger(__name__)


class JsonArrayFile:
    """A JSON file whose content is a list of objects.

    Reads tolerate a missing file. Writes go to a sibling temporary file that
    replaces the document in one step, so readers never see a half-written
    array. ``lock`` is reentrant and is held by owners for read-modify-write
    cycles.
    """

    def __init__(self, path: Path, *, label: str) -> None:
        self._path = path
        self._label = label
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @contextlib.contextmanager
    def _track(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        start = time.perf_counter()
        event_payload: Dict[str, Any] = {"document": self._label, **payload}
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            event_payload.setdefault("status", "ok")
            emit_store_event(
                action,
                payload=event_payload,
                duration_ms=(time.perf_counter() - start) * 1000.0,
            )

    def read(self) -> List[Dict[str, Any]]:
        with self._track("read", path=self._path) as event:
            if not self._path.exists():
                event["missing"] = True
                return []
            try:
                raw = self._path.read_text(encoding="utf-8")
            except OSError as error:
                raise StorageError(f"Unable to read {self._label} store: {error}") from error
            if not raw.strip():
                return []
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as error:
                raise StorageError(f"The {self._label} store is corrupt: {error}") from error
            if not isinstance(data, list):
                raise StorageError(f"The {self._label} store must contain a JSON array")
            items: List[Dict[str, Any]] = []
            for index, item in enumerate(data):
                if isinstance(item, dict):
                    items.append(item)
                else:
                    LOGGER.warning(
                        "Skipping malformed %s entry at position %s: %r", self._label, index, item
                    )
            event["count"] = len(items)
            return items

    def write(self, items: List[Dict[str, Any]]) -> None:
        with self._track("write", path=self._path, count=len(items)):
            temp_path = self._path.with_name(f".{self._path.name}.{uuid.uuid4().hex}.tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                temp_path.write_text(
                    json.dumps(items, ensure_ascii=False, indent=2),
                    encoding="utf-8",
                )
                os.replace(temp_path, self._path)
            except OSError as error:
                with contextlib.suppress(OSError):
                    temp_path.unlink()
                raise StorageError(f"Unable to write {self._label} store: {error}") from error

    def ensure_exists(self) -> bool:
        """Create an empty document when none exists; return ``True`` if created."""

        with self.lock:
            if self._path.exists():
                return False
            self.write([])
            return True


__all__ = ["JsonArrayFile"]
