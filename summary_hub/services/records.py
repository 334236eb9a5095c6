"""Record model and the JSON-backed record store."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional

from ..config import AppConfig
from .errors import StorageError
from .jsonfile import JsonArrayFile


LOGGER = logging.getLogger(__name__)


RecordKind = Literal["document", "archive", "video-link"]
VoteChoice = Literal["up", "down"]

KIND_DOCUMENT: RecordKind = "document"
KIND_ARCHIVE: RecordKind = "archive"
KIND_VIDEO: RecordKind = "video-link"
RECORD_KINDS = (KIND_DOCUMENT, KIND_ARCHIVE, KIND_VIDEO)
FILE_BACKED_KINDS = (KIND_DOCUMENT, KIND_ARCHIVE)

_LEGACY_KINDS: Dict[str, RecordKind] = {
    "pdf": KIND_DOCUMENT,
    "zip": KIND_ARCHIVE,
    "video": KIND_VIDEO,
}


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _non_negative(value: Any) -> int:
    number = _optional_int(value)
    return max(number or 0, 0)


def _legacy_locator(path_value: str) -> str:
    """Turn ``/<public folder>/<course>/<file>`` into ``<course>/<file>``."""

    parts = [part for part in path_value.replace("\\", "/").split("/") if part]
    if path_value.startswith("/") and len(parts) > 1:
        parts = parts[1:]
    return "/".join(parts)


@dataclass
class Record:
    id: int
    kind: RecordKind
    course_name: str
    title: str
    author_handle: str
    storage_locator: str
    school_year_label: str
    added_at: str
    file_name: str = ""
    description: str = ""
    size_bytes: int = 0
    year_filter: Optional[int] = None
    likes: int = 0
    dislikes: int = 0
    voter_choices: Dict[str, VoteChoice] = field(default_factory=dict)

    @property
    def is_file_backed(self) -> bool:
        return self.kind in FILE_BACKED_KINDS

    def audit_label(self) -> str:
        """Short description used in moderation log lines."""

        return (
            f"[{self.id}] [{self.year_filter} - {self.kind} - {self.title} - "
            f"{self.course_name} - {self.author_handle}]"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "courseName": self.course_name,
            "title": self.title,
            "authorHandle": self.author_handle,
            "description": self.description,
            "storageLocator": self.storage_locator,
            "fileName": self.file_name,
            "sizeBytes": self.size_bytes,
            "schoolYearLabel": self.school_year_label,
            "yearFilter": self.year_filter,
            "addedAt": self.added_at,
            "likes": self.likes,
            "dislikes": self.dislikes,
            "voterChoices": dict(self.voter_choices),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Record":
        """Build a record from the stored form, accepting historical key names."""

        record_id = _optional_int(payload.get("id"))
        if record_id is None or record_id <= 0:
            raise ValueError(f"Invalid record id: {payload.get('id')!r}")

        kind = payload.get("kind")
        if kind not in RECORD_KINDS:
            kind = _LEGACY_KINDS.get(str(payload.get("type") or "").lower())
        if kind is None:
            raise ValueError(f"Record {record_id} has an unknown kind")

        locator = payload.get("storageLocator")
        if locator is None:
            if kind == KIND_VIDEO:
                locator = payload.get("url") or ""
            else:
                locator = _legacy_locator(str(payload.get("path") or ""))

        choices = payload.get("voterChoices") or {}
        voter_choices = {
            str(voter): choice
            for voter, choice in choices.items()
            if choice in ("up", "down")
        } if isinstance(choices, dict) else {}

        return cls(
            id=record_id,
            kind=kind,
            course_name=str(payload.get("courseName", payload.get("cours")) or ""),
            title=str(payload.get("title", payload.get("titre")) or ""),
            author_handle=str(payload.get("authorHandle", payload.get("nomDiscord")) or ""),
            storage_locator=str(locator),
            school_year_label=str(payload.get("schoolYearLabel") or ""),
            added_at=str(payload.get("addedAt", payload.get("dateAjout")) or ""),
            file_name=str(payload.get("fileName", payload.get("nomFichier")) or ""),
            description=str(payload.get("description") or ""),
            size_bytes=_non_negative(payload.get("sizeBytes", payload.get("poidsFichier"))),
            year_filter=_optional_int(payload.get("yearFilter", payload.get("annee"))),
            likes=_non_negative(payload.get("likes")),
            dislikes=_non_negative(payload.get("dislikes")),
            voter_choices=voter_choices,
        )


def compute_next_id(records: Iterable[Record]) -> int:
    return max((record.id for record in records), default=0) + 1


class RecordStore:
    """Durable, newest-first list of :class:`Record` entries."""

    def __init__(self, config: AppConfig) -> None:
        self._document = JsonArrayFile(config.records_file, label="records")

    @property
    def path(self) -> Path:
        return self._document.path

    def ensure_exists(self) -> bool:
        return self._document.ensure_exists()

    def _decode(self, items: List[Dict[str, Any]]) -> List[Record]:
        records: List[Record] = []
        for item in items:
            try:
                records.append(Record.from_dict(item))
            except ValueError as error:
                raise StorageError(f"The records store holds an invalid entry: {error}") from error
        return records

    def load_all(self) -> List[Record]:
        with self._document.lock:
            return self._decode(self._document.read())

    def save_all(self, records: Iterable[Record]) -> None:
        with self._document.lock:
            self._document.write([record.to_dict() for record in records])

    def next_id(self) -> int:
        try:
            records = self.load_all()
        except StorageError as error:
            LOGGER.warning("Falling back to id 1; records store unreadable: %s", error)
            return 1
        return compute_next_id(records)

    def get(self, record_id: int) -> Optional[Record]:
        return next((record for record in self.load_all() if record.id == record_id), None)

    @contextlib.contextmanager
    def mutate(self) -> Iterator[List[Record]]:
        """Hold the store exclusively while the caller edits the loaded list.

        The list is saved when the block exits normally and discarded when it
        raises.
        """

        with self._document.lock:
            records = self._decode(self._document.read())
            yield records
            self._document.write([record.to_dict() for record in records])


__all__ = [
    "FILE_BACKED_KINDS",
    "KIND_ARCHIVE",
    "KIND_DOCUMENT",
    "KIND_VIDEO",
    "RECORD_KINDS",
    "Record",
    "RecordKind",
    "RecordStore",
    "VoteChoice",
    "compute_next_id",
]
