"""Listing, editing, deleting and voting on stored records."""

from __future__ import annotations

import contextlib
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..config import AppConfig
from .errors import NotFoundError, StorageError, ValidationError
from .events import emit_file_event
from .journals import ModerationLog
from .naming import (
    build_submission_filename,
    reserve_destination,
    resolve_storage_directory,
    resolve_under,
)
from .records import (
    FILE_BACKED_KINDS,
    KIND_VIDEO,
    RECORD_KINDS,
    Record,
    RecordStore,
    VoteChoice,
)


LOGGER = logging.getLogger(__name__)

_VOTE_ALIASES = {"up": "up", "like": "up", "down": "down", "dislike": "down"}


def normalize_vote(value: str) -> VoteChoice:
    choice = _VOTE_ALIASES.get((value or "").strip().lower())
    if choice is None:
        raise ValidationError("vote must be 'like' or 'dislike'")
    return choice  # type: ignore[return-value]


@dataclass
class RecordChanges:
    """Fields an administrator may change; ``None`` keeps the current value."""

    kind: Optional[str] = None
    title: Optional[str] = None
    course_name: Optional[str] = None
    author_handle: Optional[str] = None
    description: Optional[str] = None
    video_url: Optional[str] = None
    year_filter: Optional[int] = None
    school_year_label: Optional[str] = None


def _keep_or_replace(current: str, value: Optional[str]) -> str:
    if value is None:
        return current
    stripped = value.strip()
    return stripped or current


def _find(records: List[Record], record_id: int) -> Record:
    for record in records:
        if record.id == record_id:
            return record
    raise NotFoundError(f"Record {record_id} not found")


class ModerationService:
    """Query and administration operations over the record store."""

    def __init__(
        self,
        config: AppConfig,
        store: RecordStore,
        log: ModerationLog,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._store = store
        self._log = log
        self._clock = clock

    def list_records(self, year: Optional[int] = None) -> List[Record]:
        records = self._store.load_all()
        if year is None:
            return records
        return [record for record in records if record.year_filter == year]

    def artifact_path(self, record: Record) -> Optional[Path]:
        """Absolute path of the record's file, ``None`` for links or unsafe locators."""

        if record.kind not in FILE_BACKED_KINDS or not record.storage_locator:
            return None
        try:
            return resolve_under(self._config.upload_root, record.storage_locator)
        except ValueError:
            LOGGER.warning(
                "Record %s points outside the upload root: %s",
                record.id,
                record.storage_locator,
            )
            return None

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------
    def edit_record(self, record_id: int, changes: RecordChanges) -> Record:
        moved: Optional[Tuple[Path, Path]] = None
        try:
            with self._store.mutate() as records:
                record = _find(records, record_id)
                before = record.audit_label()

                kind = record.kind
                if changes.kind is not None and changes.kind.strip():
                    kind = changes.kind.strip()
                    if kind not in RECORD_KINDS:
                        raise ValidationError(f"Unknown kind '{kind}'")
                    if (kind == KIND_VIDEO) != (record.kind == KIND_VIDEO):
                        raise ValidationError(
                            "A video link cannot be turned into a file record or the reverse"
                        )
                if changes.video_url is not None and changes.video_url.strip() and kind != KIND_VIDEO:
                    raise ValidationError("Only video records carry a video link")

                course = _keep_or_replace(record.course_name, changes.course_name)
                title = _keep_or_replace(record.title, changes.title)
                author = _keep_or_replace(record.author_handle, changes.author_handle)
                year = changes.year_filter if changes.year_filter is not None else record.year_filter

                if record.is_file_backed and (
                    course != record.course_name or year != record.year_filter
                ):
                    moved = self._relocate(record, course=course, title=title, author=author, year=year)

                record.kind = kind  # type: ignore[assignment]
                record.course_name = course
                record.title = title
                record.author_handle = author
                record.year_filter = year
                record.school_year_label = _keep_or_replace(
                    record.school_year_label, changes.school_year_label
                )
                if changes.description is not None:
                    record.description = changes.description.strip()
                if kind == KIND_VIDEO:
                    record.storage_locator = _keep_or_replace(
                        record.storage_locator, changes.video_url
                    )
                after = record.audit_label()
        except StorageError:
            if moved is not None:
                self._undo_move(*moved)
            raise

        self._audit(f"{before} modified -> {after}")
        return record

    def _relocate(
        self,
        record: Record,
        *,
        course: str,
        title: str,
        author: str,
        year: Optional[int],
    ) -> Optional[Tuple[Path, Path]]:
        source = self.artifact_path(record)
        if source is None or not source.is_file():
            LOGGER.warning(
                "Artifact for record %s is missing; metadata updated without moving", record.id
            )
            return None

        target_dir = resolve_storage_directory(self._config.upload_root, course, year)
        filename = build_submission_filename(
            course, title, author, extension=source.suffix, moment=self._clock()
        )
        try:
            target = reserve_destination(target_dir, filename)
        except OSError as error:
            raise StorageError(
                f"Unable to prepare the new directory of record {record.id}: {error}"
            ) from error
        try:
            shutil.move(str(source), str(target))
        except OSError as error:
            with contextlib.suppress(OSError):
                target.unlink()
            raise StorageError(f"Unable to move the file of record {record.id}: {error}") from error

        record.storage_locator = (
            target.resolve().relative_to(self._config.upload_root.resolve()).as_posix()
        )
        record.file_name = target.name
        emit_file_event(
            "relocate_artifact",
            payload={"record_id": record.id, "source": source, "target": target},
        )
        return source, target

    @staticmethod
    def _undo_move(source: Path, target: Path) -> None:
        try:
            shutil.move(str(target), str(source))
        except OSError as error:
            LOGGER.error("Could not move %s back to %s: %s", target, source, error)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete_record(self, record_id: int) -> Record:
        with self._store.mutate() as records:
            record = _find(records, record_id)
            artifact = self.artifact_path(record)
            if artifact is not None:
                try:
                    artifact.unlink()
                except FileNotFoundError:
                    LOGGER.info("Artifact for record %s was already gone", record.id)
                except OSError as error:
                    raise StorageError(
                        f"Unable to delete the file of record {record.id}: {error}"
                    ) from error
                else:
                    emit_file_event(
                        "delete_artifact", payload={"record_id": record.id, "path": artifact}
                    )
            records.remove(record)

        self._audit(f"{record.audit_label()} DELETED")
        return record

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------
    def vote(self, record_id: int, choice: str, voter: str) -> Tuple[int, int]:
        normalized = normalize_vote(choice)
        voter = (voter or "").strip()
        if not voter:
            raise ValidationError("A voter identity is required")

        with self._store.mutate() as records:
            record = _find(records, record_id)
            previous = record.voter_choices.get(voter)
            if previous == "up":
                record.likes = max(record.likes - 1, 0)
            elif previous == "down":
                record.dislikes = max(record.dislikes - 1, 0)

            if normalized == "up":
                record.likes += 1
            else:
                record.dislikes += 1
            record.voter_choices[voter] = normalized
            counts = (record.likes, record.dislikes)

        LOGGER.debug("Vote %s on record %s -> %s", normalized, record_id, counts)
        return counts

    def _audit(self, action: str) -> None:
        try:
            self._log.record(action)
        except StorageError as error:
            LOGGER.error("Could not append to the moderation log: %s (%s)", error, action)


__all__ = ["ModerationService", "RecordChanges", "normalize_vote"]
