"""Submission handling: validation, artifact placement and record creation."""

from __future__ import annotations

import contextlib
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from ..config import AppConfig
from .archive import ArchiveAssembler, ArchiveSource
from .errors import StorageError, ValidationError
from .events import emit_file_event
from .naming import (
    build_submission_filename,
    build_video_name,
    format_display_date,
    reserve_destination,
    resolve_storage_directory,
)
from .notifications import NotificationDispatcher, describe_size
from .records import (
    KIND_ARCHIVE,
    KIND_DOCUMENT,
    KIND_VIDEO,
    Record,
    RecordKind,
    RecordStore,
    compute_next_id,
)


LOGGER = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".pdf": KIND_DOCUMENT, ".zip": KIND_ARCHIVE}

_FIELD_ALIASES = {
    "courseName": ("courseName", "cours"),
    "title": ("title", "titre"),
    "authorHandle": ("authorHandle", "nomDiscord"),
    "description": ("description",),
    "schoolYearLabel": ("schoolYearLabel",),
    "yearFilter": ("yearFilter", "annee"),
    "videoUrl": ("videoUrl",),
    "uploadType": ("uploadType",),
}

METADATA_FIELDS = ("courseName", "title", "authorHandle", "schoolYearLabel")


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    for alias in _FIELD_ALIASES[key]:
        value = mapping.get(alias)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    if value is None or not isinstance(value, (str, int, float)):
        return ""
    return str(value).strip()


def parse_year(value: Any) -> Optional[int]:
    """Return the integer year filter, ``None`` when absent."""

    text = _text(value)
    if not text:
        return None
    try:
        return int(text)
    except ValueError as error:
        raise ValidationError(f"yearFilter must be a whole number, got '{text}'") from error


@dataclass
class SubmissionForm:
    """Metadata accompanying any submission."""

    course_name: str = ""
    title: str = ""
    author_handle: str = ""
    school_year_label: str = ""
    description: str = ""
    year_filter: Optional[int] = None
    video_url: str = ""
    upload_type: str = ""

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SubmissionForm":
        return cls(
            course_name=_text(_lookup(mapping, "courseName")),
            title=_text(_lookup(mapping, "title")),
            author_handle=_text(_lookup(mapping, "authorHandle")),
            school_year_label=_text(_lookup(mapping, "schoolYearLabel")),
            description=_text(_lookup(mapping, "description")),
            year_filter=parse_year(_lookup(mapping, "yearFilter")),
            video_url=_text(_lookup(mapping, "videoUrl")),
            upload_type=_text(_lookup(mapping, "uploadType")).lower(),
        )

    def missing(self, fields: Iterable[str]) -> List[str]:
        values = {
            "courseName": self.course_name,
            "title": self.title,
            "authorHandle": self.author_handle,
            "schoolYearLabel": self.school_year_label,
            "videoUrl": self.video_url,
        }
        return [name for name in fields if not values.get(name)]


@dataclass
class IncomingFile:
    """An uploaded file already written to the incoming directory."""

    path: Path
    original_name: str
    size_bytes: int = 0

    @property
    def extension(self) -> str:
        return Path(self.original_name or self.path.name).suffix.lower()

    def discard(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


@dataclass
class SubmissionResult:
    record: Record
    message: str


class UploadPipeline:
    """Turn validated submissions into stored records."""

    def __init__(
        self,
        config: AppConfig,
        store: RecordStore,
        notifications: NotificationDispatcher,
        *,
        assembler: Optional[ArchiveAssembler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._store = store
        self._notifications = notifications
        self._assembler = assembler or ArchiveAssembler()
        self._clock = clock

    # ------------------------------------------------------------------
    # Submission shapes
    # ------------------------------------------------------------------
    def submit_document(
        self, form: SubmissionForm, upload: Optional[IncomingFile]
    ) -> SubmissionResult:
        if upload is None:
            raise ValidationError("No file was uploaded")
        try:
            self._require_metadata(form)
            kind = ALLOWED_EXTENSIONS.get(upload.extension)
            if kind is None:
                raise ValidationError(
                    f"Unsupported file type: {upload.extension or 'no extension'}"
                    " (only .pdf and .zip are accepted)"
                )
            moment = self._clock()
            destination = self._destination(form, upload.extension, moment)
            try:
                shutil.move(str(upload.path), str(destination))
            except OSError as error:
                with contextlib.suppress(OSError):
                    destination.unlink()
                raise StorageError(f"Unable to store the uploaded file: {error}") from error
            emit_file_event(
                "store_upload",
                payload={"path": destination, "size": upload.size_bytes, "kind": kind},
            )
            size_bytes = destination.stat().st_size
        finally:
            upload.discard()

        record = self._create_record(
            form,
            kind=kind,
            locator=self._relative(destination),
            file_name=destination.name,
            size_bytes=size_bytes,
            moment=moment,
        )
        self._notify(
            f"New summary added: {record.title}",
            self._summary_lines(record) + [f"Size: {describe_size(record.size_bytes)}"],
        )
        return SubmissionResult(
            record=record,
            message=f"Summary added by {record.author_handle}: {record.title}",
        )

    def submit_bundle(
        self, form: SubmissionForm, uploads: Sequence[IncomingFile]
    ) -> SubmissionResult:
        if not uploads:
            raise ValidationError("No files were uploaded")
        try:
            self._require_metadata(form)
            moment = self._clock()
            destination = self._destination(form, ".zip", moment)
            sources = [ArchiveSource(item.path, item.original_name) for item in uploads]
            result = self._assembler.assemble(sources, destination)
        finally:
            for item in uploads:
                try:
                    item.discard()
                except OSError as error:
                    LOGGER.error("Could not remove temporary upload %s: %s", item.path, error)

        record = self._create_record(
            form,
            kind=KIND_ARCHIVE,
            locator=self._relative(result.path),
            file_name=result.path.name,
            size_bytes=result.size_bytes,
            moment=moment,
        )
        self._notify(
            f"New assembled archive added: {record.title}",
            self._summary_lines(record)
            + [
                f"Files: {len(result.included)}",
                f"Size: {describe_size(record.size_bytes)}",
            ],
        )
        return SubmissionResult(
            record=record,
            message=(
                f"Archive created by {record.author_handle}: {record.title}"
                f" ({len(result.included)} files)"
            ),
        )

    def submit_video(self, form: SubmissionForm) -> SubmissionResult:
        if not form.video_url:
            raise ValidationError("No video link was provided")
        self._require_metadata(form)
        moment = self._clock()
        record = self._create_record(
            form,
            kind=KIND_VIDEO,
            locator=form.video_url,
            file_name=build_video_name(moment),
            size_bytes=0,
            moment=moment,
        )
        self._notify(
            f"New video added: {record.title}",
            self._summary_lines(record) + [f"Link: {record.storage_locator}"],
        )
        return SubmissionResult(
            record=record,
            message=f"Video added by {record.author_handle}: {record.title}",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _require_metadata(form: SubmissionForm) -> None:
        missing = form.missing(METADATA_FIELDS)
        if missing:
            raise ValidationError(f"Missing required information: {', '.join(missing)}")

    def _destination(self, form: SubmissionForm, extension: str, moment: datetime) -> Path:
        """Reserve the artifact path; the returned file exists and is empty."""

        directory = resolve_storage_directory(
            self._config.upload_root, form.course_name, form.year_filter
        )
        filename = build_submission_filename(
            form.course_name,
            form.title,
            form.author_handle,
            extension=extension,
            moment=moment,
        )
        try:
            return reserve_destination(directory, filename)
        except OSError as error:
            raise StorageError(f"Unable to prepare the storage directory: {error}") from error

    def _relative(self, path: Path) -> str:
        return path.resolve().relative_to(self._config.upload_root.resolve()).as_posix()

    def _create_record(
        self,
        form: SubmissionForm,
        *,
        kind: RecordKind,
        locator: str,
        file_name: str,
        size_bytes: int,
        moment: datetime,
    ) -> Record:
        try:
            with self._store.mutate() as records:
                record = Record(
                    id=compute_next_id(records),
                    kind=kind,
                    course_name=form.course_name,
                    title=form.title,
                    author_handle=form.author_handle,
                    storage_locator=locator,
                    school_year_label=form.school_year_label,
                    added_at=format_display_date(moment),
                    file_name=file_name,
                    description=form.description,
                    size_bytes=size_bytes,
                    year_filter=form.year_filter,
                )
                records.insert(0, record)
        except StorageError:
            if kind != KIND_VIDEO:
                LOGGER.error("Record not saved; artifact %s is orphaned", locator)
            raise
        LOGGER.info("Created record %s (%s) '%s'", record.id, record.kind, record.title)
        return record

    @staticmethod
    def _summary_lines(record: Record) -> List[str]:
        return [
            f"Course: {record.course_name}",
            f"Title: {record.title}",
            f"Author: {record.author_handle}",
            f"School year: {record.school_year_label}",
            f"Description: {record.description or 'No description'}",
        ]

    def _notify(self, subject: str, lines: List[str]) -> None:
        self._notifications.dispatch(subject, "\n".join(lines))


__all__ = [
    "ALLOWED_EXTENSIONS",
    "IncomingFile",
    "SubmissionForm",
    "SubmissionResult",
    "UploadPipeline",
    "parse_year",
]
