"""Utility helpers for consistent artifact naming."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
import os
import re
from typing import Optional

__all__ = [
    "DISPLAY_DATE_FORMAT",
    "TIMESTAMP_FORMAT",
    "build_submission_filename",
    "build_video_name",
    "format_display_date",
    "format_timestamp",
    "reserve_destination",
    "resolve_storage_directory",
    "resolve_under",
    "sanitize_path_component",
]

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
FILE_DATE_FORMAT = "%d-%m-%Y"
TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"

_UNSAFE_CHARACTERS = re.compile(r'[/\\:*?"<>|]')


def sanitize_path_component(value: str) -> str:
    """Replace characters that are not allowed in file names with ``_``."""

    return _UNSAFE_CHARACTERS.sub("_", value or "").strip()


def format_display_date(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime(DISPLAY_DATE_FORMAT)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


def build_submission_filename(
    course: str,
    title: str,
    author: str,
    *,
    extension: str,
    moment: Optional[datetime] = None,
) -> str:
    """Return ``{course}_{title}_{author}_{DD-MM-YYYY}{extension}``."""

    stamp = (moment or datetime.now()).strftime(FILE_DATE_FORMAT)
    suffix = ""
    if extension:
        suffix = extension if extension.startswith(".") else f".{extension}"
        suffix = suffix.lower()
    parts = (sanitize_path_component(course), sanitize_path_component(title), sanitize_path_component(author))
    return "_".join(parts + (stamp,)) + suffix


def build_video_name(moment: Optional[datetime] = None) -> str:
    stamp = int((moment or datetime.now()).timestamp() * 1000)
    return f"video-{stamp}"


def resolve_storage_directory(upload_root: Path, course: str, year: Optional[int] = None) -> Path:
    """Directory holding artifacts for *course*, grouped by *year* when set."""

    course_dir = sanitize_path_component(course)
    if course_dir in ("", ".", ".."):
        course_dir = "misc"
    if year:
        return upload_root / f"year_{year}" / course_dir
    return upload_root / course_dir


def resolve_under(root: Path, relative: str) -> Path:
    """Join *relative* onto *root*, refusing results that leave *root*."""

    base = root.resolve()
    candidate = (base / relative.lstrip("/\\")).resolve()
    if candidate != base and base not in candidate.parents:
        raise ValueError(f"Path '{relative}' escapes {base}")
    return candidate


def reserve_destination(directory: Path, filename: str) -> Path:
    """Create an empty ``directory / filename`` placeholder and return its path.

    The stem is numbered (``_2``, ``_3``...) when the name is taken. Creation
    uses ``O_EXCL`` so concurrent callers never receive the same path; the
    caller replaces the placeholder with the real artifact or removes it.
    """

    directory.mkdir(parents=True, exist_ok=True)
    stem = Path(filename).stem
    suffix = Path(filename).suffix
    candidate = directory / filename
    sequence = 1
    while True:
        try:
            descriptor = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            sequence += 1
            candidate = directory / f"{stem}_{sequence}{suffix}"
            continue
        os.close(descriptor)
        return candidate
