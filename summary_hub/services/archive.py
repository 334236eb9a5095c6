"""Pack a batch of uploaded files into a single ZIP artifact."""

from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Set

from .errors import StorageError
from .events import emit_file_event


LOGGER = logging.getLogger(__name__)

COMPRESSION_LEVEL = 9


class AssemblyError(StorageError):
    """Raised when the archive cannot be produced."""


@dataclass(frozen=True)
class ArchiveSource:
    """A file on disk and the name it should carry inside the archive."""

    source_path: Path
    display_name: str = ""

    @property
    def archive_name(self) -> str:
        name = Path((self.display_name or "").replace("\\", "/")).name
        return name or self.source_path.name


@dataclass
class AssemblyResult:
    path: Path
    size_bytes: int
    included: List[str] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)


def _dedupe_name(name: str, taken: Set[str]) -> str:
    if name not in taken:
        return name
    stem = Path(name).stem
    suffix = Path(name).suffix
    sequence = 2
    while f"{stem} ({sequence}){suffix}" in taken:
        sequence += 1
    return f"{stem} ({sequence}){suffix}"


class ArchiveAssembler:
    """Stream source files into a deflate-compressed ZIP container."""

    def __init__(self, *, compression_level: int = COMPRESSION_LEVEL) -> None:
        self._compression_level = compression_level

    def assemble(self, sources: Sequence[ArchiveSource], destination: Path) -> AssemblyResult:
        if not sources:
            raise AssemblyError("No files were provided for the archive")

        start = time.perf_counter()
        included: List[str] = []
        skipped: List[Path] = []
        taken: Set[str] = set()

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                destination,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self._compression_level,
            ) as bundle:
                for index, source in enumerate(sources, start=1):
                    if not source.source_path.is_file():
                        LOGGER.warning(
                            "Skipping missing archive source %s (%s/%s)",
                            source.source_path,
                            index,
                            len(sources),
                        )
                        skipped.append(source.source_path)
                        continue
                    arcname = _dedupe_name(source.archive_name, taken)
                    taken.add(arcname)
                    LOGGER.debug(
                        "Adding %s to %s as %s (%s/%s)",
                        source.source_path,
                        destination.name,
                        arcname,
                        index,
                        len(sources),
                    )
                    bundle.write(source.source_path, arcname)
                    included.append(arcname)

                if not included:
                    raise AssemblyError("None of the uploaded files could be added to the archive")
        except AssemblyError:
            self._discard(destination)
            raise
        except (OSError, zipfile.BadZipFile, ValueError) as error:
            self._discard(destination)
            raise AssemblyError(f"Archive creation failed: {error}") from error

        size_bytes = destination.stat().st_size
        emit_file_event(
            "assemble_archive",
            payload={
                "path": destination,
                "files": len(included),
                "skipped": len(skipped),
                "size": size_bytes,
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return AssemblyResult(
            path=destination,
            size_bytes=size_bytes,
            included=included,
            skipped=skipped,
        )

    @staticmethod
    def _discard(destination: Path) -> None:
        try:
            destination.unlink()
        except FileNotFoundError:
            return
        except OSError as error:
            LOGGER.error("Could not remove incomplete archive %s: %s", destination, error)
            return
        LOGGER.info("Removed incomplete archive %s", destination)


__all__ = ["ArchiveAssembler", "ArchiveSource", "AssemblyError", "AssemblyResult"]
