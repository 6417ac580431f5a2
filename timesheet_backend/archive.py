from __future__ import annotations

import enum
import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .config import (
    MAX_ARCHIVE_ENTRIES,
    MAX_COMPRESSION_RATIO,
    MAX_UNCOMPRESSED_BYTES,
    SPREADSHEET_EXTS,
)
from .errors import BatchFailure, StorageError, TraversalError, ValidationError
from .security import is_bad_archive_member, resolve_in_root, safe_join
from .storage import RESULT_ZIP_SUFFIX, derived_name

logger = logging.getLogger(__name__)

# convert(input_path, template_path, output_dir) -> produced file
EntryConverter = Callable[[Path, Optional[Path], Path], Path]

_COPY_CHUNK = 64 * 1024


class BatchState(enum.Enum):
    RECEIVED = "received"
    EXTRACTING = "extracting"
    CONVERTING = "converting"
    REPACKAGING = "repackaging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ZipProcessingResult:
    result_path: Path
    result_name: str
    success_count: int
    failure_count: int
    processed_files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """Some entries failed while others converted."""
        return self.success_count > 0 and self.failure_count > 0


def is_zip_file(path: Path) -> bool:
    try:
        return zipfile.is_zipfile(path)
    except OSError:
        return False


def _check_archive_limits(infos: List[zipfile.ZipInfo], max_entries: int, max_uncompressed: int) -> None:
    if len(infos) > max_entries:
        raise ValidationError(
            f"Archive has {len(infos)} entries, maximum allowed is {max_entries}",
            reason="archive_too_many_entries",
        )
    total = 0
    for info in infos:
        total += info.file_size
        if info.compress_size and info.file_size / info.compress_size > MAX_COMPRESSION_RATIO:
            raise ValidationError(
                f"Compression ratio of {info.filename!r} exceeds {MAX_COMPRESSION_RATIO:.0f}. Possible zip bomb.",
                reason="archive_bomb",
            )
    if total > max_uncompressed:
        raise ValidationError(
            f"Uncompressed size ({total} bytes) exceeds limit ({max_uncompressed} bytes). Possible zip bomb.",
            reason="archive_bomb",
        )


def extract_zip_file(
    zip_path: Path,
    dest_dir: Path,
    *,
    max_entries: int = MAX_ARCHIVE_ENTRIES,
    max_uncompressed: int = MAX_UNCOMPRESSED_BYTES,
) -> List[Path]:
    """Extract every file entry under dest_dir.

    Rules:
    - No Zip Slip: absolute paths, drive letters, '..' (also percent-encoded
      or with backslashes) or anything resolving outside dest_dir fails the
      whole archive at that entry.
    - Entry count and declared uncompressed size are bounded up front.

    The caller owns dest_dir and must remove it on failure.
    """
    extracted: List[Path] = []
    try:
        with zipfile.ZipFile(zip_path) as zf:
            infos = zf.infolist()
            _check_archive_limits(infos, max_entries, max_uncompressed)
            for info in infos:
                name = info.filename
                if info.is_dir():
                    continue
                if is_bad_archive_member(name):
                    raise TraversalError(f"ZIP entry is outside of the target directory: {name!r}")
                dest = safe_join(dest_dir, *name.replace("\\", "/").split("/"))
                dest.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(dest, "wb") as out:
                    shutil.copyfileobj(src, out, _COPY_CHUNK)
                extracted.append(dest)
                logger.debug("Extracted: %s", name)
    except zipfile.BadZipFile as e:
        raise ValidationError(f"Invalid ZIP archive: {e}", reason="corrupt_archive") from e
    return extracted


def find_spreadsheets(directory: Path) -> List[Path]:
    return sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in SPREADSHEET_EXTS
    )


def build_result_zip(files: List[Path], zip_path: Path) -> None:
    """Package files flat into zip_path; clashing basenames get a counter."""
    used: set[str] = set()
    with zipfile.ZipFile(zip_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file in files:
            arcname = file.name
            counter = 1
            while arcname in used:
                arcname = f"{file.stem}-{counter}{file.suffix}"
                counter += 1
            used.add(arcname)
            zf.write(file, arcname)
            logger.debug("Added to ZIP: %s", arcname)


def remove_tree(directory: Optional[Path]) -> None:
    """Remove a working directory, children before parents, logging leftovers."""
    if directory is None or not directory.exists():
        return
    for path in sorted(directory.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        try:
            if path.is_dir() and not path.is_symlink():
                path.rmdir()
            else:
                path.unlink()
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
    try:
        directory.rmdir()
    except OSError as e:
        logger.warning("Could not delete extraction directory %s: %s", directory, e)


class ArchiveProcessor:
    """Converts every spreadsheet inside an uploaded batch archive.

    Extraction is all-or-nothing; conversion is per entry, so one broken
    spreadsheet does not sink the batch. Converted outputs are repackaged as
    ``<uploaded name>-result.zip`` next to the upload.
    """

    def __init__(
        self,
        converter: EntryConverter,
        *,
        work_dir: Optional[Path] = None,
        max_entries: int = MAX_ARCHIVE_ENTRIES,
        max_uncompressed: int = MAX_UNCOMPRESSED_BYTES,
    ) -> None:
        self.converter = converter
        self.work_dir = work_dir
        self.max_entries = max_entries
        self.max_uncompressed = max_uncompressed

    def process_zip_file(
        self,
        zip_path: Path,
        uploaded_filename: str,
        template_path: Optional[Path],
        output_dir: Path,
    ) -> ZipProcessingResult:
        state = BatchState.RECEIVED
        logger.info("Processing ZIP %s (%s)", uploaded_filename, state.value)

        converted: List[Path] = []
        processed: List[str] = []
        failed: List[str] = []
        extract_dir: Optional[Path] = None
        staging_dir: Optional[Path] = None
        try:
            extract_dir = Path(tempfile.mkdtemp(prefix="zip-extract-", dir=self.work_dir))
            staging_dir = Path(tempfile.mkdtemp(prefix="zip-output-", dir=self.work_dir))
            state = self._advance(uploaded_filename, BatchState.EXTRACTING)
            extract_zip_file(
                zip_path,
                extract_dir,
                max_entries=self.max_entries,
                max_uncompressed=self.max_uncompressed,
            )

            spreadsheets = find_spreadsheets(extract_dir)
            logger.info("Found %d spreadsheet(s) in %s", len(spreadsheets), uploaded_filename)
            if not spreadsheets:
                raise BatchFailure("No Excel files found in ZIP archive")

            state = self._advance(uploaded_filename, BatchState.CONVERTING)
            for index, sheet in enumerate(spreadsheets):
                entry_name = sheet.relative_to(extract_dir).as_posix()
                # One folder per entry: a/x.xlsx and b/x.xlsx must not overwrite each other.
                entry_output_dir = staging_dir / str(index)
                entry_output_dir.mkdir()
                try:
                    output = self.converter(sheet, template_path, entry_output_dir)
                    converted.append(Path(output))
                    processed.append(entry_name)
                    logger.info("Successfully converted: %s -> %s", entry_name, Path(output).name)
                except Exception as e:
                    logger.error("Failed to process Excel file %s: %s", entry_name, e)
                    failed.append(f"{entry_name} (Error: {e})")

            if not converted:
                raise BatchFailure(
                    "Failed to convert any Excel files from the ZIP archive",
                    failed_files=failed,
                )

            state = self._advance(uploaded_filename, BatchState.REPACKAGING)
            result_name = derived_name(uploaded_filename, RESULT_ZIP_SUFFIX)
            result_path = resolve_in_root(output_dir, result_name)
            try:
                build_result_zip(converted, result_path)
            except OSError as e:
                result_path.unlink(missing_ok=True)
                raise StorageError(f"Failed to write result archive {result_name}") from e

            state = self._advance(uploaded_filename, BatchState.DONE)
            logger.info(
                "Created result ZIP %s with %d converted file(s), %d failure(s)",
                result_name,
                len(converted),
                len(failed),
            )
            return ZipProcessingResult(
                result_path=result_path,
                result_name=result_name,
                success_count=len(processed),
                failure_count=len(failed),
                processed_files=processed,
                failed_files=failed,
            )
        except Exception:
            logger.warning("ZIP %s failed during %s", uploaded_filename, state.value)
            self._advance(uploaded_filename, BatchState.FAILED)
            raise
        finally:
            for output in converted:
                try:
                    output.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Could not delete intermediate file %s: %s", output, e)
            remove_tree(staging_dir)
            remove_tree(extract_dir)
            if extract_dir is not None:
                logger.debug("Cleaned up extraction directory %s", extract_dir)

    @staticmethod
    def _advance(uploaded_filename: str, state: BatchState) -> BatchState:
        logger.debug("ZIP %s -> %s", uploaded_filename, state.value)
        return state
