"""Byte-signature checks for uploaded spreadsheets and archives.

Extensions are trivially forged, so the header bytes have to agree with the
claimed type. Native executables are rejected before the extension is even
considered: a renamed ``.exe`` must be reported as an executable, not as a
spreadsheet with a bad header.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO

from .config import (
    ALLOWED_UPLOAD_EXTS,
    ARCHIVE_EXTS,
    MAX_XLSX_UPLOAD_BYTES,
    MAX_ZIP_UPLOAD_BYTES,
)
from .errors import FileSizeExceeded, ValidationError

logger = logging.getLogger(__name__)

HEADER_BYTES = 8
MIN_UPLOAD_BYTES = 4

ZIP_LOCAL_HEADER = b"PK\x03\x04"
ZIP_EMPTY_ARCHIVE = b"PK\x05\x06"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_EXECUTABLE_SIGNATURES = (
    (b"MZ", "Windows executable (.exe)"),
    (b"\x7fELF", "Linux executable (ELF)"),
    (b"\xfe\xed\xfa\xce", "macOS executable (Mach-O)"),
    (b"\xfe\xed\xfa\xcf", "macOS executable (Mach-O)"),
    (b"\xce\xfa\xed\xfe", "macOS executable (Mach-O)"),
    (b"\xcf\xfa\xed\xfe", "macOS executable (Mach-O)"),
)

_ZIP_CONTAINER_EXTS = {".xlsx", ".xlsm", ".xlsb"}


def extension_of(filename: str) -> str:
    """Lower-cased extension including the dot, or "" when there is none."""
    if not filename:
        return ""
    return Path(filename.replace("\\", "/")).suffix.lower()


def is_archive_name(filename: str) -> bool:
    return extension_of(filename) in ARCHIVE_EXTS


def peek_header(stream: BinaryIO, size: int = HEADER_BYTES) -> bytes:
    """Read the first bytes without consuming them.

    Buffered readers are peeked; other streams must be seekable and are
    rewound to where they were.
    """
    peek = getattr(stream, "peek", None)
    if callable(peek):
        header = bytes(peek(size)[:size])
        # peek may return less than size once the buffer is partly consumed
        seekable = getattr(stream, "seekable", None)
        if len(header) >= size or not (callable(seekable) and seekable()):
            return header
    position = stream.tell()
    try:
        return stream.read(size)
    finally:
        stream.seek(position)


def validate_upload(stream: BinaryIO, filename: str) -> str:
    """Check that the content matches the declared file type.

    Returns the normalized extension. Raises ValidationError with a ``reason``
    on the first failed check.
    """
    header = peek_header(stream)

    if not header:
        raise ValidationError("Failed to store empty file.", reason="file_empty")
    if len(header) < MIN_UPLOAD_BYTES:
        raise ValidationError(
            f"File is too small ({len(header)} bytes) to be a valid spreadsheet or archive",
            reason="file_too_small",
        )

    for magic, label in _EXECUTABLE_SIGNATURES:
        if header.startswith(magic):
            logger.warning("Rejected upload %r: content looks like a %s", filename, label)
            raise ValidationError(
                f"File appears to be a {label}, not a spreadsheet or archive",
                reason="executable_signature",
            )

    ext = extension_of(filename)
    if ext not in ALLOWED_UPLOAD_EXTS:
        raise ValidationError(
            "File must have an Excel extension (.xls, .xlsx, .xlsm, .xlsb) or be a .zip archive",
            reason="invalid_extension",
        )

    if ext in _ZIP_CONTAINER_EXTS:
        if not header.startswith(ZIP_LOCAL_HEADER):
            raise ValidationError(
                f"File has Excel extension ({ext}) but content is not a valid ZIP/Excel file. "
                "The file may have been renamed or corrupted.",
                reason="signature_mismatch",
            )
    elif ext in ARCHIVE_EXTS:
        if not header.startswith((ZIP_LOCAL_HEADER, ZIP_EMPTY_ARCHIVE)):
            raise ValidationError(
                "File has .zip extension but content is not a ZIP archive.",
                reason="signature_mismatch",
            )
    elif ext == ".xls":
        if len(header) < len(OLE2_MAGIC) or not header.startswith(OLE2_MAGIC):
            raise ValidationError(
                "File has Excel extension (.xls) but content is not a valid OLE2/Excel file. "
                "The file may have been renamed or corrupted.",
                reason="signature_mismatch",
            )

    return ext


def validate_size(size: int, filename: str) -> None:
    """Enforce the per-type upload limit (spreadsheets are far smaller than batches)."""
    if is_archive_name(filename):
        limit = MAX_ZIP_UPLOAD_BYTES
        if size > limit:
            raise FileSizeExceeded(
                f"ZIP file size ({size / (1024 * 1024):.2f} MB) exceeds the maximum limit "
                f"of {limit / (1024 * 1024):.2f} MB."
            )
    else:
        limit = MAX_XLSX_UPLOAD_BYTES
        if size > limit:
            raise FileSizeExceeded(
                f"Excel file size ({size / 1024:.2f} KB) exceeds the maximum limit of {limit / 1024:.0f} KB."
            )
    logger.debug("Size check passed for %r: %d bytes (max: %d bytes)", filename, size, limit)


def max_upload_bytes(filename: str) -> int:
    return MAX_ZIP_UPLOAD_BYTES if is_archive_name(filename) else MAX_XLSX_UPLOAD_BYTES
