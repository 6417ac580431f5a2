from __future__ import annotations

import io
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .config import STORAGE_ROOT
from .errors import StorageError, StorageFileNotFound, TraversalError, ValidationError
from .hashing import compute_short_hash, generate_token
from .ownership import OwnershipRegistry
from .security import is_safe_basename, mask_session_id, resolve_in_root, session_prefix
from .validation import validate_upload

logger = logging.getLogger(__name__)

# Derived artifacts keep the stored name as a prefix so every output traces
# back to the uploaded bytes: <stored>.docx, <stored>.pdf, <stored>-result.zip
DOCX_SUFFIX = ".docx"
PDF_SUFFIX = ".pdf"
RESULT_ZIP_SUFFIX = "-result.zip"


@dataclass(frozen=True)
class StoredFile:
    name: str
    path: Path
    session_id: Optional[str]
    created_at: float
    size: int


def derived_name(base_filename: str, suffix: str) -> str:
    return f"{base_filename}{suffix}"


class FileStorage:
    """Flat, session-scoped file store under a single root directory.

    Stored names look like ``<session prefix>_<uuid4>-<sha256[:16]>.<ext>``.
    """

    def __init__(self, root: Path = STORAGE_ROOT, ownership: Optional[OwnershipRegistry] = None) -> None:
        self.root = Path(root).resolve()
        self.ownership = ownership if ownership is not None else OwnershipRegistry()

    def init(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("Could not initialize storage") from e
        logger.info("Using upload location: %s", self.root)

    def store(self, data: bytes, declared_name: str, session_id: str) -> str:
        """Validate, name and persist an upload, then record its owner.

        Nothing is written unless every check passes.
        """
        if data is None:
            raise ValidationError("Failed to store empty file.", reason="file_empty")
        prefix = session_prefix(session_id)
        ext = validate_upload(io.BytesIO(data), declared_name or "")

        file_hash = compute_short_hash(data)
        token = generate_token()
        stored_name = f"{prefix}_{token}-{file_hash}{ext}"

        destination = resolve_in_root(self.root, stored_name)
        self._write_new(destination, data)
        self.ownership.track(session_id, stored_name)

        logger.info(
            "File %r uploaded successfully as %s (session: %s, hash: %s, %d bytes)",
            Path((declared_name or "").replace("\\", "/")).name,
            stored_name,
            mask_session_id(session_id),
            file_hash,
            len(data),
        )
        return stored_name

    def _write_new(self, destination: Path, data: bytes) -> None:
        try:
            with open(destination, "xb") as fh:
                fh.write(data)
        except FileExistsError as e:
            # A random-token collision; refuse rather than overwrite.
            raise StorageError(f"Refusing to overwrite existing file {destination.name}") from e
        except OSError as e:
            try:
                destination.unlink()
            except FileNotFoundError:
                pass
            raise StorageError("Failed to store file.") from e

    def load(self, filename: str) -> Path:
        return resolve_in_root(self.root, filename)

    def load_as_resource(self, filename: str) -> StoredFile:
        if not is_safe_basename(filename):
            raise StorageFileNotFound(f"Could not read file: {filename!r}")
        try:
            path = self.load(filename)
        except TraversalError as e:
            raise StorageFileNotFound(f"Could not read file: {filename!r}") from e
        try:
            stat = path.stat()
        except OSError as e:
            raise StorageFileNotFound(f"Could not read file: {filename!r}") from e
        if not path.is_file() or not os.access(path, os.R_OK):
            raise StorageFileNotFound(f"Could not read file: {filename!r}")
        return StoredFile(
            name=filename,
            path=path,
            session_id=self.ownership.owner_of(filename),
            created_at=stat.st_mtime,
            size=stat.st_size,
        )

    def load_all(self) -> List[str]:
        """Names of the regular files currently stored."""
        if not self.root.exists():
            return []
        try:
            return sorted(child.name for child in self.root.iterdir() if child.is_file())
        except OSError as e:
            raise StorageError("Failed to read stored files") from e

    def track_generated_file(self, base_filename: str, generated_filename: str, session_id: str) -> None:
        """Record ownership of an artifact derived from a stored upload."""
        if not generated_filename.startswith(base_filename):
            raise ValidationError(
                f"Derived file {generated_filename!r} does not trace back to {base_filename!r}",
                reason="untraceable_artifact",
            )
        resolve_in_root(self.root, generated_filename)
        self.ownership.track(session_id, generated_filename)
        logger.debug("Tracked generated file %s derived from %s", generated_filename, base_filename)

    def track_file(self, filename: str, session_id: str) -> None:
        """Record ownership of a stored file with no upload ancestor (period templates)."""
        resolve_in_root(self.root, filename)
        self.ownership.track(session_id, filename)

    def verify_ownership(self, session_id: Optional[str], filename: str) -> bool:
        return self.ownership.verify(session_id, filename)

    def delete_files(self, filenames: Iterable[str]) -> int:
        """Best-effort delete of stored files by name. Returns how many were removed."""
        deleted = 0
        for filename in filenames:
            try:
                path = resolve_in_root(self.root, filename)
            except TraversalError:
                logger.warning("Refusing to delete file outside upload directory: %r", filename)
                continue
            try:
                path.unlink()
                deleted += 1
                logger.debug("Deleted file %s", filename)
            except FileNotFoundError:
                logger.debug("File already deleted: %s", filename)
            except OSError as e:
                logger.error("Failed to delete file %s: %s", filename, e)
            self.ownership.remove_file(filename)
        return deleted

    def delete_all(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        self.ownership.clear()
