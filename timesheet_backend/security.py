from __future__ import annotations

import re
import uuid
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from .errors import TraversalError, ValidationError


_SESSION_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_PREFIX_UNSAFE_RE = re.compile(r"[^A-Za-z0-9]")

SESSION_PREFIX_LENGTH = 12


def normalize_session_id(session_id: str) -> str:
    """Validate and normalize a session id we issued.

    Session cookies are canonical UUID4 strings; anything else is treated as
    absent so the caller issues a fresh session.
    """
    if not isinstance(session_id, str):
        raise ValueError("Invalid session id")
    session_id = session_id.strip()
    if not _SESSION_ID_RE.match(session_id):
        raise ValueError("Invalid session id")
    return str(uuid.UUID(session_id))


def session_prefix(session_id: str, length: int = SESSION_PREFIX_LENGTH) -> str:
    """Filesystem-safe prefix scoping a stored name to its session."""
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("Session id is required", reason="missing_session")
    prefix = _PREFIX_UNSAFE_RE.sub("", session_id)[:length]
    if not prefix:
        raise ValidationError("Session id has no filesystem-safe characters", reason="missing_session")
    return prefix


def mask_session_id(session_id: str | None) -> str:
    """Shorten a session id for logs."""
    if session_id is None:
        return "null"
    if len(session_id) <= 8:
        return session_id[: min(4, len(session_id))] + "***"
    return session_id[:8] + "***"


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    Used when extracting archive entries, where nested folders are allowed.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise TraversalError(f"Path escapes {base_dir.name}: {'/'.join(parts)!r}")
    return resolved


def resolve_in_root(root: Path, filename: str) -> Path:
    """Resolve a flat filename directly under root.

    The resolved parent must be the root itself; nested or escaping names fail
    closed before any I/O happens on the destination.
    """
    if not isinstance(filename, str) or not filename or "\x00" in filename:
        raise TraversalError("Cannot store file with an empty or invalid name.")
    root = root.resolve()
    destination = (root / filename).resolve()
    if destination.parent != root:
        raise TraversalError(f"Cannot store file outside current directory: {filename!r}")
    return destination


def is_bad_archive_member(name: str) -> bool:
    """Zip Slip checks on a raw archive entry name."""
    if not name or name.strip() == "":
        return True
    for candidate in {name, unquote(name)}:
        normalized = candidate.replace("\\", "/")
        if normalized.startswith("/"):
            return True
        if ":" in normalized:
            # block drive letters / weird schemes
            return True
        if "\x00" in normalized:
            return True
        if any(part == ".." for part in PurePosixPath(normalized).parts):
            return True
    return False
