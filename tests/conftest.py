from __future__ import annotations

import io
import os
import tempfile
import zipfile
from pathlib import Path

import pytest

# server.py builds a default app at import time; keep it out of the real temp uploads dir.
os.environ.setdefault("TIMESHEET_STORAGE_ROOT", tempfile.mkdtemp(prefix="timesheet-tests-"))

from openpyxl import Workbook  # noqa: E402

from timesheet_backend.ownership import OwnershipRegistry  # noqa: E402
from timesheet_backend.storage import FileStorage  # noqa: E402


@pytest.fixture
def make_xlsx():
    """Build real .xlsx bytes (ZIP container) with a small Timesheet sheet."""

    def _make(rows=None) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Timesheet"
        for row in rows or [("Date", "Task", "Hours"), ("2025-11-03", "Review", 7.5)]:
            ws.append(list(row))
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return _make


@pytest.fixture
def make_zip():
    def _make(entries: dict) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in entries.items():
                zf.writestr(name, data)
        return buf.getvalue()

    return _make


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    store = FileStorage(tmp_path / "uploads", OwnershipRegistry())
    store.init()
    return store


@pytest.fixture
def fake_converter():
    """Entry converter stand-in: fails on content starting with b"corrupt"."""
    calls = []

    def _convert(input_path: Path, template_path, output_dir: Path) -> Path:
        calls.append(input_path.name)
        data = input_path.read_bytes()
        if data.startswith(b"corrupt"):
            raise ValueError("not a workbook")
        output = output_dir / f"{input_path.stem}_timesheet.docx"
        output.write_bytes(b"converted:" + input_path.name.encode())
        return output

    _convert.calls = calls
    return _convert
