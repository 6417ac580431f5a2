from datetime import datetime

import pytest
from bs4 import BeautifulSoup
from openpyxl import Workbook

from timesheet_backend import rendering
from timesheet_backend.errors import UnsupportedFormat
from timesheet_backend.rendering import SpreadsheetPdfConverter, workbook_to_html


def _workbook(path, rows):
    wb = Workbook()
    ws = wb.active
    ws.title = "Hours"
    for row in rows:
        ws.append(list(row))
    wb.save(path)
    return path


def test_workbook_to_html_renders_cells(tmp_path):
    path = _workbook(
        tmp_path / "march.xlsx",
        [
            ("Date", "Task", "Hours"),
            (datetime(2025, 3, 7), "Review", 7.5),
            (datetime(2025, 3, 8), "On call", 2.0),
        ],
    )

    soup = BeautifulSoup(workbook_to_html(path), "html.parser")

    assert soup.title.string == "Hours"
    rows = soup.find_all("tr")
    assert [[td.get_text() for td in tr.find_all("td")] for tr in rows] == [
        ["Date", "Task", "Hours"],
        ["2025-03-07", "Review", "7.5"],
        ["2025-03-08", "On call", "2"],
    ]
    # 2025-03-08 is a Saturday
    assert rows[2].get("class") == ["weekend"]
    assert rows[1].get("class") is None


def test_trailing_blank_cells_trimmed(tmp_path):
    path = tmp_path / "sparse.xlsx"
    wb = Workbook()
    ws = wb.active
    ws["A1"] = "only"
    ws["D10"] = None
    wb.save(path)

    soup = BeautifulSoup(workbook_to_html(path, title="Sparse"), "html.parser")

    assert soup.h1.string == "Sparse"
    assert [td.get_text() for td in soup.find_all("td")] == ["only"]


def test_converter_writes_next_to_output_dir(tmp_path, monkeypatch):
    source = _workbook(tmp_path / "april.xlsx", [("Date", "Hours")])
    rendered = []

    def fake_render(html, destination):
        rendered.append(html)
        destination.write_bytes(b"%PDF-1.4 fake")
        return destination

    monkeypatch.setattr(rendering, "render_pdf", fake_render)
    out_dir = tmp_path / "out"
    out_dir.mkdir()

    output = SpreadsheetPdfConverter()(source, None, out_dir)

    assert output == out_dir / "april_timesheet.pdf"
    assert output.read_bytes().startswith(b"%PDF")
    assert "april" in rendered[0]


def test_legacy_formats_rejected_before_rendering(tmp_path, monkeypatch):
    legacy = tmp_path / "old.xls"
    legacy.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64)
    monkeypatch.setattr(rendering, "render_pdf", lambda html, dest: pytest.fail("render_pdf called"))

    with pytest.raises(UnsupportedFormat) as exc_info:
        SpreadsheetPdfConverter()(legacy, None, tmp_path)
    assert exc_info.value.status_code == 415
    assert not (tmp_path / "old_timesheet.pdf").exists()
