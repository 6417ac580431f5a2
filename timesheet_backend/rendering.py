"""Default spreadsheet -> PDF converter.

Production deployments may plug in an office-suite converter instead; anything
matching ``convert(input_path, template_path, output_dir) -> Path`` works.
This one renders the first worksheet as an HTML table and prints it with
headless Chromium, so it needs ``playwright install chromium`` on the host.
"""
from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup
from openpyxl import load_workbook
from playwright.sync_api import sync_playwright

from .errors import UnsupportedFormat

logger = logging.getLogger(__name__)

MAX_RENDER_ROWS = 500
MAX_RENDER_COLS = 26

# openpyxl reads OOXML workbooks only.
RENDERABLE_EXTS = {".xlsx", ".xlsm"}

_PAGE_CSS = """
body { font-family: Arial, Helvetica, sans-serif; font-size: 10pt; margin: 16mm; }
h1 { font-size: 14pt; margin: 0 0 8pt 0; }
table { border-collapse: collapse; width: 100%; }
td { border: 1px solid #999; padding: 2pt 4pt; vertical-align: top; }
td.weekend { background: #d9d9d9; }
"""


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, _dt.datetime):
        if value.time() == _dt.time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ", timespec="minutes")
    if isinstance(value, _dt.date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def workbook_to_html(path: Path, title: Optional[str] = None) -> str:
    """Render the first worksheet of an .xlsx/.xlsm file as a standalone HTML page."""
    if path.suffix.lower() not in RENDERABLE_EXTS:
        raise UnsupportedFormat(f"Cannot render {path.name}: {path.suffix or 'no extension'} is not an OOXML workbook")
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = []
        for row in ws.iter_rows(max_row=MAX_RENDER_ROWS, max_col=MAX_RENDER_COLS, values_only=True):
            rows.append(row)
        sheet_title = ws.title
    finally:
        wb.close()

    # Trim trailing empty rows/columns so the table is not padded with blanks.
    while rows and all(v is None for v in rows[-1]):
        rows.pop()
    width = 0
    for row in rows:
        for index, value in enumerate(row):
            if value is not None:
                width = max(width, index + 1)

    soup = BeautifulSoup("<!DOCTYPE html><html><head></head><body></body></html>", "html.parser")
    meta = soup.new_tag("meta", charset="utf-8")
    soup.head.append(meta)
    style = soup.new_tag("style")
    style.string = _PAGE_CSS
    soup.head.append(style)
    title_tag = soup.new_tag("title")
    title_tag.string = title or sheet_title
    soup.head.append(title_tag)

    heading = soup.new_tag("h1")
    heading.string = title or sheet_title
    soup.body.append(heading)

    table = soup.new_tag("table")
    for row in rows:
        tr = soup.new_tag("tr")
        first = row[0] if row else None
        if isinstance(first, _dt.date) and first.weekday() >= 5:
            tr["class"] = ["weekend"]
        for index in range(width):
            td = soup.new_tag("td")
            td.string = _cell_text(row[index] if index < len(row) else None)
            if tr.get("class"):
                td["class"] = ["weekend"]
            tr.append(td)
        table.append(tr)
    soup.body.append(table)
    return str(soup)


def render_pdf(html: str, destination: Path) -> Path:
    """Print HTML to an A4 PDF with headless Chromium."""
    with sync_playwright() as p:
        browser = p.chromium.launch()
        try:
            page = browser.new_page()
            page.set_content(html, wait_until="load")
            pdf_bytes = page.pdf(
                format="A4",
                print_background=True,
                margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
            )
        finally:
            browser.close()
    destination.write_bytes(pdf_bytes)
    return destination


@dataclass(frozen=True)
class SpreadsheetPdfConverter:
    """Entry converter for batch archives and single uploads."""

    output_suffix: str = "_timesheet.pdf"

    def __call__(self, input_path: Path, template_path: Optional[Path], output_dir: Path) -> Path:
        destination = output_dir / f"{input_path.stem}{self.output_suffix}"
        self.convert_to(input_path, destination)
        return destination

    def convert_to(self, input_path: Path, destination: Path) -> Path:
        html = workbook_to_html(input_path, title=input_path.stem)
        render_pdf(html, destination)
        logger.info("Rendered %s to %s", input_path.name, destination.name)
        return destination
