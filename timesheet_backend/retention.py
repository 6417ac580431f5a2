from __future__ import annotations

import calendar
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from .config import RETENTION_DAYS, STORAGE_ROOT, TEMPLATE_EXT, TEMPLATE_PREFIX
from .errors import ValidationError
from .security import resolve_in_root

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>0[1-9]|1[0-2])$")
_WEEKEND_FILL = PatternFill(start_color="FFD9D9D9", end_color="FFD9D9D9", fill_type="solid")

# factory(destination, period) writes a fresh template file
TemplateFactory = Callable[[Path, str], None]


@dataclass(frozen=True)
class SweepReport:
    deleted: int = 0
    errors: int = 0
    bytes_freed: int = 0
    skipped_templates: int = 0
    generated_templates: List[str] = field(default_factory=list)


def is_generated_template(filename: str) -> bool:
    """Pre-generated period templates (timesheet-<period>.xlsx) are never swept."""
    return filename.startswith(TEMPLATE_PREFIX) and filename.endswith(TEMPLATE_EXT)


def parse_period(period: str) -> tuple[int, int]:
    match = _PERIOD_RE.match((period or "").strip())
    if not match:
        raise ValidationError(f"Invalid period {period!r}, expected YYYY-MM", reason="invalid_period")
    return int(match.group("year")), int(match.group("month"))


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def template_filename(period: str) -> str:
    year, month = parse_period(period)
    return f"{TEMPLATE_PREFIX}{format_period(year, month)}{TEMPLATE_EXT}"


def write_period_template(destination: Path, period: str) -> None:
    """Blank monthly timesheet: one row per calendar day, weekends shaded."""
    year, month = parse_period(period)
    wb = Workbook()
    ws = wb.active
    ws.title = "Timesheet"

    ws["A1"] = "Timesheet"
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"] = "Period"
    ws["B2"] = format_period(year, month)

    headers = ("Date", "Day", "Task", "Hours")
    for col, title in enumerate(headers, start=1):
        cell = ws.cell(row=4, column=col, value=title)
        cell.font = Font(bold=True)

    _, days_in_month = calendar.monthrange(year, month)
    for offset in range(days_in_month):
        day = date(year, month, offset + 1)
        row = 5 + offset
        ws.cell(row=row, column=1, value=day).number_format = "yyyy-mm-dd"
        ws.cell(row=row, column=2, value=calendar.day_name[day.weekday()])
        if day.weekday() >= 5:
            for col in range(1, len(headers) + 1):
                ws.cell(row=row, column=col).fill = _WEEKEND_FILL

    ws.column_dimensions["A"].width = 12
    ws.column_dimensions["B"].width = 12
    ws.column_dimensions["C"].width = 40
    wb.save(destination)


class RetentionSweeper:
    """Reclaims disk space in the flat storage root.

    Only regular files directly under the root are considered; subdirectories
    and period templates are left alone. Sweeps never raise: a file that cannot
    be deleted is logged and counted, and the sweep moves on.
    """

    def __init__(
        self,
        root: Path = STORAGE_ROOT,
        retention_days: int = RETENTION_DAYS,
        template_factory: TemplateFactory = write_period_template,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.root = Path(root).resolve()
        self.retention_days = retention_days
        self.template_factory = template_factory
        self.clock = clock
        logger.info("File cleanup initialized. Upload location: %s, retention: %d days", self.root, retention_days)

    def cleanup_old_files(self) -> SweepReport:
        logger.info("Starting cleanup of files older than %d days", self.retention_days)
        now = self.clock()
        cutoff = (now - timedelta(days=self.retention_days)).timestamp()
        report = self._sweep(lambda mtime: mtime < cutoff)
        generated = self.pregenerate_templates(now.date())
        return SweepReport(
            deleted=report.deleted,
            errors=report.errors,
            bytes_freed=report.bytes_freed,
            skipped_templates=report.skipped_templates,
            generated_templates=generated,
        )

    def cleanup_all_files(self) -> SweepReport:
        """Delete every stored file except templates.

        Ownership lives in memory, so files left over from a previous process
        can never be served again; run this once at startup.
        """
        logger.info("Starting full cleanup of upload location")
        return self._sweep(lambda mtime: True)

    def _sweep(self, should_delete: Callable[[float], bool]) -> SweepReport:
        if not self.root.exists():
            logger.info("Upload directory does not exist, skipping cleanup: %s", self.root)
            return SweepReport()

        deleted = errors = skipped = 0
        bytes_freed = 0
        try:
            children = list(self.root.iterdir())
        except OSError as e:
            logger.error("Failed to list files in upload directory %s: %s", self.root, e)
            return SweepReport(errors=1)

        for child in children:
            try:
                if child.is_dir() or not child.is_file():
                    logger.debug("Skipping non-file entry: %s", child.name)
                    continue
                if is_generated_template(child.name):
                    skipped += 1
                    logger.debug("Skipping generated template: %s", child.name)
                    continue
                stat = child.stat()
                if not should_delete(stat.st_mtime):
                    continue
                child.unlink()
                deleted += 1
                bytes_freed += stat.st_size
                logger.debug("Deleted file: %s (size: %d bytes)", child.name, stat.st_size)
            except FileNotFoundError:
                # Removed by someone else between listing and deleting.
                continue
            except OSError as e:
                errors += 1
                logger.error("Failed to delete file %s: %s", child.name, e)

        if deleted or errors:
            logger.info("Cleanup completed. Deleted %d file(s), freed %d bytes. Errors: %d", deleted, bytes_freed, errors)
        else:
            logger.info("Cleanup completed. No files to delete.")
        return SweepReport(deleted=deleted, errors=errors, bytes_freed=bytes_freed, skipped_templates=skipped)

    def template_path_for(self, period: str) -> Path:
        return resolve_in_root(self.root, template_filename(period))

    def ensure_template(self, period: str) -> tuple[Path, bool]:
        """Create the template for period unless a file already sits at its name.

        Returns (path, created). Existing files are never rewritten, whatever
        they contain.
        """
        path = self.template_path_for(period)
        if path.exists():
            logger.debug("Template already present: %s", path.name)
            return path, False
        self.root.mkdir(parents=True, exist_ok=True)
        # Each caller writes its own temp file; os.link publishes it only if
        # nothing sits at the final name yet.
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{path.stem}-", suffix=".partial")
        os.close(fd)
        partial = Path(tmp_name)
        try:
            self.template_factory(partial, period)
            try:
                os.link(partial, path)
            except FileExistsError:
                logger.debug("Template %s was generated concurrently", path.name)
                return path, False
        finally:
            partial.unlink(missing_ok=True)
        logger.info("Generated template %s", path.name)
        return path, True

    def pregenerate_templates(self, today: Optional[date] = None) -> List[str]:
        """Warm templates for the previous, current and next month."""
        today = today or self.clock().date()
        generated: List[str] = []
        for delta in (-1, 0, 1):
            year, month = shift_month(today.year, today.month, delta)
            period = format_period(year, month)
            try:
                path, created = self.ensure_template(period)
            except Exception as e:
                logger.error("Failed to pre-generate template for %s: %s", period, e)
                continue
            if created:
                generated.append(path.name)
        if generated:
            logger.info("Pre-generated %d template(s): %s", len(generated), ", ".join(generated))
        return generated
