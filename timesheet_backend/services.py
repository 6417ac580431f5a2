from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .admission import AdmissionController
from .archive import ArchiveProcessor, EntryConverter
from .config import (
    MAX_CONCURRENT_REQUESTS,
    PERMIT_TIMEOUT_SECONDS,
    RETENTION_DAYS,
    SESSION_TTL_MINUTES,
    STORAGE_ROOT,
    TEMPLATE_PATH,
)
from .ownership import OwnershipRegistry
from .retention import RetentionSweeper, TemplateFactory, write_period_template
from .sessions import SessionTracker
from .storage import FileStorage

# render(input_path, destination) writes a PDF of a single stored spreadsheet
PdfRenderer = Callable[[Path, Path], Path]


@dataclass
class Services:
    """Everything the HTTP layer needs, owned by one app instance."""

    storage: FileStorage
    admission: AdmissionController
    archive: ArchiveProcessor
    sweeper: RetentionSweeper
    sessions: SessionTracker
    render_pdf: PdfRenderer
    template_path: Optional[Path] = None


def build_services(
    root: Path = STORAGE_ROOT,
    *,
    converter: Optional[EntryConverter] = None,
    render_pdf: Optional[PdfRenderer] = None,
    max_permits: int = MAX_CONCURRENT_REQUESTS,
    permit_timeout_seconds: float = PERMIT_TIMEOUT_SECONDS,
    retention_days: int = RETENTION_DAYS,
    session_ttl_minutes: float = SESSION_TTL_MINUTES,
    template_factory: TemplateFactory = write_period_template,
    template_path: Optional[Path] = TEMPLATE_PATH,
) -> Services:
    if converter is None or render_pdf is None:
        # Imported lazily: playwright is only needed when nothing is injected.
        from .rendering import SpreadsheetPdfConverter

        default = SpreadsheetPdfConverter()
        converter = converter or default
        render_pdf = render_pdf or default.convert_to

    storage = FileStorage(root, OwnershipRegistry())
    storage.init()
    return Services(
        storage=storage,
        admission=AdmissionController(max_permits, permit_timeout_seconds),
        archive=ArchiveProcessor(converter),
        sweeper=RetentionSweeper(storage.root, retention_days, template_factory),
        sessions=SessionTracker(storage, session_ttl_minutes),
        render_pdf=render_pdf,
        template_path=template_path,
    )
