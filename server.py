from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from timesheet_backend.config import CLEANUP_INTERVAL_SECONDS, SESSION_COOKIE, SESSION_TTL_MINUTES
from timesheet_backend.errors import AdmissionTimeout, OwnershipError, StorageError
from timesheet_backend.retention import format_period
from timesheet_backend.security import mask_session_id
from timesheet_backend.services import Services, build_services
from timesheet_backend.storage import PDF_SUFFIX, derived_name
from timesheet_backend.validation import is_archive_name, max_upload_bytes, validate_size

logger = logging.getLogger(__name__)

_NO_STORE_HEADERS = {"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"}


class UploadResponse(BaseModel):
    stored_filename: str
    generated_files: List[str]
    is_zip_result: bool = False
    success_count: int = 0
    failure_count: int = 0
    processed_files: List[str] = []
    failed_files: List[str] = []


class GenerateRequest(BaseModel):
    period: Optional[str] = None


class GenerateResponse(BaseModel):
    filename: str
    period: str
    from_cache: bool


class StatusResponse(BaseModel):
    available_permits: int
    max_permits: int
    queued: int
    timeout_seconds: float


def _services(request: Request) -> Services:
    return request.app.state.services


def get_session_id(request: Request, response: Response) -> str:
    """Current visitor's session, issuing a cookie on first contact."""
    session_id, is_new = _services(request).sessions.resolve(request.cookies.get(SESSION_COOKIE))
    if is_new:
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=int(SESSION_TTL_MINUTES * 60) or None,
            httponly=True,
            samesite="lax",
        )
    return session_id


async def _cleanup_worker(services: Services, interval_seconds: int) -> None:
    # Age-based sweep (which also pre-warms templates) and idle-session expiry.
    while True:
        try:
            await asyncio.to_thread(services.sweeper.cleanup_old_files)
            await asyncio.to_thread(services.sessions.expire_idle)
        except Exception:
            logger.exception("Periodic cleanup failed")
        await asyncio.sleep(max(30, interval_seconds))


def create_app(
    services: Optional[Services] = None,
    *,
    cleanup_interval_seconds: Optional[int] = CLEANUP_INTERVAL_SECONDS,
) -> FastAPI:
    """Build the API around one set of services.

    cleanup_interval_seconds=None disables the periodic sweep (tests).
    """
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Ownership is in memory only, so anything on disk from a previous run
        # is unreachable: clear it before serving.
        services.storage.init()
        report = await asyncio.to_thread(services.sweeper.cleanup_all_files)
        logger.info("Startup cleanup removed %d file(s), freed %d bytes", report.deleted, report.bytes_freed)

        task = None
        if cleanup_interval_seconds is not None:
            task = asyncio.create_task(_cleanup_worker(services, cleanup_interval_seconds))
        app.state._cleanup_task = task
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="Timesheet converter", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc, exc_info=exc)
        else:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        headers = {"Cache-Control": "no-store"}
        if isinstance(exc, AdmissionTimeout) and exc.retry_after:
            headers["Retry-After"] = str(int(exc.retry_after) or 1)
        return JSONResponse(
            {"error": exc.code, "message": exc.public_message},
            status_code=exc.status_code,
            headers=headers,
        )

    @app.post("/api/upload", response_model=UploadResponse)
    def upload(
        request: Request,
        file: UploadFile = File(...),
        session_id: str = Depends(get_session_id),
    ) -> UploadResponse:
        """Store an upload and convert it.

        Runs in the worker thread pool; blocks for a conversion slot first.
        """
        svc = _services(request)
        with svc.admission.permit():
            declared_name = file.filename or ""
            # Limit read so an oversized upload is never fully buffered.
            data = file.file.read(max_upload_bytes(declared_name) + 1)
            validate_size(len(data), declared_name)

            stored = svc.storage.store(data, declared_name, session_id)
            stored_path = svc.storage.load(stored)

            if is_archive_name(declared_name):
                result = svc.archive.process_zip_file(stored_path, stored, svc.template_path, svc.storage.root)
                svc.storage.track_generated_file(stored, result.result_name, session_id)
                return UploadResponse(
                    stored_filename=stored,
                    generated_files=[result.result_name],
                    is_zip_result=True,
                    success_count=result.success_count,
                    failure_count=result.failure_count,
                    processed_files=result.processed_files,
                    failed_files=result.failed_files,
                )

            pdf_name = derived_name(stored, PDF_SUFFIX)
            pdf_path = svc.storage.load(pdf_name)
            try:
                svc.render_pdf(stored_path, pdf_path)
            except StorageError:
                pdf_path.unlink(missing_ok=True)
                raise
            except Exception as e:
                pdf_path.unlink(missing_ok=True)
                raise StorageError(f"Failed to render {stored} to PDF: {e}") from e
            svc.storage.track_generated_file(stored, pdf_name, session_id)
            return UploadResponse(stored_filename=stored, generated_files=[pdf_name], success_count=1)

    @app.get("/files/{filename}")
    def serve_file(filename: str, request: Request, session_id: str = Depends(get_session_id)) -> FileResponse:
        svc = _services(request)
        # Ownership first: an unknown name must look exactly like someone else's file.
        if not svc.storage.verify_ownership(session_id, filename):
            raise OwnershipError(f"Session {mask_session_id(session_id)} denied access to {filename!r}")
        resource = svc.storage.load_as_resource(filename)
        return FileResponse(resource.path, filename=resource.name, headers=_NO_STORE_HEADERS)

    @app.get("/api/files")
    def list_files(request: Request, session_id: str = Depends(get_session_id)) -> JSONResponse:
        files = sorted(_services(request).storage.ownership.files_for(session_id))
        return JSONResponse({"files": files}, headers={"Cache-Control": "no-store"})

    @app.post("/api/generate", response_model=GenerateResponse)
    def generate(
        request: Request,
        payload: Optional[GenerateRequest] = None,
        session_id: str = Depends(get_session_id),
    ) -> GenerateResponse:
        """Blank timesheet for a period (default: current month), reused if already on disk."""
        svc = _services(request)
        period = (payload.period if payload else None) or ""
        if not period.strip():
            today = date.today()
            period = format_period(today.year, today.month)
        with svc.admission.permit():
            path, created = svc.sweeper.ensure_template(period.strip())
            svc.storage.track_file(path.name, session_id)
        return GenerateResponse(filename=path.name, period=period.strip(), from_cache=not created)

    @app.get("/api/status", response_model=StatusResponse)
    def status(request: Request) -> StatusResponse:
        admission = _services(request).admission
        return StatusResponse(
            available_permits=admission.available_permits,
            max_permits=admission.max_permits,
            queued=admission.queued,
            timeout_seconds=admission.timeout_seconds,
        )

    @app.post("/api/session/end")
    def end_session(request: Request, response: Response) -> dict:
        raw = request.cookies.get(SESSION_COOKIE)
        deleted = 0
        if raw:
            sessions = _services(request).sessions
            session_id, is_new = sessions.resolve(raw)
            if not is_new:
                deleted = sessions.end(session_id)
        response.delete_cookie(SESSION_COOKIE)
        return {"ok": True, "deleted": deleted}

    def _require_localhost(request: Request) -> None:
        # These endpoints are destructive; restrict to local use.
        host = getattr(request.client, "host", "") if request.client else ""
        if host not in {"127.0.0.1", "::1", "localhost"}:
            raise HTTPException(status_code=403, detail="Forbidden")

    @app.post("/api/maintenance/cleanup")
    def run_cleanup(request: Request) -> dict:
        _require_localhost(request)
        report = _services(request).sweeper.cleanup_old_files()
        return {
            "ok": True,
            "deleted": report.deleted,
            "errors": report.errors,
            "bytes_freed": report.bytes_freed,
            "generated_templates": report.generated_templates,
        }

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
