from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response

from . import pipelines
from .configuration import load_settings
from .errors import NotFound, ToolkitError, UploadTooLarge, ValidationError
from .job_manager import JobManager
from .models import (
    Capabilities,
    ConvertResponse,
    DeleteResponse,
    FileInfo,
    JobCreateRequest,
    JobCreateResponse,
    JobInfo,
    JobStatus,
    UploadResponse,
)
from .registry import FileRecord, JobRecord
from .services import Services, build_services, configure_logging
from .utils import guess_mime, sanitize_filename

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings)
services = build_services(settings)


def get_services() -> Services:
    return services


def get_job_manager() -> JobManager:
    return services.job_manager


def download_url(file_id: str) -> str:
    return f"/files/{file_id}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = float(services.settings.retention.sweep_interval_seconds)
    task = asyncio.create_task(services.sweeper.run_forever(interval))
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        services.job_manager.shutdown(wait=False)


app = FastAPI(title="PDF Toolkit API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.server.cors_origins),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ToolkitError)
async def toolkit_error_handler(request: Request, exc: ToolkitError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid body", "detail": jsonable_errors(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed")
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


@app.get("/healthz")
def healthcheck() -> dict:
    return {"status": "ok"}


@app.get("/api/capabilities", response_model=Capabilities)
def capabilities(svc: Services = Depends(get_services)) -> Capabilities:
    tools = svc.converter.describe()
    return Capabilities(
        office=tools["office"],
        compression=tools["compression"],
        convert_targets=list(svc.context.convert_targets),
    )


async def _stage_upload(upload: UploadFile, destination: Path, max_bytes: int, chunk_bytes: int) -> Path:
    """Stream an upload to ``destination`` while enforcing the per-file size cap."""
    written = 0
    with destination.open("wb") as buffer:
        while chunk := await upload.read(chunk_bytes):
            written += len(chunk)
            if written > max_bytes:
                raise UploadTooLarge(f"{upload.filename} exceeds the {max_bytes} byte upload limit")
            buffer.write(chunk)
    await upload.close()
    return destination


@app.post("/api/upload", response_model=UploadResponse)
async def upload_files(
    files: Optional[List[UploadFile]] = File(None),
    svc: Services = Depends(get_services),
) -> UploadResponse:
    if not files:
        raise ValidationError("No files")
    limits = svc.settings.uploads
    if len(files) > int(limits.max_files):
        raise ValidationError(f"At most {limits.max_files} files may be uploaded at once")

    created: List[FileRecord] = []
    with svc.context.scratch() as tmp:
        # Stage everything first so an oversized file registers nothing.
        staged = []
        for index, upload in enumerate(files):
            destination = tmp / f"{index}-{sanitize_filename(upload.filename or 'upload')}"
            staged.append(
                (upload, await _stage_upload(upload, destination, int(limits.max_file_bytes), int(limits.chunk_bytes)))
            )
        for upload, path in staged:
            name = upload.filename or path.name
            created.append(svc.files.register_path(name, path, guess_mime(name, upload.content_type)))
    return UploadResponse(files=[record.to_info() for record in created])


@app.post("/api/convert", response_model=ConvertResponse)
async def convert_upload(
    file: Optional[UploadFile] = File(None),
    target: Optional[str] = Form(None),
    target_query: Optional[str] = Query(None, alias="target"),
    svc: Services = Depends(get_services),
) -> ConvertResponse:
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    target_format = pipelines.validate_target(target or target_query, svc.context.convert_targets)

    limits = svc.settings.uploads
    with svc.context.scratch() as tmp:
        staged = await _stage_upload(
            file, tmp / sanitize_filename(file.filename), int(limits.max_file_bytes), int(limits.chunk_bytes)
        )
        record, tool = await run_in_threadpool(
            pipelines.convert_file, svc.context, staged, file.filename, target_format
        )
    return ConvertResponse(converted=True, download_url=download_url(record.id), tool=Path(tool).name)


def _job_response(record: JobRecord, error: Optional[ToolkitError]) -> JSONResponse:
    if not record.status.is_terminal:
        body = JobCreateResponse(job_id=record.id, status=record.status)
        status_code = 202
    elif record.status == JobStatus.FAILED:
        body = JobCreateResponse(job_id=record.id, status=record.status, error=record.error)
        status_code = error.status_code if error is not None else 500
    else:
        body = JobCreateResponse(
            job_id=record.id,
            status=record.status,
            download_url=download_url(record.output_file_id) if record.output_file_id else None,
            tool=record.tool,
        )
        status_code = 200
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.post("/api/jobs")
def create_job(payload: JobCreateRequest, svc: Services = Depends(get_services)) -> JSONResponse:
    manager = svc.job_manager
    if svc.settings.jobs.wait_for_completion:
        execution = manager.execute(payload.type, payload.input_files, payload.params)
        return _job_response(execution.record, execution.error)

    record, future = manager.submit(payload.type, payload.input_files, payload.params)
    if future.done():
        return _job_response(svc.jobs.require(record.id), future.result())
    return _job_response(record, None)


@app.get("/api/jobs", response_model=List[JobInfo])
def list_jobs(manager: JobManager = Depends(get_job_manager)) -> List[JobInfo]:
    return [record.to_info() for record in manager.list_jobs()]


@app.get("/api/jobs/{job_id}", response_model=JobInfo)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobInfo:
    record = manager.get_job(job_id)
    if record is None:
        raise NotFound("Job not found")
    return record.to_info()


@app.get("/files/{file_id}")
def download_file(file_id: str, svc: Services = Depends(get_services)) -> FileResponse:
    record = svc.files.get(file_id)
    if record is None:
        raise NotFound("File not found")
    if not svc.files.is_readable(record):
        raise NotFound("File missing on disk")
    return FileResponse(
        svc.files.path_for(record),
        media_type=record.mime or "application/octet-stream",
        filename=record.name,
    )


@app.get("/files/{file_id}/info", response_model=FileInfo)
def file_info(file_id: str, svc: Services = Depends(get_services)) -> FileInfo:
    return svc.files.require(file_id).to_info()


@app.delete("/files/{file_id}", response_model=DeleteResponse)
def delete_file(file_id: str, svc: Services = Depends(get_services)):
    if not svc.files.delete(file_id):
        return Response(status_code=204)
    return DeleteResponse(deleted=file_id)
