import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from convertly.config import Settings
from convertly.conversion import ConversionService, JobStatus, JobWaitTimeoutError, QueueFullError
from convertly.conversion.adapters import PandocConverter, TempStorage
from convertly.conversion.formats import (
    INPUT_FORMATS,
    OUTPUT_FORMATS,
    content_type_for,
    detect_format,
    is_input_format,
    is_output_format,
)
from convertly.logging_setup import setup_logging

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "bad_request", "message": message})


def _validate_formats(from_fmt: str, to_fmt: str) -> None:
    if not from_fmt or not to_fmt:
        raise _bad_request("missing format specification")
    if not is_input_format(from_fmt):
        raise _bad_request(f"unsupported source format: {from_fmt}")
    if not is_output_format(to_fmt):
        raise _bad_request(f"unsupported target format: {to_fmt}")


def build_service(settings: Settings) -> ConversionService:
    converter = PandocConverter(settings.pandoc_bin, timeout=settings.job_timeout_sec)
    storage = TempStorage(settings.work_dir)
    return ConversionService(
        converter,
        storage,
        workers=settings.workers,
        queue_capacity=settings.queue_capacity,
        wait_timeout=settings.wait_timeout_sec,
        retention=settings.retention_sec,
        sweep_interval=settings.sweep_interval_sec,
    )


async def _client_disconnected(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(0.5)


def create_app(service: ConversionService | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.service is None:
            setup_logging(settings.log_level, settings.log_file)
            app.state.service = build_service(settings)
        await app.state.service.start()
        try:
            yield
        finally:
            await app.state.service.stop()

    app = FastAPI(
        title="Convertly",
        version=settings.version,
        description=(
            "RESTful API for converting documents between formats with pandoc. "
            "Conversions run on a bounded background worker pool."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    @app.get("/ping")
    @app.get("/health")
    def ping() -> JSONResponse:
        """Basic health check endpoint."""
        return JSONResponse(content={"status": "ok", "ts": _utc_timestamp()}, headers=NO_STORE)

    @app.get("/api/formats")
    def formats() -> JSONResponse:
        return JSONResponse(
            content={"input": list(INPUT_FORMATS), "output": list(OUTPUT_FORMATS)},
            headers={"Cache-Control": "public, max-age=3600"},
        )

    @app.post("/api/convert")
    async def convert(request: Request) -> JSONResponse:
        """Convert a document and wait for the result.

        Accepts either multipart/form-data with a "file" part plus "from"/"to"
        fields ("from" is detected from the file extension when omitted), or a
        JSON body {from, to, content}. Blocks until the job finishes or the
        wait timeout passes; the job keeps running after a timeout and can be
        fetched later from /api/download.
        """
        service: ConversionService = app.state.service
        content: str | None = None
        input_path: str | None = None

        ct = request.headers.get("content-type", "").lower()
        if ct.startswith("multipart/form-data"):
            try:
                form = await request.form()
            except Exception as e:
                raise _bad_request(f"failed to parse form: {e}")
            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                raise _bad_request("no file provided")
            from_fmt = str(form.get("from") or "").strip() or detect_format(upload.filename or "")
            to_fmt = str(form.get("to") or "").strip()
            _validate_formats(from_fmt, to_fmt)
            try:
                input_path = await service.save_upload(
                    upload.filename or "upload",
                    upload.read,
                    max_upload_mb=settings.max_upload_mb,
                )
            except ValueError as e:
                raise HTTPException(status_code=413, detail={"code": "payload_too_large", "message": str(e)})
        else:
            try:
                data = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                raise _bad_request("invalid JSON")
            if not isinstance(data, dict):
                raise _bad_request("invalid JSON")
            from_fmt = str(data.get("from") or "").strip()
            to_fmt = str(data.get("to") or "").strip()
            content = data.get("content") or ""
            if not isinstance(content, str):
                raise _bad_request("content must be a string")
            _validate_formats(from_fmt, to_fmt)

        try:
            job = service.submit(from_fmt, to_fmt, content=content, input_path=input_path)
        except QueueFullError as e:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"error": str(e)}, headers=NO_STORE)

        try:
            result = await service.wait(job, settings.wait_timeout_sec, cancelled=_client_disconnected(request))
        except JobWaitTimeoutError as e:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"error": str(e), "job_id": job.id},
                headers=NO_STORE,
            )
        if not result.ok:
            return JSONResponse(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                content={"error": result.error, "job_id": job.id},
                headers=NO_STORE,
            )
        return JSONResponse(content={"job_id": job.id, "status": JobStatus.DONE.value}, headers=NO_STORE)

    @app.get("/api/jobs/{job_id}")
    def get_job(job_id: str) -> JSONResponse:
        service: ConversionService = app.state.service
        entry = service.get(job_id)
        if entry is None:
            raise HTTPException(status_code=404, detail={"code": "not_found", "message": "job not found"})
        # Do not expose server paths in response
        body = {k: v for k, v in entry.to_dict().items() if k != "output_path"}
        body["job_id"] = job_id
        if entry.status is JobStatus.DONE:
            body["links"] = {"download": f"/api/download?id={job_id}"}
        return JSONResponse(content=body, headers=NO_STORE)

    @app.get("/api/download")
    def download(job_id: str | None = Query(None, alias="id")) -> Response:
        if not job_id:
            raise _bad_request("missing job ID")
        service: ConversionService = app.state.service
        entry = service.get(job_id)
        if entry is None:
            raise HTTPException(status_code=404, detail={"code": "not_found", "message": "job not found"})
        if entry.status is JobStatus.FAILED:
            return JSONResponse(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                content={"error": entry.error, "job_id": job_id, "status": entry.status.value},
                headers=NO_STORE,
            )
        if entry.status is not JobStatus.DONE:
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED,
                content={"error": "job not complete", "job_id": job_id, "status": entry.status.value},
                headers=NO_STORE,
            )
        try:
            with open(entry.output_path, "rb") as f:
                data = f.read()
        except (FileNotFoundError, IsADirectoryError):
            raise HTTPException(status_code=404, detail={"code": "not_found", "message": "output file not available"})
        filename = os.path.basename(entry.output_path)
        headers = {"Content-Disposition": f"attachment; filename={filename}", **NO_STORE}
        return Response(content=data, media_type=content_type_for(entry.output_path), headers=headers)

    return app


app = create_app()


def run() -> None:
    """Run the ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_file)
    logger.info("Server starting on port %d", settings.port)
    uvicorn.run("convertly.webapi:app", host=settings.host, port=settings.port, reload=settings.reload)


if __name__ == "__main__":
    run()
