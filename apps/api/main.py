"""FastAPI wrapper for the tagtransfer mapping pipeline."""

from __future__ import annotations

import asyncio
import importlib.metadata
import io
import json
import logging
import os
import time
import uuid
import zipfile
from typing import Annotated, Any, Callable, TypeVar

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from tagtransfer.matching.oracle import HttpChatOracle, Oracle, OracleSettings
from tagtransfer.orchestrator.models import MappingOutput
from tagtransfer.orchestrator.pipeline import MappingOptions, map_documents
from tagtransfer.utils.errors import DocumentInputError

app = FastAPI(title="tagtransfer API", version="0.1.0")
logger = logging.getLogger("tagtransfer.api")

REQUEST_ID_HEADER = "X-Tagtransfer-Request-Id"
TAGS_FAILED_HEADER = "X-Tagtransfer-Tags-Failed"

MAX_UPLOAD_ENV = "TAGTRANSFER_MAX_UPLOAD_BYTES"
TIMEOUT_ENV = "TAGTRANSFER_REQUEST_TIMEOUT_SECONDS"

_UPLOAD_LIMIT_DEFAULT = 25 * 1024 * 1024
_TIMEOUT_DEFAULT = 300.0
_READ_CHUNK = 1024 * 1024
_ZIP_MAGIC = b"PK\x03\x04"

_STATUS_BY_CODE: dict[str, int] = {
    "INVALID_ARGUMENT": 400,
    "REQUEST_TIMEOUT": 408,
    "UPLOAD_TOO_LARGE": 413,
    "INVALID_MEDIA_TYPE": 415,
    "INVALID_DOCUMENT": 422,
    "INTERNAL_ERROR": 500,
    "INVALID_CONFIGURATION": 500,
}

_Number = TypeVar("_Number", int, float)


class MapRequestError(Exception):
    """A request failure that maps onto one JSON error body."""

    def __init__(self, error_code: str, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = _STATUS_BY_CODE[error_code]
        self.message = message
        self.detail = detail


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        logger.exception("unhandled error outside of a route")
        response = _error_body(
            MapRequestError("INTERNAL_ERROR", "internal server error", path=request.url.path),
            request_id,
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/map", response_model=None)
async def map_v1(
    request: Request,
    reference: Annotated[UploadFile, File(...)],
    target: Annotated[UploadFile, File(...)],
    segmentation: Annotated[str, Form()] = "auto",
    checkbox_mode: Annotated[str, Form()] = "deterministic",
    debug: Annotated[bool, Form()] = False,
    doc_type: Annotated[str, Form()] = "document",
) -> Response | JSONResponse:
    """Map one reference onto one target.

    The response is a zip holding the tagged target, `out.report.json` and
    `api_result.json`. Unplaced tags do not fail the request; their count is
    echoed in the tags-failed header.
    """

    started = time.perf_counter()
    request_id = getattr(request.state, "request_id", None) or uuid.uuid4().hex
    stage = "options"

    try:
        options = _parse_options(segmentation, checkbox_mode, debug, doc_type)

        stage = "upload"
        limit = _env_number(MAX_UPLOAD_ENV, _UPLOAD_LIMIT_DEFAULT, int)
        reference_bytes = await _read_docx_upload(reference, "reference", limit)
        target_bytes = await _read_docx_upload(target, "target", limit)

        stage = "oracle"
        oracle = _resolve_oracle(request)

        stage = "pipeline"
        timeout = _env_number(TIMEOUT_ENV, _TIMEOUT_DEFAULT, float)
        _log_event(
            logging.INFO,
            "start",
            request_id,
            reference_bytes=len(reference_bytes),
            target_bytes=len(target_bytes),
            segmentation=options.segmentation,
            checkbox_mode=options.checkbox_mode,
            oracle=oracle is not None,
            timeout_seconds=timeout,
        )
        pipeline_started = time.perf_counter()
        output = await _run_mapping(
            reference_bytes,
            target_bytes,
            oracle,
            options,
            target_name=target.filename or "target.docx",
            timeout=timeout,
        )
        pipeline_ms = _elapsed_ms(pipeline_started)

        stage = "package"
        archive = _build_zip(output, request_id, pipeline_ms, _elapsed_ms(started))
    except MapRequestError as exc:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code=exc.error_code,
            status_code=exc.status_code,
            failure_stage=stage,
        )
        return _error_body(exc, request_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("mapping request %s failed during %s", request_id, stage)
        error = MapRequestError(
            "INTERNAL_ERROR",
            "internal server error",
            error=str(exc),
            total_ms=_elapsed_ms(started),
        )
        return _error_body(error, request_id)

    report = output.report
    _log_event(
        logging.INFO,
        "done",
        request_id,
        mode=report.mode,
        tags_applied=report.tags_applied,
        tags_failed=report.tags_failed,
        pipeline_ms=pipeline_ms,
        total_ms=_elapsed_ms(started),
    )
    return Response(
        content=archive,
        media_type="application/zip",
        headers={
            REQUEST_ID_HEADER: request_id,
            TAGS_FAILED_HEADER: str(report.tags_failed),
            "Content-Disposition": 'attachment; filename="tagtransfer_outputs.zip"',
        },
    )


def _parse_options(segmentation: str, checkbox_mode: str, debug: bool, doc_type: str) -> MappingOptions:
    try:
        return MappingOptions(
            segmentation=segmentation,
            checkbox_mode=checkbox_mode,
            debug=debug,
            doc_type=doc_type,
        )
    except ValidationError as exc:
        raise MapRequestError(
            "INVALID_ARGUMENT",
            "invalid mapping options",
            errors=[error["msg"] for error in exc.errors()],
        ) from exc


async def _run_mapping(
    reference: bytes,
    target: bytes,
    oracle: Oracle | None,
    options: MappingOptions,
    *,
    target_name: str,
    timeout: float,
) -> MappingOutput:
    job = map_documents(reference, target, oracle, options, target_name=target_name)
    try:
        return await asyncio.wait_for(job, timeout=timeout)
    except DocumentInputError as exc:
        raise MapRequestError("INVALID_DOCUMENT", str(exc), field=exc.field) from exc
    except asyncio.TimeoutError as exc:
        raise MapRequestError("REQUEST_TIMEOUT", "request timed out", timeout_seconds=timeout) from exc


def _resolve_oracle(request: Request) -> Oracle | None:
    """An oracle installed on app.state wins over TAGTRANSFER_ORACLE_* variables."""

    installed = getattr(request.app.state, "oracle", None)
    if installed is not None:
        return installed
    try:
        settings = OracleSettings.from_env()
    except ValueError as exc:
        raise MapRequestError("INVALID_CONFIGURATION", str(exc)) from exc
    if settings is None:
        return None
    return HttpChatOracle(settings)


async def _read_docx_upload(upload: UploadFile, field: str, limit: int) -> bytes:
    """Read an upload in chunks, rejecting oversize bodies and non-docx payloads."""

    if not (upload.filename or "").lower().endswith(".docx"):
        raise MapRequestError(
            "INVALID_MEDIA_TYPE",
            f"{field} must be a .docx file",
            field=field,
            filename=upload.filename,
        )

    received = bytearray()
    while chunk := await upload.read(_READ_CHUNK):
        received.extend(chunk)
        if len(received) > limit:
            raise MapRequestError(
                "UPLOAD_TOO_LARGE",
                f"{field} exceeds upload size limit",
                field=field,
                max_bytes=limit,
                received_bytes=len(received),
            )
    await upload.close()

    if not received.startswith(_ZIP_MAGIC):
        raise MapRequestError("INVALID_MEDIA_TYPE", f"{field} must be a valid .docx file", field=field)
    return bytes(received)


def _env_number(name: str, default: _Number, cast: Callable[[str], _Number]) -> _Number:
    """Positive number from the environment; unset, unparsable or non-positive values give the default."""

    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _build_zip(output: MappingOutput, request_id: str, pipeline_ms: int, total_ms: int) -> bytes:
    report = output.report
    summary = {
        "request_id": request_id,
        "output_name": report.output_name,
        "tags_applied": report.tags_applied,
        "tags_failed": report.tags_failed,
        "timing": {"pipeline_ms": pipeline_ms, "total_ms": total_ms},
        "build": {"version": _package_version()},
    }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(report.output_name, output.content)
        archive.writestr("out.report.json", _dump_json(report.to_json_dict()))
        archive.writestr("api_result.json", _dump_json(summary))
    return buffer.getvalue()


def _package_version() -> str:
    try:
        return importlib.metadata.version("tagtransfer")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _error_body(error: MapRequestError, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error.error_code,
            "message": error.message,
            "request_id": request_id,
            "detail": dict(error.detail),
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    logger.log(level, _dump_json({"event": event, "request_id": request_id, **fields}))
