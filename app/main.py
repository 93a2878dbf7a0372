import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
import logging
from typing import Annotated, Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from burnlink import __version__
from burnlink.datamodels import ErrorResponse, StatusResponse, UploadResponse
from burnlink.errors import InvalidInput, PayloadTooLarge, StoreError
from burnlink.store import OneTimeFileStore
from burnlink.tables import BaseTable, JsonFileTable, MemoryTable
from app.app_settings import Settings, StorageBackend, settings as default_settings
from app.app_utils import content_disposition, sanitize_filename, setup_logging

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = [
    "X-CSRF-Token", "X-Requested-With", "Accept", "Accept-Version", "Content-Length",
    "Content-MD5", "Content-Type", "Date", "X-Api-Version", "File-Name", "X-File-Name",
]


def build_store(settings: Settings) -> OneTimeFileStore:
    table: BaseTable
    if settings.storage_backend == StorageBackend.JSON:
        table = JsonFileTable(settings.storage_path)
    else:
        table = MemoryTable()

    return OneTimeFileStore(
        table=table,
        ttl=timedelta(hours=settings.ttl_hours),
        max_size=settings.max_upload_bytes or None,
        reap_on_put=settings.reap_on_put,
    )


def get_store(request: Request) -> OneTimeFileStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


StoreDep = Annotated[OneTimeFileStore, Depends(get_store)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
        headers=headers,
    )


async def reap_periodically(store: OneTimeFileStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(store.reap)
        except Exception:
            logger.exception("Periodic reap failed")


def check_declared_size(request: Request, limit: int) -> None:
    """Reject an upload from its Content-Length header before any of the body is read."""
    declared = request.headers.get("content-length")
    if limit and declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge(f"Upload is {declared} bytes, the limit is {limit} bytes")


async def read_body(request: Request, limit: int) -> bytes:
    """Read the raw request body, giving up as soon as it grows past `limit` (0 for no limit)."""
    check_declared_size(request, limit)
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if limit and received > limit:
            raise PayloadTooLarge(f"Upload is over the limit of {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


router = APIRouter(prefix="/api")


@router.post("/upload")
async def upload(request: Request, store: StoreDep, settings: SettingsDep) -> UploadResponse:
    """
    Stores the uploaded file and returns its one-time download link.

    Accepts either the raw file as request body, named by the `File-Name` (or
    `X-File-Name`) header and typed by `Content-Type`, or a multipart/form-data
    request with a `file` part.

    Returns:
        UploadResponse: success flag, fileId (the token) and downloadUrl.

    Raises:
        InvalidInput: 400 when no file data was received.
        PayloadTooLarge: 413 when the file is over the configured limit.
        IOFailure: 500 when the storage can't be written.

    Example (curl):
        curl -X POST "http://localhost:8000/api/upload" \
          -H "File-Name: report.pdf" -H "Content-Type: application/pdf" \
          --data-binary @report.pdf
    """
    content_type = request.headers.get("content-type", "")
    limit = settings.max_upload_bytes

    if content_type.startswith("multipart/form-data"):
        check_declared_size(request, limit)
        # the form closes its spooled upload files on exit
        async with request.form() as form:
            upload_file = form.get("file")
            if upload_file is None or isinstance(upload_file, str):
                raise InvalidInput("Multipart upload needs a 'file' part")
            if limit and upload_file.size is not None and upload_file.size > limit:
                raise PayloadTooLarge(f"File is {upload_file.size} bytes, the limit is {limit} bytes")
            payload = await upload_file.read()
            file_name = upload_file.filename
            mime_type = upload_file.content_type
    else:
        payload = await read_body(request, limit)
        file_name = request.headers.get("file-name") or request.headers.get("x-file-name")
        if file_name:
            file_name = unquote(file_name)
        mime_type = content_type or None

    token = await asyncio.to_thread(store.put, payload, sanitize_filename(file_name), mime_type)

    api_response = UploadResponse(file_id=token, download_url=f"/api/download/{token}")
    return ORJSONResponse(api_response.model_dump())


@router.get("/download/{token}")
async def download(token: str, store: StoreDep) -> Response:
    """
    Sends the file behind `token` and burns the link.

    Raises:
        NotFound, Expired: 404 for unknown or expired links.
        AlreadyConsumed: 410 when the file was already downloaded.
        IOFailure: 500 when the storage can't be read or written.
    """
    file_view = await asyncio.to_thread(store.take, token)
    # set directly, media_type would append a charset to text/* types
    return Response(
        content=file_view.payload,
        headers={
            "Content-Type": file_view.mime_type,
            "Content-Disposition": content_disposition(file_view.file_name),
            "Cache-Control": "no-cache",
        },
    )


@router.get("/status")
async def get_status(store: StoreDep, settings: SettingsDep) -> StatusResponse:
    """
    Diagnostic view of the store: number of files and their tokens.
    """
    if not settings.status_endpoint_enabled:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Not Found")

    store_status = await asyncio.to_thread(store.status)
    api_response = StatusResponse(file_count=store_status.count, files=store_status.tokens)
    return ORJSONResponse(api_response.model_dump())


# real preflights are answered by CORSMiddleware, this covers bare OPTIONS requests
@router.options("/upload")
@router.options("/download/{token}")
@router.options("/status")
async def preflight(request: Request, settings: SettingsDep) -> Response:
    headers = {
        "Access-Control-Allow-Methods": ", ".join(CORS_ALLOW_METHODS),
        "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    }
    origin = request.headers.get("origin")
    if "*" in settings.cors_allow_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin in settings.cors_allow_origins:
        headers["Access-Control-Allow-Origin"] = origin
    return Response(status_code=status.HTTP_200_OK, headers=headers)


def create_app(settings: Optional[Settings] = None, store: Optional[OneTimeFileStore] = None) -> FastAPI:
    """
    Build the relay app around one store instance.

    Args:
        settings: Defaults to the settings loaded from the environment / .env
        store: Defaults to a store built from `settings`
    """
    settings = settings or default_settings
    setup_logging(settings.log_level)
    store = store or build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = None
        if settings.reap_interval_seconds > 0:
            reaper = asyncio.create_task(reap_periodically(store, settings.reap_interval_seconds))
        yield
        if reaper is not None:
            reaper.cancel()
            with suppress(asyncio.CancelledError):
                await reaper

    app = FastAPI(
        title="burnlink",
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    # preflights always get a 200, whatever headers or method they ask for
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def store_exception_handler(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(exc.status_code, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Unhandled Server error: {str(exc)}")

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000)
