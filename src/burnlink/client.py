import mimetypes
import re
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import httpx

from burnlink.datamodels import DownloadedFile, StatusResponse, UploadResponse
from burnlink.errors import (AlreadyConsumed, InvalidInput, IOFailure, NotFound,
                             PayloadTooLarge, StoreError)

DEFAULT_MIME_TYPE = "application/octet-stream"

_ERRORS_BY_STATUS: dict[int, type[StoreError]] = {
    400: InvalidInput,
    404: NotFound,
    410: AlreadyConsumed,
    413: PayloadTooLarge,
    500: IOFailure,
}

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*UTF-8''([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*"([^"]*)"', re.IGNORECASE)


def filename_from_content_disposition(header: Optional[str]) -> Optional[str]:
    """
    Pull the file name out of a Content-Disposition header, preferring `filename*`.

    Example:
        >>> filename_from_content_disposition('attachment; filename="a.txt"')
        'a.txt'
    """
    if not header:
        return None
    match = _FILENAME_STAR_RE.search(header)
    if match:
        return unquote(match.group(1).strip())
    match = _FILENAME_RE.search(header)
    if match:
        return match.group(1)
    return None


def raise_for_error(response: httpx.Response) -> None:
    """Raise the store error matching an error response, fall back to httpx for the rest."""
    if response.status_code < 400:
        return

    error_class = _ERRORS_BY_STATUS.get(response.status_code)
    if error_class is None:
        response.raise_for_status()
        return

    try:
        message = response.json().get("message", response.text)
    except ValueError:
        message = response.text
    raise error_class(message)


class _RequestBuilder:
    """Helper class to build requests - shared between sync and async"""

    @staticmethod
    def build_upload_request(
        document: Optional[Path] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> tuple[bytes, dict[str, str]]:
        if document is None and content is None:
            raise ValueError("Either document or content must be provided")

        if document is not None:
            document = Path(document)
            content = document.read_bytes()
            filename = filename or document.name

        if mime_type is None and filename:
            # strict is false so we catch webp
            mime_type, _ = mimetypes.guess_type(filename, strict=False)

        headers = {"Content-Type": mime_type or DEFAULT_MIME_TYPE}
        if filename:
            # headers are latin-1, percent encoding keeps any name intact
            headers["File-Name"] = quote(filename)
        return content or b"", headers

    @staticmethod
    def build_download_url(base_url: str, token_or_url: str) -> str:
        if token_or_url.startswith(("http://", "https://")):
            return token_or_url
        if token_or_url.startswith("/"):
            return base_url + token_or_url
        return f"{base_url}/api/download/{token_or_url}"

    @staticmethod
    def parse_download_response(response: httpx.Response) -> DownloadedFile:
        return DownloadedFile(
            content=response.content,
            filename=filename_from_content_disposition(response.headers.get("content-disposition")),
            mime_type=response.headers.get("content-type"),
        )


class BurnlinkSyncClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)
        self._builder = _RequestBuilder()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.client.close()

    def close(self):
        self.client.close()

    def upload(
        self,
        document: Optional[Path] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadResponse:
        body, headers = self._builder.build_upload_request(document, content, filename, mime_type)
        response = self.client.post(f"{self.base_url}/api/upload", content=body, headers=headers)
        raise_for_error(response)
        return UploadResponse.model_validate_json(response.text)

    def download(self, token_or_url: str) -> DownloadedFile:
        response = self.client.get(self._builder.build_download_url(self.base_url, token_or_url))
        raise_for_error(response)
        return self._builder.parse_download_response(response)

    def status(self) -> StatusResponse:
        response = self.client.get(f"{self.base_url}/api/status")
        raise_for_error(response)
        return StatusResponse.model_validate_json(response.text)


class BurnlinkAsyncClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)
        self._builder = _RequestBuilder()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.client.aclose()

    async def close(self):
        await self.client.aclose()

    async def upload(
        self,
        document: Optional[Path] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadResponse:
        body, headers = self._builder.build_upload_request(document, content, filename, mime_type)
        response = await self.client.post(f"{self.base_url}/api/upload", content=body, headers=headers)
        raise_for_error(response)
        return UploadResponse.model_validate_json(response.text)

    async def download(self, token_or_url: str) -> DownloadedFile:
        response = await self.client.get(self._builder.build_download_url(self.base_url, token_or_url))
        raise_for_error(response)
        return self._builder.parse_download_response(response)

    async def status(self) -> StatusResponse:
        response = await self.client.get(f"{self.base_url}/api/status")
        raise_for_error(response)
        return StatusResponse.model_validate_json(response.text)
