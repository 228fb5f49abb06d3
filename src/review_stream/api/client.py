# src/review_stream/api/client.py
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from review_stream.config import load_config
from review_stream.errors import (
    APIError,
    TransportError,
    UploadError,
    UploadErrorKind,
)

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class ReviewClient:
    """HTTP client for the paper analysis backend."""

    def __init__(
            self,
            config: Optional[Dict[str, Any]] = None,
            config_path: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config if config is not None else load_config(config_path)

        api = self.config['api']
        self.base_url = api['base_url']
        self.upload_url = f"{self.base_url}{api['upload_endpoint']}"
        self.review_url = f"{self.base_url}{api['review_endpoint']}"
        self.upload_timeout = float(self.config['upload']['timeout'])
        self.max_upload_bytes = int(self.config['upload']['max_bytes'])

        # The review stream runs until the backend is done: no read timeout
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(None),
            transport=transport,
            verify=api.get('verify_ssl', True)
        )

    def review_payload(self, file_path: str) -> Dict[str, Any]:
        api = self.config['api']
        return {
            "file_path": file_path,
            "num_reviewers": int(api['num_reviewers']),
            "page_limit": int(api['page_limit']),
            "use_claude": bool(api['use_claude'])
        }

    @asynccontextmanager
    async def stream_review(self, file_path: str) -> AsyncIterator[httpx.Response]:
        """
        Open the streamed review response for a previously uploaded file.

        Raises:
            APIError: on a non-OK status (with the response body).
            TransportError: when the request could not be completed.
        """
        payload = self.review_payload(file_path)
        logger.info(f"Starting analysis request: {self.review_url} ({file_path})")

        try:
            async with self.client.stream(
                    "POST",
                    self.review_url,
                    json=payload,
                    headers={"Accept": "text/event-stream"}
            ) as response:
                logger.info(f"Response status: {response.status_code}")
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise APIError(
                        f"Analysis failed: {response.status_code} {response.reason_phrase}\n{body[:500]}",
                        response.status_code
                    )
                yield response
        except httpx.TimeoutException:
            raise TransportError("Request timeout")
        except httpx.RequestError as e:
            raise TransportError(f"Request failed: {str(e)}")

    async def upload(self, pdf_path: str) -> str:
        """
        Upload a PDF and return the server-side file path.

        Raises:
            UploadError: with kind invalid_type, oversize, timeout or server_error.
        """
        path = Path(pdf_path)
        if path.suffix.lower() != ".pdf":
            raise UploadError(UploadErrorKind.INVALID_TYPE, "Only PDF files are supported")

        if not path.is_file():
            raise UploadError(UploadErrorKind.INVALID_TYPE, f"File not found: {pdf_path}")

        size = path.stat().st_size
        if size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes / (1024 * 1024)
            raise UploadError(UploadErrorKind.OVERSIZE, f"File size cannot exceed {limit_mb:g}MB")

        data = path.read_bytes()
        if not data.startswith(PDF_MAGIC):
            raise UploadError(UploadErrorKind.INVALID_TYPE, f"{path.name} is not a PDF document")

        logger.info(f"Uploading PDF: {path.name} ({size} bytes)")
        try:
            response = await self.client.post(
                self.upload_url,
                files={"file": (path.name, data, "application/pdf")},
                timeout=self.upload_timeout
            )
        except httpx.TimeoutException:
            raise UploadError(UploadErrorKind.TIMEOUT, f"Upload timed out after {self.upload_timeout:g}s")
        except httpx.RequestError as e:
            raise UploadError(UploadErrorKind.SERVER_ERROR, f"Upload failed: {str(e)}")

        if response.status_code == 422:
            raise UploadError(UploadErrorKind.SERVER_ERROR, f"Validation error: {_error_detail(response)}")
        if not response.is_success:
            raise UploadError(
                UploadErrorKind.SERVER_ERROR,
                f"Upload failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            result = response.json()
        except ValueError:
            raise UploadError(UploadErrorKind.SERVER_ERROR, "Server returned an invalid upload response")

        file_path = result.get("file_path") if isinstance(result, dict) else None
        if not file_path:
            raise UploadError(UploadErrorKind.SERVER_ERROR, "Server did not return a file path")

        logger.info(f"Upload successful: {file_path}")
        return str(file_path)

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or "Invalid file format"
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    return "Invalid file format"
