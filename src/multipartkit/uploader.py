"""Transfers part bytes to signed URLs and collects their ETags."""

import logging
import urllib.parse
import xml.etree.ElementTree as ET
from typing import Mapping

import httpx

from multipartkit import metrics
from multipartkit.errors import PartUploadError
from multipartkit.models import DEFAULT_CONTENT_TYPE, PartTransferResult, SignedURL

logger = logging.getLogger(__name__)


def _error_code(body: bytes) -> str | None:
    """Extract <Code> from an S3 XML error body, if there is one."""
    if not body:
        return None
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return None
    # Handle XML namespace
    ns = ""
    if root.tag.startswith("{"):
        ns = root.tag[: root.tag.index("}") + 1]
    code = root.find(f"{ns}Code")
    return code.text if code is not None else None


class PartUploader:
    """PUTs one part per call to a presigned URL.

    Each call either fully succeeds (2xx with an ETag header) or raises
    PartUploadError; there is no partial success and no retry here, the
    caller decides whether to re-sign and retry or abort the session.

    Attributes:
        content_type: Content-Type header sent with every part.
        timeout: Per-request timeout in seconds, so an unresponsive store
            fails the part instead of hanging.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
        timeout: float = 60.0,
    ) -> None:
        self.content_type = content_type
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "PartUploader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def upload(
        self,
        signed_url: SignedURL,
        data: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> PartTransferResult:
        """Upload one part.

        Args:
            signed_url: The presigned URL for this part.
            data: The part bytes.
            headers: Extra headers (e.g. tag hints). A store that rejects
                them fails the part like any other rejection.

        Returns:
            The part number, the ETag header value verbatim, and the status.

        Raises:
            PartUploadError: On a non-2xx response, a missing ETag header,
                or a transport failure (http_status is None then).
        """
        part_number = signed_url.part_number
        request_headers = {"Content-Type": self.content_type}
        if headers:
            request_headers.update(headers)
        log_extra = {"upload_id": signed_url.upload_id, "part_number": part_number}

        try:
            resp = await self._client.put(
                signed_url.url,
                content=data,
                headers=request_headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            metrics.record_part("error")
            logger.warning(
                "Part %d transfer to %s failed: %s",
                part_number,
                urllib.parse.urlsplit(signed_url.url).path,
                exc,
                extra=log_extra,
            )
            raise PartUploadError(
                part_number, None, f"Transfer of part {part_number} failed: {exc}"
            ) from exc

        # httpx headers are case-insensitive
        etag = resp.headers.get("etag")
        if not resp.is_success or not etag:
            metrics.record_part("error")
            code = _error_code(resp.content) if not resp.is_success else "MissingETag"
            logger.warning(
                "Part %d rejected: status=%d code=%s",
                part_number,
                resp.status_code,
                code,
                extra={**log_extra, "http_status": resp.status_code},
            )
            if resp.is_success:
                message = f"Store accepted part {part_number} but returned no ETag header"
            else:
                message = f"Store rejected part {part_number} with status {resp.status_code}"
                if code:
                    message += f" ({code})"
            raise PartUploadError(part_number, resp.status_code, message, code=code)

        metrics.record_part("ok", len(data))
        logger.debug(
            "Uploaded part %d (%d bytes) etag=%s",
            part_number,
            len(data),
            etag,
            extra={**log_extra, "http_status": resp.status_code},
        )
        return PartTransferResult(part_number=part_number, etag=etag, http_status=resp.status_code)
