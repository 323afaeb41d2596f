"""In-memory object store for multipartkit.

Implements the ObjectStore protocol with Python dictionaries and mirrors
the S3 multipart semantics this workflow depends on:

    - UUID upload IDs, MD5 part ETags, composite "<md5>-<n>" object ETags.
    - CompleteMultipartUpload validates ascending part order, part ETags,
      and the minimum size of every part except the last.
    - Part bytes arrive over HTTP at SigV4 presigned URLs. ``app`` is a
      FastAPI application serving those PUTs; point an httpx client at it
      with ``httpx.ASGITransport(app=store.app)`` to upload without sockets.

The clock is injectable so expiry can be exercised deterministically.
"""

import binascii
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable
from xml.sax.saxutils import escape as _sax_escape

from fastapi import FastAPI, Request, Response

from multipartkit.errors import (
    EntityTooSmall,
    InvalidArgument,
    InvalidPart,
    InvalidPartOrder,
    NoSuchBucket,
    NoSuchKey,
    NoSuchUpload,
    StoreError,
)
from multipartkit.models import (
    DEFAULT_CONTENT_TYPE,
    CompletedPart,
    MultipartUploadInfo,
    ObjectHead,
    SignedURL,
    TagSet,
)
from multipartkit.sigv4 import PresignedURLVerifier, presign_url

logger = logging.getLogger(__name__)

MIN_PART_SIZE = 5 * 1024 * 1024  # 5 MiB
MAX_PART_NUMBER = 10000
DEFAULT_ENDPOINT = "http://multipartkit.local"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Upload:
    bucket: str
    key: str
    content_type: str
    tags: TagSet
    initiated: datetime
    # part_number -> (data, quoted etag)
    parts: dict[int, tuple[bytes, str]] = field(default_factory=dict)


@dataclass
class _StoredObject:
    data: bytes
    etag: str
    content_type: str
    tags: TagSet
    parts_count: int | None = None


class MemoryObjectStore:
    """Object store that holds buckets, uploads, and objects in memory.

    Attributes:
        endpoint: Scheme and authority embedded in presigned URLs.
        region: Region used for signing and verification.
        min_part_size: Minimum size of every part but the last (0 disables).
        abort_calls: Upload IDs passed to abort_multipart_upload, in order.
        complete_calls: Upload IDs passed to complete_multipart_upload, in order.
        app: FastAPI app accepting presigned part PUTs.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        region: str = "us-east-1",
        access_key_id: str = "test",
        secret_access_key: str = "test",
        min_part_size: int = MIN_PART_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.min_part_size = min_part_size
        self.clock = clock or _utcnow

        self._buckets: set[str] = set()
        self._uploads: dict[str, _Upload] = {}
        self._objects: dict[tuple[str, str], _StoredObject] = {}
        self.abort_calls: list[str] = []
        self.complete_calls: list[str] = []

        self._verifier = PresignedURLVerifier(
            lookup_secret=lambda ak: self.secret_access_key if ak == self.access_key_id else None,
            region=region,
        )
        self.app = self._build_app()

    # -- Lifecycle -------------------------------------------------------------

    async def init(self) -> None:
        logger.debug("Memory object store ready at %s", self.endpoint)

    async def close(self) -> None:
        pass

    def create_bucket(self, bucket: str) -> None:
        """Create a bucket. Idempotent."""
        self._buckets.add(bucket)

    async def bucket_exists(self, bucket: str) -> bool:
        return bucket in self._buckets

    def _ensure_bucket(self, bucket: str) -> None:
        if bucket not in self._buckets:
            raise NoSuchBucket(bucket)

    def _get_upload(self, bucket: str, key: str, upload_id: str) -> _Upload:
        upload = self._uploads.get(upload_id)
        if upload is None or upload.bucket != bucket or upload.key != key:
            raise NoSuchUpload(upload_id)
        return upload

    # -- Multipart operations --------------------------------------------------

    async def create_multipart_upload(
        self, bucket: str, key: str, content_type: str, tags: TagSet
    ) -> str:
        self._ensure_bucket(bucket)
        upload_id = str(uuid.uuid4())
        self._uploads[upload_id] = _Upload(
            bucket=bucket,
            key=key,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            tags=frozenset(tags),
            initiated=self.clock(),
        )
        return upload_id

    async def presign_upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, expires_in: int
    ) -> SignedURL:
        """Sign a part URL locally. Does not check that the upload exists."""
        now = self.clock()
        url = presign_url(
            method="PUT",
            endpoint=self.endpoint,
            path=f"/{bucket}/{key}",
            query={"partNumber": str(part_number), "uploadId": upload_id},
            access_key=self.access_key_id,
            secret_key=self.secret_access_key,
            region=self.region,
            expires_in=expires_in,
            now=now,
        )
        return SignedURL(
            url=url,
            part_number=part_number,
            upload_id=upload_id,
            expires_at=now + timedelta(seconds=expires_in),
        )

    def _put_part(self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        if part_number < 1 or part_number > MAX_PART_NUMBER:
            raise InvalidArgument(f"Part number must be between 1 and {MAX_PART_NUMBER}")
        self._ensure_bucket(bucket)
        upload = self._get_upload(bucket, key, upload_id)
        etag = f'"{hashlib.md5(data).hexdigest()}"'
        # Upsert: a retried part replaces the previous bytes
        upload.parts[part_number] = (data, etag)
        return etag

    async def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[CompletedPart]
    ) -> str:
        self.complete_calls.append(upload_id)
        self._ensure_bucket(bucket)
        upload = self._get_upload(bucket, key, upload_id)
        if not parts:
            raise InvalidArgument("No parts specified in request body")

        prev_pn = 0
        for part in parts:
            if part.part_number <= prev_pn:
                raise InvalidPartOrder()
            prev_pn = part.part_number

        chosen: list[tuple[bytes, str]] = []
        for part in parts:
            stored = upload.parts.get(part.part_number)
            if stored is None or stored[1].strip('"') != part.etag.strip('"'):
                raise InvalidPart()
            chosen.append(stored)

        if self.min_part_size:
            for part, (data, _) in zip(parts[:-1], chosen[:-1]):
                if len(data) < self.min_part_size:
                    raise EntityTooSmall(
                        f"Your proposed upload is smaller than the minimum allowed size. "
                        f"Part {part.part_number} has size {len(data)} bytes."
                    )

        binary_md5s = b"".join(binascii.unhexlify(etag.strip('"')) for _, etag in chosen)
        composite_etag = f'"{hashlib.md5(binary_md5s).hexdigest()}-{len(chosen)}"'

        self._objects[(bucket, key)] = _StoredObject(
            data=b"".join(data for data, _ in chosen),
            etag=composite_etag,
            content_type=upload.content_type,
            tags=upload.tags,
            parts_count=len(chosen),
        )
        del self._uploads[upload_id]
        return composite_etag

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        self.abort_calls.append(upload_id)
        self._ensure_bucket(bucket)
        self._get_upload(bucket, key, upload_id)
        del self._uploads[upload_id]

    async def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[MultipartUploadInfo]:
        self._ensure_bucket(bucket)
        found = [
            MultipartUploadInfo(upload_id=upload_id, key=upload.key, initiated=upload.initiated)
            for upload_id, upload in self._uploads.items()
            if upload.bucket == bucket and upload.key.startswith(prefix)
        ]
        return sorted(found, key=lambda u: (u.key, u.upload_id))

    # -- Object operations -----------------------------------------------------

    def _get_object(self, bucket: str, key: str) -> _StoredObject:
        self._ensure_bucket(bucket)
        obj = self._objects.get((bucket, key))
        if obj is None:
            raise NoSuchKey(key)
        return obj

    async def head_object(self, bucket: str, key: str) -> ObjectHead:
        obj = self._get_object(bucket, key)
        return ObjectHead(
            content_length=len(obj.data),
            content_type=obj.content_type,
            etag=obj.etag,
            parts_count=obj.parts_count,
        )

    async def get_object_tagging(self, bucket: str, key: str) -> TagSet:
        return self._get_object(bucket, key).tags

    async def get_object(self, bucket: str, key: str) -> bytes:
        return self._get_object(bucket, key).data

    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object. Idempotent, like S3."""
        self._ensure_bucket(bucket)
        self._objects.pop((bucket, key), None)

    # -- HTTP surface ----------------------------------------------------------

    def _build_app(self) -> FastAPI:
        app = FastAPI(
            title="multipartkit memory store",
            openapi_url=None,
            docs_url=None,
            redoc_url=None,
        )

        @app.exception_handler(StoreError)
        async def store_error_handler(request: Request, exc: StoreError) -> Response:
            """Render StoreError as an S3 XML error body."""
            return Response(
                content=render_error(exc.code, exc.message, request.url.path, exc.extra_fields),
                status_code=exc.http_status,
                media_type="application/xml",
            )

        @app.put("/{bucket}/{key:path}")
        async def upload_part(bucket: str, key: str, request: Request) -> Response:
            """Accept one part at a presigned URL and answer with its ETag."""
            # request.url drops anything after a decoded "?" or "#" in the key
            self._verifier.verify(
                method=request.method,
                path=request.scope["path"],
                query_string=request.url.query,
                headers=request.headers,
                now=self.clock(),
            )
            if "x-amz-tagging" in request.headers:
                raise InvalidArgument("Tagging is not supported on UploadPart")

            upload_id = request.query_params.get("uploadId", "")
            part_number_str = request.query_params.get("partNumber", "")
            if not upload_id:
                raise InvalidArgument("uploadId is required")
            try:
                part_number = int(part_number_str)
            except ValueError:
                raise InvalidArgument("partNumber must be an integer")

            data = await request.body()
            etag = self._put_part(bucket, key, upload_id, part_number, data)
            logger.debug("Stored part %d of %s (%d bytes)", part_number, upload_id, len(data))
            return Response(status_code=200, headers={"ETag": etag})

        return app


def render_error(
    code: str,
    message: str,
    resource: str = "",
    extra_fields: dict[str, str] | None = None,
) -> str:
    """Render an S3 XML error response body.

    The Error element has NO XML namespace (unlike success responses).
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<Error>",
        f"<Code>{_sax_escape(code)}</Code>",
        f"<Message>{_sax_escape(message)}</Message>",
    ]
    if resource:
        parts.append(f"<Resource>{_sax_escape(resource)}</Resource>")
    for key, value in (extra_fields or {}).items():
        parts.append(f"<{key}>{_sax_escape(value)}</{key}>")
    parts.append("</Error>")
    return "\n".join(parts)
