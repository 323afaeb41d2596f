"""The presigned multipart upload workflow, end to end.

upload_payload() drives one object through the session lifecycle:
open, sign each part, PUT parts through a bounded worker pool, complete,
and abort on any failure. Retry policy for individual parts lives here,
not in the uploader: a failed part is re-signed (its URL may have
expired) and retried a bounded number of times.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from multipartkit.errors import PartUploadError
from multipartkit.models import CompletedPart, UploadResult, UploadTarget
from multipartkit.session import MultipartSession
from multipartkit.signer import SignedURLIssuer
from multipartkit.store.base import ObjectStore
from multipartkit.uploader import PartUploader

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(minutes=15)

_RETRYABLE_STATUSES = {403, 408, 429, 500, 502, 503, 504}


def split_payload(data: bytes, part_count: int) -> list[bytes]:
    """Split data into part_count contiguous parts.

    Every part but the last is ``len(data) // part_count`` bytes; the last
    takes the remainder.

    Raises:
        ValueError: If part_count < 1 or there are fewer bytes than parts.
    """
    if part_count < 1:
        raise ValueError("part_count must be a positive integer")
    if len(data) < part_count:
        raise ValueError(f"Cannot split {len(data)} bytes into {part_count} parts")
    size = len(data) // part_count
    parts = [data[i * size:(i + 1) * size] for i in range(part_count - 1)]
    parts.append(data[(part_count - 1) * size:])
    return parts


def make_object_key(prefix: str, now: datetime | None = None) -> str:
    """Timestamped key under prefix, e.g. ``random-2026-10-18T09:30:00.123456+00:00.bin``."""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{now.isoformat()}.bin"


def is_retryable(exc: PartUploadError) -> bool:
    """Transport failures, expired signatures and throttling/5xx are retryable."""
    return exc.http_status is None or exc.http_status in _RETRYABLE_STATUSES


async def upload_payload(
    store: ObjectStore,
    uploader: PartUploader,
    target: UploadTarget,
    payload: bytes,
    part_count: int,
    expiry: timedelta = DEFAULT_EXPIRY,
    concurrency: int = 4,
    max_part_attempts: int = 3,
    issuer: SignedURLIssuer | None = None,
) -> UploadResult:
    """Upload payload as a presigned multipart upload.

    Args:
        store: The object store collaborator.
        uploader: Performs the part PUTs.
        target: Destination bucket/key and metadata.
        payload: The full object bytes.
        part_count: How many parts to split the payload into.
        expiry: Validity of each signed part URL.
        concurrency: Maximum parts in flight at once.
        max_part_attempts: Attempts per part, each with a fresh URL.
        issuer: Signed URL issuer (a default one is created if omitted).

    Returns:
        The completed upload's summary.

    Raises:
        PartUploadError: If a part failed on its last attempt.
        StoreError: If the store refused creation or completion.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if max_part_attempts < 1:
        raise ValueError("max_part_attempts must be at least 1")

    chunks = split_payload(payload, part_count)
    issuer = issuer or SignedURLIssuer()
    semaphore = asyncio.Semaphore(concurrency)

    session = await MultipartSession.open(store, target, part_count)

    async def transfer(part_number: int, chunk: bytes) -> None:
        async with semaphore:
            for attempt in range(1, max_part_attempts + 1):
                signed = await issuer.issue(session, part_number, expiry)
                try:
                    result = await uploader.upload(signed, chunk)
                except PartUploadError as exc:
                    if attempt == max_part_attempts or not is_retryable(exc):
                        raise
                    logger.warning(
                        "Part %d attempt %d/%d failed (%s), re-signing",
                        part_number,
                        attempt,
                        max_part_attempts,
                        exc.message,
                        extra={"upload_id": session.upload_id, "part_number": part_number},
                    )
                    continue
                session.add_part(result.part_number, result.etag)
                return

    async with session:
        tasks = [
            asyncio.ensure_future(transfer(pn, chunk)) for pn, chunk in enumerate(chunks, start=1)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        etag = await session.complete()

    manifest = session.manifest
    return UploadResult(
        target=target,
        upload_id=session.upload_id,
        etag=etag,
        size=len(payload),
        parts=tuple(CompletedPart(pn, manifest[pn]) for pn in sorted(manifest)),
    )
