"""Value types passed between the upload core and object store collaborators.

All records are frozen dataclasses: callers build them once and hand them
to the store or the session; nothing mutates them afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

DEFAULT_CONTENT_TYPE = "application/octet-stream"

TagSet = frozenset[tuple[str, str]]


def make_tag_set(tags: Mapping[str, str] | Iterable[tuple[str, str]] | None) -> TagSet:
    """Normalize a mapping or an iterable of pairs into a TagSet."""
    if tags is None:
        return frozenset()
    if isinstance(tags, Mapping):
        return frozenset((str(k), str(v)) for k, v in tags.items())
    return frozenset((str(k), str(v)) for k, v in tags)


@dataclass(frozen=True)
class UploadTarget:
    """What is being uploaded and its static metadata.

    Attributes:
        bucket: Destination bucket name.
        key: Destination object key.
        content_type: MIME type recorded on the final object.
        tags: Object tags applied when the upload is created.
    """

    bucket: str
    key: str
    content_type: str = DEFAULT_CONTENT_TYPE
    tags: TagSet = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("bucket must not be empty")
        if not self.key:
            raise ValueError("key must not be empty")
        object.__setattr__(self, "tags", make_tag_set(self.tags))


@dataclass(frozen=True)
class SignedPartRequest:
    """The tuple a signed part URL authorizes.

    Attributes:
        upload_id: The multipart upload identifier.
        key: The object key.
        part_number: 1-based part number.
        expiry: Validity window, measured from issuance.
    """

    upload_id: str
    key: str
    part_number: int
    expiry: timedelta


@dataclass(frozen=True)
class SignedURL:
    """A time-bounded URL authorizing one PUT of one part.

    Attributes:
        url: The full presigned URL.
        part_number: The part this URL uploads.
        upload_id: The multipart upload the part belongs to.
        expires_at: Wall-clock instant after which the store rejects it.
        method: HTTP method the signature covers.
    """

    url: str
    part_number: int
    upload_id: str
    expires_at: datetime
    method: str = "PUT"

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class PartTransferResult:
    """Outcome of one successful part PUT."""

    part_number: int
    etag: str
    http_status: int


@dataclass(frozen=True)
class CompletedPart:
    part_number: int
    etag: str


@dataclass(frozen=True)
class MultipartUploadInfo:
    """An in-progress multipart upload as reported by the store.

    Attributes:
        upload_id: The upload identifier.
        key: The object key the upload targets.
        initiated: When the store created the upload, if reported.
    """

    upload_id: str
    key: str
    initiated: datetime | None = None


@dataclass(frozen=True)
class ObjectHead:
    """Object metadata returned by a head-object call.

    Attributes:
        content_length: Size of the stored object in bytes.
        content_type: Stored MIME type.
        etag: Quoted ETag of the object.
        parts_count: Number of parts, when the store reports it.
    """

    content_length: int
    content_type: str
    etag: str = ""
    parts_count: int | None = None


@dataclass(frozen=True)
class ExpectedObject:
    """What an uploaded object should look like after completion."""

    content_length: int
    content_type: str = DEFAULT_CONTENT_TYPE
    tags: TagSet = field(default_factory=frozenset)
    parts_count: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", make_tag_set(self.tags))


@dataclass(frozen=True)
class FieldMismatch:
    field: str
    expected: Any
    observed: Any


@dataclass(frozen=True)
class VerificationReport:
    """Store-side state observed after completion."""

    content_length: int
    content_type: str
    tags_observed: TagSet
    parts_count: int | None = None


@dataclass(frozen=True)
class UploadResult:
    """Summary of a finished upload_payload() run.

    Attributes:
        target: The uploaded object.
        upload_id: Identifier of the completed multipart upload.
        etag: Composite ETag returned by the completion call.
        size: Total payload size in bytes.
        parts: The manifest submitted to completion, ordered by part number.
    """

    target: UploadTarget
    upload_id: str
    etag: str
    size: int
    parts: tuple[CompletedPart, ...]
