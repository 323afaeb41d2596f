"""Object store collaborator protocol for multipartkit."""

from typing import Protocol

from multipartkit.models import (
    CompletedPart,
    MultipartUploadInfo,
    ObjectHead,
    SignedURL,
    TagSet,
)


class ObjectStore(Protocol):
    """Protocol defining the S3-compatible operations the upload core needs.

    Implementations raise StoreError subclasses (NoSuchUpload, NoSuchKey,
    InvalidPart, ...) for store-side rejections.
    """

    async def init(self) -> None:
        """Open connections or other resources."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...

    async def bucket_exists(self, bucket: str) -> bool:
        ...

    async def create_multipart_upload(
        self, bucket: str, key: str, content_type: str, tags: TagSet
    ) -> str:
        """Start a multipart upload.

        Args:
            bucket: The bucket name.
            key: The object key.
            content_type: MIME type for the final object.
            tags: Tags applied to the final object.

        Returns:
            The store-assigned upload ID.
        """
        ...

    async def presign_upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, expires_in: int
    ) -> SignedURL:
        """Sign a URL authorizing one PUT of one part.

        Args:
            bucket: The bucket name.
            key: The object key.
            upload_id: The multipart upload the part belongs to.
            part_number: 1-based part number.
            expires_in: Validity window in seconds.

        Returns:
            The signed URL.
        """
        ...

    async def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[CompletedPart]
    ) -> str:
        """Assemble the listed parts into the final object.

        Returns:
            The composite ETag of the final object.
        """
        ...

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        ...

    async def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[MultipartUploadInfo]:
        """List in-progress multipart uploads whose key starts with prefix."""
        ...

    async def head_object(self, bucket: str, key: str) -> ObjectHead:
        ...

    async def get_object_tagging(self, bucket: str, key: str) -> TagSet:
        ...

    async def get_object(self, bucket: str, key: str) -> bytes:
        ...

    async def delete_object(self, bucket: str, key: str) -> None:
        ...
