"""S3 object store for multipartkit.

Talks to AWS S3 or any S3-compatible endpoint (LocalStack, MinIO, ...)
through aiobotocore. Part URLs are presigned locally by botocore; no
request reaches the store until the uploader PUTs to them.

Credentials are resolved via the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.) unless explicit keys are
configured.
"""

import logging
import urllib.parse
from datetime import datetime, timedelta, timezone

from aiobotocore.session import AioSession
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from multipartkit.errors import store_error_from_client_error
from multipartkit.models import (
    DEFAULT_CONTENT_TYPE,
    CompletedPart,
    MultipartUploadInfo,
    ObjectHead,
    SignedURL,
    TagSet,
)

logger = logging.getLogger(__name__)


def encode_tagging(tags: TagSet) -> str:
    """Encode a tag set as the URL query string S3 expects in ``Tagging``."""
    return urllib.parse.urlencode(sorted(tags))


class S3ObjectStore:
    """Object store backed by an S3-compatible service.

    Attributes:
        region: The region for signing and requests.
        endpoint_url: Custom endpoint, or empty for AWS.
        use_path_style: Use path-style addressing (needed by LocalStack).
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client."""
        client_kwargs: dict = {
            "region_name": self.region,
            "config": BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if self.use_path_style else "auto"},
            ),
        }
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        # Use explicit credentials if provided, otherwise fall back to chain
        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        logger.info(
            "S3 object store initialized: region=%s endpoint=%s path_style=%s",
            self.region,
            self.endpoint_url or "default",
            self.use_path_style,
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            await self._client.head_bucket(Bucket=bucket)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchBucket"):
                return False
            raise store_error_from_client_error(e) from e

    async def create_multipart_upload(
        self, bucket: str, key: str, content_type: str, tags: TagSet
    ) -> str:
        kwargs: dict = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type or DEFAULT_CONTENT_TYPE,
        }
        if tags:
            kwargs["Tagging"] = encode_tagging(tags)
        try:
            resp = await self._client.create_multipart_upload(**kwargs)
        except ClientError as e:
            raise store_error_from_client_error(e) from e
        return resp["UploadId"]

    async def presign_upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, expires_in: int
    ) -> SignedURL:
        issued_at = datetime.now(timezone.utc)
        url = await self._client.generate_presigned_url(
            "upload_part",
            Params={
                "Bucket": bucket,
                "Key": key,
                "UploadId": upload_id,
                "PartNumber": part_number,
            },
            ExpiresIn=expires_in,
            HttpMethod="PUT",
        )
        return SignedURL(
            url=url,
            part_number=part_number,
            upload_id=upload_id,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )

    async def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[CompletedPart]
    ) -> str:
        manifest = [{"ETag": p.etag, "PartNumber": p.part_number} for p in parts]
        try:
            resp = await self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": manifest},
            )
        except ClientError as e:
            raise store_error_from_client_error(e) from e
        return resp.get("ETag", "")

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        try:
            await self._client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        except ClientError as e:
            raise store_error_from_client_error(e) from e

    async def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[MultipartUploadInfo]:
        """List in-progress uploads under prefix, following pagination."""
        paginator = self._client.get_paginator("list_multipart_uploads")
        uploads: list[MultipartUploadInfo] = []
        try:
            async for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for item in page.get("Uploads", []):
                    uploads.append(
                        MultipartUploadInfo(
                            upload_id=item["UploadId"],
                            key=item["Key"],
                            initiated=item.get("Initiated"),
                        )
                    )
        except ClientError as e:
            raise store_error_from_client_error(e) from e
        return uploads

    async def head_object(self, bucket: str, key: str) -> ObjectHead:
        """Read object metadata, plus the part count when the store reports it."""
        try:
            resp = await self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise store_error_from_client_error(e) from e

        return ObjectHead(
            content_length=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType", ""),
            etag=resp.get("ETag", ""),
            parts_count=await self._parts_count(bucket, key),
        )

    async def _parts_count(self, bucket: str, key: str) -> int | None:
        # S3 only reports PartsCount when a part number is requested; not
        # every S3-compatible store supports that, so absence is not an error
        try:
            resp = await self._client.head_object(Bucket=bucket, Key=key, PartNumber=1)
        except ClientError:
            logger.debug("Store did not answer a part-level HEAD for %s/%s", bucket, key)
            return None
        parts_count = resp.get("PartsCount")
        return int(parts_count) if parts_count is not None else None

    async def get_object_tagging(self, bucket: str, key: str) -> TagSet:
        try:
            resp = await self._client.get_object_tagging(Bucket=bucket, Key=key)
        except ClientError as e:
            raise store_error_from_client_error(e) from e
        return frozenset((t["Key"], t["Value"]) for t in resp.get("TagSet", []))

    async def get_object(self, bucket: str, key: str) -> bytes:
        try:
            resp = await self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise store_error_from_client_error(e) from e

        async with resp["Body"] as stream:
            return await stream.read()

    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object. Idempotent: S3 does not error on missing keys."""
        try:
            await self._client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise store_error_from_client_error(e) from e
