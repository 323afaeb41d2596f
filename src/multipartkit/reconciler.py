"""Aborts abandoned multipart uploads left behind by failed or interrupted runs."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from multipartkit import metrics
from multipartkit.errors import NoSuchUpload, StoreError, SweepIncomplete
from multipartkit.models import MultipartUploadInfo
from multipartkit.store.base import ObjectStore

logger = logging.getLogger(__name__)


class SessionReconciler:
    """Sweeps in-progress uploads under a key prefix.

    Runs before an upload as a safety net and after it as cleanup. Only
    uploads whose key starts with the prefix are touched, so unrelated
    uploads sharing the bucket survive.
    """

    def __init__(
        self,
        store: ObjectStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def sweep(
        self,
        bucket: str,
        key_prefix: str,
        older_than: timedelta | None = None,
    ) -> int:
        """Abort in-progress uploads under key_prefix.

        Args:
            bucket: The bucket to sweep.
            key_prefix: Only uploads whose key starts with this are aborted.
            older_than: If given, skip uploads initiated more recently.

        Returns:
            The number of uploads this sweep aborted. Uploads that vanished
            between listing and abort are not counted.

        Raises:
            SweepIncomplete: After every matching upload was tried, if the
                store refused to abort any of them.
        """
        uploads = await self.store.list_multipart_uploads(bucket, key_prefix)
        aborted = 0
        failures: list[tuple[str, StoreError]] = []
        for upload in uploads:
            # Some stores ignore the Prefix parameter
            if not upload.key.startswith(key_prefix):
                continue
            if not self._old_enough(upload, older_than):
                continue

            logger.info(
                "Aborting multipart upload %s (%s)",
                upload.upload_id,
                upload.key,
                extra={"bucket": bucket, "key": upload.key, "upload_id": upload.upload_id},
            )
            try:
                await self.store.abort_multipart_upload(bucket, upload.key, upload.upload_id)
            except NoSuchUpload:
                logger.debug("Upload %s already gone", upload.upload_id)
                continue
            except StoreError as exc:
                logger.warning(
                    "Could not abort multipart upload %s (%s): %s",
                    upload.upload_id,
                    upload.key,
                    exc.code,
                    extra={"bucket": bucket, "key": upload.key, "upload_id": upload.upload_id},
                )
                failures.append((upload.upload_id, exc))
                continue
            aborted += 1

        metrics.record_swept(aborted)
        if aborted:
            logger.info("Swept %d multipart upload(s) under %s/%s", aborted, bucket, key_prefix)
        if failures:
            raise SweepIncomplete(bucket, key_prefix, aborted, failures)
        return aborted

    def _old_enough(self, upload: MultipartUploadInfo, older_than: timedelta | None) -> bool:
        if older_than is None or upload.initiated is None:
            return True
        initiated = upload.initiated
        if initiated.tzinfo is None:
            initiated = initiated.replace(tzinfo=timezone.utc)
        return self.clock() - initiated >= older_than
