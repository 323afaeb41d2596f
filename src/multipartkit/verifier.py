"""Post-upload verification of object metadata against the intended manifest."""

import logging

from multipartkit.errors import VerificationFailure
from multipartkit.models import ExpectedObject, FieldMismatch, VerificationReport
from multipartkit.store.base import ObjectStore

logger = logging.getLogger(__name__)


class UploadVerifier:
    """Re-reads a completed object and compares it with what was intended.

    Content length and content type must match exactly. Tags are compared
    by containment: the store may add tags of its own. Every mismatch is
    collected before reporting.

    Attributes:
        strict_tags: When False, missing tags are logged instead of
            reported (LocalStack drops tags given at upload creation).
    """

    def __init__(self, store: ObjectStore, strict_tags: bool = True) -> None:
        self.store = store
        self.strict_tags = strict_tags

    async def verify(self, bucket: str, key: str, expected: ExpectedObject) -> VerificationReport:
        """Verify a stored object.

        Returns:
            What was observed, when everything matches.

        Raises:
            VerificationFailure: Listing every mismatched field.
            StoreError: If the object cannot be read.
        """
        head = await self.store.head_object(bucket, key)
        tags = await self.store.get_object_tagging(bucket, key) if expected.tags else frozenset()
        report = VerificationReport(
            content_length=head.content_length,
            content_type=head.content_type,
            tags_observed=tags,
            parts_count=head.parts_count,
        )

        mismatches: list[FieldMismatch] = []
        if head.content_length != expected.content_length:
            mismatches.append(
                FieldMismatch("content_length", expected.content_length, head.content_length)
            )
        if head.content_type != expected.content_type:
            mismatches.append(
                FieldMismatch("content_type", expected.content_type, head.content_type)
            )

        missing_tags = expected.tags - tags
        if missing_tags:
            if self.strict_tags:
                mismatches.append(FieldMismatch("tags", expected.tags, tags))
            else:
                logger.warning(
                    "Tags %s missing on %s/%s (not enforced)", sorted(missing_tags), bucket, key
                )

        if expected.parts_count is not None:
            if head.parts_count is None:
                logger.debug("Store did not report a part count for %s/%s", bucket, key)
            elif head.parts_count != expected.parts_count:
                mismatches.append(
                    FieldMismatch("parts_count", expected.parts_count, head.parts_count)
                )

        if mismatches:
            raise VerificationFailure(bucket, key, mismatches)

        logger.info(
            "Verified %s/%s: %d bytes, %s",
            bucket,
            key,
            head.content_length,
            head.content_type,
            extra={"bucket": bucket, "key": key},
        )
        return report
