"""E2E tests for presigned multipart uploads against a live store."""

import os
from datetime import timedelta

import pytest

from multipartkit.errors import IncompleteManifestError, PartUploadError
from multipartkit.models import ExpectedObject
from multipartkit.session import MultipartSession, SessionState
from multipartkit.signer import SignedURLIssuer
from multipartkit.verifier import UploadVerifier
from multipartkit.workflow import split_payload, upload_payload

PAYLOAD_SIZE = 12_582_912


class TestPresignedMultipart:
    async def test_two_part_upload_round_trip(
        self, swept_store, live_uploader, make_target, strict_tags
    ):
        """Upload 12 MiB in two presigned parts and read it back."""
        target = make_target()
        payload = os.urandom(PAYLOAD_SIZE)
        try:
            result = await upload_payload(swept_store, live_uploader, target, payload, 2)
            assert "-" in result.etag

            await UploadVerifier(swept_store, strict_tags=strict_tags).verify(
                target.bucket,
                target.key,
                ExpectedObject(content_length=PAYLOAD_SIZE, tags=target.tags, parts_count=2),
            )
            assert await swept_store.get_object(target.bucket, target.key) == payload
        finally:
            await swept_store.delete_object(target.bucket, target.key)

    async def test_incomplete_manifest_then_abort(self, swept_store, live_uploader, make_target):
        target = make_target()
        chunks = split_payload(os.urandom(PAYLOAD_SIZE), 2)
        session = await MultipartSession.open(swept_store, target, 2)
        signed = await SignedURLIssuer().issue(session, 1, timedelta(minutes=15))
        result = await live_uploader.upload(signed, chunks[0])
        session.add_part(1, result.etag)

        with pytest.raises(IncompleteManifestError):
            await session.complete()

        await session.abort()
        assert session.state is SessionState.ABORTED
        uploads = await swept_store.list_multipart_uploads(target.bucket, "random-")
        assert session.upload_id not in {u.upload_id for u in uploads}

    async def test_url_for_aborted_upload_is_rejected(
        self, swept_store, live_uploader, make_target
    ):
        session = await MultipartSession.open(swept_store, make_target(), 1)
        signed = await SignedURLIssuer().issue(session, 1, timedelta(minutes=15))
        await session.abort()

        with pytest.raises(PartUploadError) as exc_info:
            await live_uploader.upload(signed, b"late")
        assert exc_info.value.http_status == 404
