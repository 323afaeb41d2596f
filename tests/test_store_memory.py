"""Tests for MemoryObjectStore and its presigned-PUT app."""

import hashlib
import urllib.parse
from datetime import timedelta

import pytest

from multipartkit.errors import (
    EntityTooSmall,
    InvalidArgument,
    InvalidPart,
    InvalidPartOrder,
    NoSuchBucket,
    NoSuchKey,
    NoSuchUpload,
)
from multipartkit.models import CompletedPart
from multipartkit.store.memory import MemoryObjectStore, render_error

BUCKET = "test-bucket"


async def _create(store, key="obj.bin", tags=frozenset()) -> str:
    return await store.create_multipart_upload(BUCKET, key, "application/octet-stream", tags)


class TestBuckets:
    """Tests for bucket bookkeeping."""

    async def test_bucket_exists(self, store):
        assert await store.bucket_exists(BUCKET)
        assert not await store.bucket_exists("missing")

    async def test_create_upload_in_missing_bucket(self, store):
        with pytest.raises(NoSuchBucket):
            await store.create_multipart_upload("missing", "k", "", frozenset())

    async def test_create_bucket_is_idempotent(self, store):
        store.create_bucket(BUCKET)
        assert await store.bucket_exists(BUCKET)


class TestMultipart:
    """Tests for the multipart operations."""

    async def test_upload_ids_are_unique(self, store):
        assert await _create(store) != await _create(store)

    async def test_complete_composite_etag(self, store):
        upload_id = await _create(store)
        e1 = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"a")
        e2 = store._put_part(BUCKET, "obj.bin", upload_id, 2, b"b")

        etag = await store.complete_multipart_upload(
            BUCKET, "obj.bin", upload_id, [CompletedPart(1, e1), CompletedPart(2, e2)]
        )

        md5s = hashlib.md5(b"a").digest() + hashlib.md5(b"b").digest()
        assert etag == f'"{hashlib.md5(md5s).hexdigest()}-2"'
        head = await store.head_object(BUCKET, "obj.bin")
        assert head.etag == etag
        assert head.parts_count == 2
        assert head.content_length == 2

    async def test_complete_rejects_descending_order(self, store):
        upload_id = await _create(store)
        e1 = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"a")
        e2 = store._put_part(BUCKET, "obj.bin", upload_id, 2, b"b")
        with pytest.raises(InvalidPartOrder):
            await store.complete_multipart_upload(
                BUCKET, "obj.bin", upload_id, [CompletedPart(2, e2), CompletedPart(1, e1)]
            )

    async def test_complete_rejects_unknown_part(self, store):
        upload_id = await _create(store)
        with pytest.raises(InvalidPart):
            await store.complete_multipart_upload(
                BUCKET, "obj.bin", upload_id, [CompletedPart(1, '"abc"')]
            )

    async def test_complete_rejects_empty_manifest(self, store):
        upload_id = await _create(store)
        with pytest.raises(InvalidArgument):
            await store.complete_multipart_upload(BUCKET, "obj.bin", upload_id, [])

    async def test_complete_accepts_unquoted_etag(self, store):
        upload_id = await _create(store)
        etag = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"a")
        await store.complete_multipart_upload(
            BUCKET, "obj.bin", upload_id, [CompletedPart(1, etag.strip('"'))]
        )

    async def test_min_part_size_skips_last_part(self, clock):
        store = MemoryObjectStore(min_part_size=4, clock=clock)
        store.create_bucket(BUCKET)
        upload_id = await _create(store)
        e1 = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"aaaa")
        e2 = store._put_part(BUCKET, "obj.bin", upload_id, 2, b"b")
        await store.complete_multipart_upload(
            BUCKET, "obj.bin", upload_id, [CompletedPart(1, e1), CompletedPart(2, e2)]
        )

    async def test_min_part_size_enforced(self, clock):
        store = MemoryObjectStore(min_part_size=4, clock=clock)
        store.create_bucket(BUCKET)
        upload_id = await _create(store)
        e1 = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"aa")
        e2 = store._put_part(BUCKET, "obj.bin", upload_id, 2, b"bbbb")
        with pytest.raises(EntityTooSmall):
            await store.complete_multipart_upload(
                BUCKET, "obj.bin", upload_id, [CompletedPart(1, e1), CompletedPart(2, e2)]
            )

    async def test_abort_unknown_upload(self, store):
        with pytest.raises(NoSuchUpload):
            await store.abort_multipart_upload(BUCKET, "obj.bin", "nope")

    async def test_upload_id_bound_to_key(self, store):
        upload_id = await _create(store, key="a.bin")
        with pytest.raises(NoSuchUpload):
            await store.abort_multipart_upload(BUCKET, "b.bin", upload_id)

    async def test_list_uploads_by_prefix(self, store):
        await _create(store, key="random-1")
        await _create(store, key="other")
        uploads = await store.list_multipart_uploads(BUCKET, "random-")
        assert [u.key for u in uploads] == ["random-1"]
        assert uploads[0].initiated is not None

    async def test_tags_copied_to_object(self, store):
        upload_id = await _create(store, tags=frozenset({("key", "value")}))
        etag = store._put_part(BUCKET, "obj.bin", upload_id, 1, b"a")
        await store.complete_multipart_upload(BUCKET, "obj.bin", upload_id, [CompletedPart(1, etag)])
        assert await store.get_object_tagging(BUCKET, "obj.bin") == frozenset({("key", "value")})


class TestObjects:
    """Tests for object reads and deletes."""

    async def test_missing_object(self, store):
        with pytest.raises(NoSuchKey):
            await store.head_object(BUCKET, "nope")
        with pytest.raises(NoSuchKey):
            await store.get_object(BUCKET, "nope")

    async def test_delete_is_idempotent(self, store):
        await store.delete_object(BUCKET, "nope")


class TestPresignedPut:
    """Tests for the HTTP surface."""

    async def test_presign_does_not_check_upload(self, store):
        signed = await store.presign_upload_part(BUCKET, "obj.bin", "unknown", 1, 60)
        assert signed.upload_id == "unknown"

    async def test_put_stores_part(self, store, http_client):
        upload_id = await _create(store)
        signed = await store.presign_upload_part(BUCKET, "obj.bin", upload_id, 1, 60)
        resp = await http_client.put(signed.url, content=b"hello")
        assert resp.status_code == 200
        assert resp.headers["etag"] == f'"{hashlib.md5(b"hello").hexdigest()}"'

    async def test_unsigned_put_is_rejected(self, store, http_client):
        upload_id = await _create(store)
        query = urllib.parse.urlencode({"partNumber": "1", "uploadId": upload_id})
        resp = await http_client.put(f"/{BUCKET}/obj.bin?{query}", content=b"x")
        assert resp.status_code == 400
        assert b"<Code>AuthorizationQueryParametersError</Code>" in resp.content

    async def test_expired_put_renders_xml(self, store, http_client, clock):
        upload_id = await _create(store)
        signed = await store.presign_upload_part(BUCKET, "obj.bin", upload_id, 1, 60)
        clock.advance(minutes=2)

        resp = await http_client.put(signed.url, content=b"x")

        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/xml")
        assert b"<Code>AccessDenied</Code>" in resp.content
        assert b"<Message>Request has expired.</Message>" in resp.content

    async def test_part_number_out_of_range(self, store, http_client):
        upload_id = await _create(store)
        signed = await store.presign_upload_part(BUCKET, "obj.bin", upload_id, 10001, 60)
        resp = await http_client.put(signed.url, content=b"x")
        assert resp.status_code == 400
        assert b"<Code>InvalidArgument</Code>" in resp.content

    async def test_expires_at(self, store, clock):
        signed = await store.presign_upload_part(BUCKET, "obj.bin", "u", 1, 300)
        assert signed.expires_at == clock.now + timedelta(seconds=300)


class TestRenderError:
    """Tests for render_error()."""

    def test_basic(self):
        xml = render_error("NoSuchUpload", "gone", "/b/k", {"UploadId": "u1"})
        assert "<Code>NoSuchUpload</Code>" in xml
        assert "<Resource>/b/k</Resource>" in xml
        assert "<UploadId>u1</UploadId>" in xml

    def test_escapes_message(self):
        assert "<Message>a &lt; b</Message>" in render_error("X", "a < b")
