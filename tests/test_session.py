"""Tests for the MultipartSession state machine."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from multipartkit.errors import (
    IncompleteManifestError,
    InvalidPart,
    InvalidPartNumber,
    SessionStateError,
)
from multipartkit.session import MultipartSession, SessionState


async def _open(store, target, part_count=2) -> MultipartSession:
    return await MultipartSession.open(store, target, part_count)


def _store_part(store, session, part_number, data) -> str:
    """Put part bytes straight into the memory store, returning the ETag."""
    return store._put_part(
        session.target.bucket, session.target.key, session.upload_id, part_number, data
    )


class TestOpen:
    """Tests for MultipartSession.open()."""

    async def test_open_creates_upload(self, store, target):
        session = await _open(store, target)
        assert session.state is SessionState.CREATED
        assert session.upload_id
        uploads = await store.list_multipart_uploads(target.bucket)
        assert [u.upload_id for u in uploads] == [session.upload_id]

    async def test_open_rejects_zero_parts(self, store, target):
        """A non-positive part count fails before the store is called."""
        with pytest.raises(ValueError):
            await _open(store, target, part_count=0)
        assert await store.list_multipart_uploads(target.bucket) == []

    async def test_repr_mentions_state(self, store, target):
        session = await _open(store, target)
        assert "state=Created" in repr(session)
        assert "parts=0/2" in repr(session)


class TestAddPart:
    """Tests for add_part()."""

    async def test_first_part_moves_to_pending(self, store, target):
        session = await _open(store, target)
        assert session.add_part(1, '"etag-1"') is True
        assert session.state is SessionState.PARTS_PENDING
        assert session.manifest == {1: '"etag-1"'}
        assert session.missing_parts() == [2]

    async def test_manifest_is_a_copy(self, store, target):
        session = await _open(store, target)
        session.add_part(1, '"a"')
        snapshot = session.manifest
        snapshot[2] = '"b"'
        assert session.manifest == {1: '"a"'}

    async def test_overwrite_replaces_etag(self, store, target):
        """A retried part replaces the previous ETag."""
        session = await _open(store, target)
        session.add_part(1, '"first"')
        session.add_part(1, '"second"')
        assert session.manifest == {1: '"second"'}

    @pytest.mark.parametrize("part_number", [0, 3, -1])
    async def test_out_of_range_part(self, store, target, part_number):
        session = await _open(store, target)
        with pytest.raises(InvalidPartNumber):
            session.add_part(part_number, '"x"')
        assert session.state is SessionState.CREATED

    async def test_invalid_part_number_is_value_error(self, store, target):
        session = await _open(store, target)
        with pytest.raises(ValueError):
            session.add_part(5, '"x"')

    async def test_concurrent_reports(self, store, target):
        """Parts reported from many threads all land in the manifest."""
        session = await _open(store, target, part_count=200)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda pn: session.add_part(pn, f'"e{pn}"'), range(1, 201)))
        assert all(results)
        assert len(session.manifest) == 200
        assert session.missing_parts() == []


class TestComplete:
    """Tests for complete()."""

    async def test_complete_with_all_parts(self, store, target):
        session = await _open(store, target)
        for pn, data in ((1, b"hello "), (2, b"world")):
            session.add_part(pn, _store_part(store, session, pn, data))

        etag = await session.complete()

        assert session.state is SessionState.COMPLETED
        assert session.etag == etag
        assert etag.startswith('"') and etag.endswith('-2"')
        assert await store.get_object(target.bucket, target.key) == b"hello world"
        assert await store.list_multipart_uploads(target.bucket) == []

    async def test_complete_submits_ascending_manifest(self, store, target):
        """Parts reported out of order are still submitted in order."""
        session = await _open(store, target, part_count=3)
        for pn, data in ((3, b"c"), (1, b"a"), (2, b"b")):
            session.add_part(pn, _store_part(store, session, pn, data))

        await session.complete()
        assert await store.get_object(target.bucket, target.key) == b"abc"

    async def test_incomplete_manifest_makes_no_store_call(self, store, target):
        session = await _open(store, target)
        session.add_part(1, _store_part(store, session, 1, b"only"))

        with pytest.raises(IncompleteManifestError) as exc_info:
            await session.complete()

        assert exc_info.value.missing == [2]
        assert store.complete_calls == []
        assert session.state is SessionState.PARTS_PENDING

    async def test_empty_manifest(self, store, target):
        session = await _open(store, target)
        with pytest.raises(IncompleteManifestError) as exc_info:
            await session.complete()
        assert exc_info.value.missing == [1, 2]
        assert session.state is SessionState.CREATED

    async def test_complete_twice(self, store, target):
        session = await _open(store, target, part_count=1)
        session.add_part(1, _store_part(store, session, 1, b"x"))
        await session.complete()
        with pytest.raises(SessionStateError):
            await session.complete()
        assert store.complete_calls == [session.upload_id]

    async def test_add_part_after_complete(self, store, target):
        session = await _open(store, target, part_count=1)
        session.add_part(1, _store_part(store, session, 1, b"x"))
        await session.complete()
        with pytest.raises(SessionStateError):
            session.add_part(1, '"late"')

    async def test_rejected_completion_aborts(self, store, target):
        """A store-rejected completion leaves the session Aborted."""
        session = await _open(store, target)
        session.add_part(1, _store_part(store, session, 1, b"a"))
        session.add_part(2, '"not-the-real-etag"')
        _store_part(store, session, 2, b"b")

        with pytest.raises(InvalidPart):
            await session.complete()

        assert session.state is SessionState.ABORTED
        assert store.abort_calls == [session.upload_id]
        assert await store.list_multipart_uploads(target.bucket) == []


class TestAbort:
    """Tests for abort()."""

    async def test_abort_removes_upload(self, store, target):
        session = await _open(store, target)
        await session.abort()
        assert session.state is SessionState.ABORTED
        assert store.abort_calls == [session.upload_id]
        assert await store.list_multipart_uploads(target.bucket) == []

    async def test_abort_is_idempotent(self, store, target):
        session = await _open(store, target)
        await session.abort()
        await session.abort()
        assert store.abort_calls == [session.upload_id]

    async def test_late_part_is_discarded(self, store, target):
        session = await _open(store, target)
        session.add_part(1, '"e1"')
        await session.abort()

        assert session.add_part(2, '"e2"') is False
        assert session.manifest == {1: '"e1"'}
        assert session.state is SessionState.ABORTED

    async def test_abort_after_complete(self, store, target):
        session = await _open(store, target, part_count=1)
        session.add_part(1, _store_part(store, session, 1, b"x"))
        await session.complete()
        with pytest.raises(SessionStateError):
            await session.abort()
        assert store.abort_calls == []

    async def test_complete_after_abort(self, store, target):
        session = await _open(store, target, part_count=1)
        session.add_part(1, '"e1"')
        await session.abort()
        with pytest.raises(SessionStateError):
            await session.complete()
        assert store.complete_calls == []

    async def test_abort_tolerates_vanished_upload(self, store, target):
        """An upload already swept from the store still aborts cleanly."""
        session = await _open(store, target)
        await store.abort_multipart_upload(target.bucket, target.key, session.upload_id)

        await session.abort()
        assert session.state is SessionState.ABORTED


class TestContextManager:
    """Tests for ``async with session``."""

    async def test_aborts_on_error(self, store, target):
        session = await _open(store, target)
        with pytest.raises(RuntimeError):
            async with session:
                raise RuntimeError("boom")
        assert session.state is SessionState.ABORTED
        assert store.abort_calls == [session.upload_id]

    async def test_no_abort_after_completion(self, store, target):
        session = await _open(store, target, part_count=1)
        async with session:
            session.add_part(1, _store_part(store, session, 1, b"x"))
            await session.complete()
        assert session.state is SessionState.COMPLETED
        assert store.abort_calls == []

    async def test_clean_exit_leaves_open_session(self, store, target):
        session = await _open(store, target)
        async with session:
            pass
        assert session.state is SessionState.CREATED
