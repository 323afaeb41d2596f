"""Shared pytest fixtures for multipartkit tests.

Every test runs against a MemoryObjectStore. Part PUTs travel over real
HTTP semantics through ``httpx.ASGITransport`` into the store's FastAPI
app, so presigned signatures and expiry are checked exactly as a remote
store would check them, without opening sockets.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from multipartkit.models import UploadTarget
from multipartkit.store.memory import DEFAULT_ENDPOINT, MemoryObjectStore
from multipartkit.uploader import PartUploader

BUCKET = "test-bucket"


class FakeClock:
    """A settable clock shared by the store and the test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryObjectStore:
    """A memory store with the test bucket and a small part-size floor."""
    s = MemoryObjectStore(min_part_size=0, clock=clock)
    s.create_bucket(BUCKET)
    return s


@pytest.fixture
async def http_client(store) -> AsyncClient:
    """An httpx client wired to the store's presigned-PUT app."""
    async with AsyncClient(
        transport=ASGITransport(app=store.app), base_url=DEFAULT_ENDPOINT
    ) as client:
        yield client


@pytest.fixture
async def uploader(http_client) -> PartUploader:
    async with PartUploader(client=http_client) as u:
        yield u


@pytest.fixture
def target() -> UploadTarget:
    return UploadTarget(bucket=BUCKET, key="random-test.bin", tags={"key": "value"})


@pytest.fixture
def make_payload():
    """Factory for deterministic payload bytes of a given size."""

    def _make(size: int) -> bytes:
        block = bytes(range(256))
        return (block * (size // 256 + 1))[:size]

    return _make
