"""
multipartkit E2E Test Configuration

Tests run against a live S3-compatible endpoint (LocalStack, MinIO, AWS).
They are skipped unless an endpoint is configured:

    MULTIPARTKIT_E2E_ENDPOINT=http://127.0.0.1:4566
    MULTIPARTKIT_E2E_ACCESS_KEY=test
    MULTIPARTKIT_E2E_SECRET_KEY=test
    MULTIPARTKIT_E2E_REGION=us-east-1
    MULTIPARTKIT_E2E_BUCKET=test-bucket
    MULTIPARTKIT_E2E_STRICT_TAGS=0      # LocalStack drops upload-time tags

Use ENDPOINT=aws to run against real S3 with the default credential chain.
The bucket must already exist.
"""

import os

import pytest

from multipartkit.models import UploadTarget
from multipartkit.reconciler import SessionReconciler
from multipartkit.store.s3 import S3ObjectStore
from multipartkit.uploader import PartUploader
from multipartkit.workflow import make_object_key

ENDPOINT = os.environ.get("MULTIPARTKIT_E2E_ENDPOINT", "")
ACCESS_KEY = os.environ.get("MULTIPARTKIT_E2E_ACCESS_KEY", "test")
SECRET_KEY = os.environ.get("MULTIPARTKIT_E2E_SECRET_KEY", "test")
REGION = os.environ.get("MULTIPARTKIT_E2E_REGION", "us-east-1")
BUCKET = os.environ.get("MULTIPARTKIT_E2E_BUCKET", "test-bucket")
STRICT_TAGS = os.environ.get("MULTIPARTKIT_E2E_STRICT_TAGS", "1") not in ("0", "false", "no")
KEY_PREFIX = "random-"
TAGS = {"key": "value"}


def pytest_collection_modifyitems(config, items):
    skip = pytest.mark.skip(reason="MULTIPARTKIT_E2E_ENDPOINT not set")
    for item in items:
        if "e2e" in item.nodeid.split("::")[0]:
            item.add_marker(pytest.mark.e2e)
            if not ENDPOINT:
                item.add_marker(skip)


@pytest.fixture
async def s3_store():
    """An initialized S3ObjectStore; skips if the bucket is missing."""
    if ENDPOINT == "aws":
        store = S3ObjectStore(region=REGION)
    else:
        store = S3ObjectStore(
            region=REGION,
            endpoint_url=ENDPOINT,
            use_path_style=True,
            access_key_id=ACCESS_KEY,
            secret_access_key=SECRET_KEY,
        )
    await store.init()
    try:
        if not await store.bucket_exists(BUCKET):
            pytest.skip(f"Bucket {BUCKET} does not exist, please create it")
        yield store
    finally:
        await store.close()


@pytest.fixture
async def swept_store(s3_store):
    """Sweep abandoned uploads under the test prefix before and after."""
    reconciler = SessionReconciler(s3_store)
    await reconciler.sweep(BUCKET, KEY_PREFIX)
    yield s3_store
    await reconciler.sweep(BUCKET, KEY_PREFIX)


@pytest.fixture
async def live_uploader():
    async with PartUploader(timeout=60.0) as uploader:
        yield uploader


@pytest.fixture
def strict_tags() -> bool:
    return STRICT_TAGS


@pytest.fixture
def make_target():
    """Factory for timestamped, tagged targets under the test prefix."""

    def _make() -> UploadTarget:
        return UploadTarget(bucket=BUCKET, key=make_object_key(KEY_PREFIX), tags=TAGS)

    return _make
