"""Object store collaborators for multipartkit."""

import logging

from multipartkit.config import StoreConfig
from multipartkit.store.base import ObjectStore
from multipartkit.store.memory import MemoryObjectStore

logger = logging.getLogger(__name__)


def create_object_store(config: StoreConfig) -> ObjectStore:
    """Create an object store instance based on configuration.

    Supports the 's3' and 'memory' backends. The memory backend lives in
    this process and starts with no buckets; it exists for tests, which reach
    its presigned-PUT app through ``httpx.ASGITransport``.

    Args:
        config: The store section of the configuration.

    Returns:
        An uninitialized object store; call ``init()`` before use.
    """
    backend = config.backend
    if backend == "s3":
        from multipartkit.store.s3 import S3ObjectStore

        return S3ObjectStore(
            region=config.region,
            endpoint_url=config.endpoint_url,
            use_path_style=config.use_path_style,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
        )
    elif backend == "memory":
        logger.warning("Using the in-process memory store; it starts empty and is meant for tests")
        kwargs = {"region": config.region}
        if config.endpoint_url:
            kwargs["endpoint"] = config.endpoint_url
        if config.access_key_id and config.secret_access_key:
            kwargs["access_key_id"] = config.access_key_id
            kwargs["secret_access_key"] = config.secret_access_key
        return MemoryObjectStore(**kwargs)
    else:
        raise ValueError(f"Unknown store backend: {backend}")


__all__ = ["MemoryObjectStore", "ObjectStore", "create_object_store"]
