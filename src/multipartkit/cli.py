"""CLI entry point for multipartkit."""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

from multipartkit import metrics
from multipartkit.config import MultipartKitConfig, load_config
from multipartkit.errors import MultipartError
from multipartkit.logging_config import configure_logging
from multipartkit.models import ExpectedObject, UploadTarget
from multipartkit.reconciler import SessionReconciler
from multipartkit.store import create_object_store
from multipartkit.store.base import ObjectStore
from multipartkit.uploader import PartUploader
from multipartkit.verifier import UploadVerifier
from multipartkit.workflow import make_object_key, upload_payload

logger = logging.getLogger("multipartkit")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="multipartkit",
        description="Presigned-URL multipart uploads to S3-compatible object stores",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: built-in defaults)",
    )
    parser.add_argument(
        "--bucket",
        type=str,
        default=None,
        help="Bucket name (overrides config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload a file through presigned part URLs")
    upload.add_argument("file", type=Path, help="File to upload")
    upload.add_argument("--key", type=str, default=None, help="Object key (default: timestamped key under the configured prefix)")
    upload.add_argument("--parts", type=int, default=None, help="Number of parts (overrides config)")
    upload.add_argument("--no-verify", action="store_true", help="Skip post-upload verification")
    upload.add_argument("--sweep", action="store_true", help="Abort abandoned uploads under the prefix before and after")
    upload.add_argument("--delete-after", action="store_true", help="Delete the object once verified")

    sweep = sub.add_parser("sweep", help="Abort abandoned multipart uploads under a prefix")
    sweep.add_argument("--prefix", type=str, default=None, help="Key prefix (overrides config)")
    sweep.add_argument("--older-than-minutes", type=int, default=None, help="Only abort uploads at least this old")

    verify = sub.add_parser("verify", help="Check a stored object's size, type and tags")
    verify.add_argument("key", type=str, help="Object key")
    verify.add_argument("--size", type=int, required=True, help="Expected content length in bytes")
    verify.add_argument("--parts", type=int, default=None, help="Expected part count, if the store reports one")

    return parser.parse_args(argv)


async def _cmd_upload(args: argparse.Namespace, config: MultipartKitConfig, store: ObjectStore) -> int:
    cfg = config.upload
    if not await store.bucket_exists(cfg.bucket):
        logger.error("Bucket %s does not exist, please create it", cfg.bucket)
        return 1

    try:
        payload = args.file.read_bytes()
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.file, exc)
        return 1
    part_count = args.parts or cfg.part_count
    if part_count < 1 or len(payload) < part_count:
        logger.error(
            "Cannot split %s (%d bytes) into %d parts", args.file, len(payload), part_count
        )
        return 1
    target = UploadTarget(
        bucket=cfg.bucket,
        key=args.key or make_object_key(cfg.key_prefix),
        content_type=cfg.content_type,
        tags=cfg.tags,
    )
    reconciler = SessionReconciler(store)

    if args.sweep:
        await reconciler.sweep(cfg.bucket, cfg.key_prefix)
    try:
        async with PartUploader(
            content_type=cfg.content_type, timeout=cfg.request_timeout_seconds
        ) as uploader:
            result = await upload_payload(
                store,
                uploader,
                target,
                payload,
                part_count,
                expiry=timedelta(seconds=cfg.signed_url_expiry_seconds),
                concurrency=cfg.concurrency,
                max_part_attempts=cfg.max_part_attempts,
            )
        logger.info("Uploaded %s/%s (%d bytes) etag=%s", cfg.bucket, result.target.key, result.size, result.etag)

        if not args.no_verify:
            verifier = UploadVerifier(store, strict_tags=cfg.strict_tags)
            await verifier.verify(
                cfg.bucket,
                target.key,
                ExpectedObject(
                    content_length=len(payload),
                    content_type=cfg.content_type,
                    tags=target.tags,
                    parts_count=part_count,
                ),
            )
        if args.delete_after:
            await store.delete_object(cfg.bucket, target.key)
            logger.info("Deleted %s/%s", cfg.bucket, target.key)
    except BaseException:
        if args.sweep:
            await _sweep_after_failure(reconciler, cfg.bucket, cfg.key_prefix)
        raise
    if args.sweep:
        await reconciler.sweep(cfg.bucket, cfg.key_prefix)
    print(target.key)
    return 0


async def _sweep_after_failure(reconciler: SessionReconciler, bucket: str, key_prefix: str) -> None:
    # The upload error is the one to report
    try:
        await reconciler.sweep(bucket, key_prefix)
    except MultipartError as exc:
        logger.warning("Cleanup sweep after failed upload: %s", exc)


async def _cmd_sweep(args: argparse.Namespace, config: MultipartKitConfig, store: ObjectStore) -> int:
    prefix = args.prefix if args.prefix is not None else config.upload.key_prefix
    older_than = (
        timedelta(minutes=args.older_than_minutes) if args.older_than_minutes is not None else None
    )
    aborted = await SessionReconciler(store).sweep(config.upload.bucket, prefix, older_than=older_than)
    print(aborted)
    return 0


async def _cmd_verify(args: argparse.Namespace, config: MultipartKitConfig, store: ObjectStore) -> int:
    cfg = config.upload
    verifier = UploadVerifier(store, strict_tags=cfg.strict_tags)
    await verifier.verify(
        cfg.bucket,
        args.key,
        ExpectedObject(
            content_length=args.size,
            content_type=cfg.content_type,
            tags=cfg.tags,
            parts_count=args.parts,
        ),
    )
    return 0


_COMMANDS = {
    "upload": _cmd_upload,
    "sweep": _cmd_sweep,
    "verify": _cmd_verify,
}


async def run(args: argparse.Namespace, config: MultipartKitConfig, store: ObjectStore | None = None) -> int:
    """Run one subcommand against a store, returning the exit code.

    Args:
        args: Parsed arguments.
        config: Effective configuration (overrides applied).
        store: An already-initialized store; if omitted one is created
            from config and closed afterwards.
    """
    owns_store = store is None
    if store is None:
        store = create_object_store(config.store)
        await store.init()
    try:
        return await _COMMANDS[args.command](args, config, store)
    except MultipartError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        if owns_store:
            await store.close()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the multipartkit CLI.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.config is None:
        config = MultipartKitConfig()
    else:
        try:
            config = load_config(args.config)
        except FileNotFoundError:
            logger.error("Config file not found: %s", args.config)
            sys.exit(1)
        except Exception as exc:
            logger.error("Failed to load config: %s", exc)
            sys.exit(1)

    # Apply CLI overrides
    if args.bucket is not None:
        config.upload.bucket = args.bucket
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)
    if config.observability.metrics:
        metrics.init_metrics()

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
