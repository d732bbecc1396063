#!/usr/bin/env python3
"""
Command-line entry point for Omnibucket.

Operates on providers stored in the metadata file:

    omnibucket providers list
    omnibucket providers add provider.json
    omnibucket ls <provider-id> <bucket> --prefix photos/
    omnibucket upload <provider-id> <bucket> a.jpg b.png --preset content --blurhash
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

from omnibucket.core.app import StorageApp
from omnibucket.models.storage_models import ListObjectsOptions
from omnibucket.models.upload_models import UploadOptions
from omnibucket.storage.cloud_storage import StorageError
from omnibucket.utils.env_config import AppSettings, get_settings
from omnibucket.utils.validators import ValidationException

logger = structlog.get_logger(__name__)


def configure_logging(settings: AppSettings) -> None:
    """Configure stdlib logging and structlog from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    renderer = (
        structlog.processors.JSONRenderer() if settings.log_json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str))


# Commands


def cmd_providers(app: StorageApp, args: argparse.Namespace) -> int:
    if args.action == "add":
        data = json.loads(Path(args.path).expanduser().read_text(encoding="utf-8"))
        provider = app.add_provider(data)
        print(provider.id)
        return 0
    if args.action == "remove":
        return 0 if app.providers.delete(args.provider_id) else 1
    for provider in app.providers.find_all():
        print(f"{provider.id}\t{provider.type}\t{provider.name}")
    return 0


async def cmd_test(app: StorageApp, args: argparse.Namespace) -> int:
    result = await app.storage_service.test_connection(app.get_provider(args.provider_id))
    if result.connected:
        print("connected")
        return 0
    print(f"error={result.error}", file=sys.stderr)
    return 1


async def cmd_buckets(app: StorageApp, args: argparse.Namespace) -> int:
    buckets = await app.storage_service.list_buckets(app.get_provider(args.provider_id))
    for bucket in buckets:
        print(f"{bucket.name}\t{bucket.creation_date or ''}")
    return 0


async def cmd_ls(app: StorageApp, args: argparse.Namespace) -> int:
    options = ListObjectsOptions(
        prefix=args.prefix, cursor=args.cursor, max_keys=args.max_keys or app.settings.list_page_size
    )
    result = await app.storage_service.list_objects(app.get_provider(args.provider_id), args.bucket, options)
    for item in result.files:
        size = "-" if item.is_folder else str(item.size)
        print(f"{item.type.value}\t{size}\t{item.modified or ''}\t{item.id}")
    if result.has_more:
        print(f"next_cursor={result.next_cursor}", file=sys.stderr)
    return 0


async def cmd_upload(app: StorageApp, args: argparse.Namespace) -> int:
    if args.concurrency is not None:
        app.orchestrator.set_max_concurrent(args.concurrency)
    defaults = app.default_upload_options()
    options = UploadOptions(
        keep_original=args.keep_original or defaults.keep_original,
        generate_blurhash=args.blurhash or defaults.generate_blurhash,
    )
    summary = await app.upload_paths(
        args.provider_id, args.bucket, args.prefix, [Path(p) for p in args.paths], args.preset, options
    )
    for task in summary.tasks:
        line = f"{task.status.value}\t{task.key}"
        print(f"{line}\t{task.error}" if task.error else line)
    print(f"completed={summary.completed} errors={summary.failed}", file=sys.stderr)
    return 1 if summary.failed or summary.failed_plans else 0


async def cmd_url(app: StorageApp, args: argparse.Namespace) -> int:
    provider = app.get_provider(args.provider_id)
    if args.plain:
        print(app.storage_service.get_public_object_url(provider, args.bucket, args.key))
        return 0
    result = await app.storage_service.get_object_url(provider, args.bucket, args.key, args.expires_in)
    print(result.url)
    return 0


async def cmd_rm(app: StorageApp, args: argparse.Namespace) -> int:
    provider = app.get_provider(args.provider_id)
    if args.folder:
        exit_code = 0
        for key in args.keys:
            result = await app.storage_service.delete_object(provider, args.bucket, key, is_folder=True)
            print(f"deleted={result.deleted_count}\t{key}")
            if not result.success:
                print(f"error={result.error}\t{key}", file=sys.stderr)
                exit_code = 1
        return exit_code

    if len(args.keys) == 1:
        result = await app.storage_service.delete_object(provider, args.bucket, args.keys[0])
    else:
        result = await app.storage_service.delete_objects(provider, args.bucket, args.keys)
    print(f"deleted={result.deleted_count}")
    if not result.success:
        print(f"error={result.error}", file=sys.stderr)
        return 1
    return 0


async def cmd_download(app: StorageApp, args: argparse.Namespace) -> int:
    provider = app.get_provider(args.provider_id)
    result = await app.storage_service.download_to_file(provider, args.bucket, args.key, args.destination)
    if not result.success:
        print(f"error={result.error}", file=sys.stderr)
        return 1
    print(result.file_path)
    return 0


COMMANDS = {
    "test": cmd_test,
    "buckets": cmd_buckets,
    "ls": cmd_ls,
    "upload": cmd_upload,
    "url": cmd_url,
    "rm": cmd_rm,
    "download": cmd_download,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="omnibucket", description="Manage objects across cloud storage providers")
    subparsers = parser.add_subparsers(dest="command", required=True)

    providers = subparsers.add_parser("providers", help="List, add or remove stored providers")
    providers.add_argument("action", choices=["list", "add", "remove"], nargs="?", default="list")
    providers.add_argument("path", nargs="?", help="JSON descriptor file for 'add'")
    providers.add_argument("--provider-id", help="Provider to remove")

    test = subparsers.add_parser("test", help="Check credentials and connectivity")
    test.add_argument("provider_id")

    buckets = subparsers.add_parser("buckets", help="List buckets")
    buckets.add_argument("provider_id")

    ls = subparsers.add_parser("ls", help="List one level of a bucket")
    ls.add_argument("provider_id")
    ls.add_argument("bucket")
    ls.add_argument("--prefix", default="")
    ls.add_argument("--cursor")
    ls.add_argument("--max-keys", type=int)

    upload = subparsers.add_parser("upload", help="Upload local files")
    upload.add_argument("provider_id")
    upload.add_argument("bucket")
    upload.add_argument("paths", nargs="+")
    upload.add_argument("--prefix", default="")
    upload.add_argument("--preset", help="Compression preset for images")
    upload.add_argument("--keep-original", action="store_true")
    upload.add_argument("--blurhash", action="store_true")
    upload.add_argument("--concurrency", type=int)

    url = subparsers.add_parser("url", help="Print a signed or public URL for an object")
    url.add_argument("provider_id")
    url.add_argument("bucket")
    url.add_argument("key")
    url.add_argument("--expires-in", type=int)
    url.add_argument("--plain", action="store_true", help="Unsigned URL, using the bucket's custom domain if set")

    rm = subparsers.add_parser("rm", help="Delete objects or a folder")
    rm.add_argument("provider_id")
    rm.add_argument("bucket")
    rm.add_argument("keys", nargs="+")
    rm.add_argument("--folder", action="store_true", help="Treat every key as a folder and delete its contents")

    download = subparsers.add_parser("download", help="Download an object to a local file")
    download.add_argument("provider_id")
    download.add_argument("bucket")
    download.add_argument("key")
    download.add_argument("destination")

    return parser


async def run_command(app: StorageApp, args: argparse.Namespace) -> int:
    try:
        return await COMMANDS[args.command](app, args)
    finally:
        await app.shutdown()


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        app = StorageApp(settings)
        if args.command == "providers":
            if args.action == "add" and not args.path:
                raise ValueError("providers add needs a descriptor file")
            exit_code = cmd_providers(app, args)
        else:
            exit_code = asyncio.run(run_command(app, args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except (StorageError, ValidationException, ValueError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"error={e}", file=sys.stderr)
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
