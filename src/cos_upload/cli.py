"""CLI entry point for cos-upload."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from cos_upload import metrics
from cos_upload.config import CosConfig, load_config
from cos_upload.errors import CosError
from cos_upload.logging_config import configure_logging
from cos_upload.uploader import Uploader

logger = logging.getLogger("cos_upload")


def _parse_meta(value: str) -> tuple[str, str]:
    """Parse a ``key=value`` metadata argument."""
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
    return key, val


def _positive_int(value: str) -> int:
    """Parse an integer argument that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="cos-upload",
        description="cos-upload - upload files to Tencent Cloud COS",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: read TENCENT_* environment variables)",
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

    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Upload a local file")
    upload.add_argument("path", type=Path, help="Local file to upload")
    upload.add_argument("key", help="Destination object key")
    upload.add_argument(
        "--meta",
        type=_parse_meta,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Object metadata, sent as x-cos-meta-KEY (repeatable)",
    )
    upload.add_argument(
        "--concurrency",
        type=_positive_int,
        default=None,
        help="Parts uploaded in parallel for multipart uploads (overrides config)",
    )

    head = commands.add_parser("head", help="Print object metadata as JSON")
    head.add_argument("key", help="Object key")

    delete = commands.add_parser("delete", help="Delete an object")
    delete.add_argument("key", help="Object key")

    abort = commands.add_parser("abort", help="Abort an unfinished multipart upload")
    abort.add_argument("key", help="Object key")
    abort.add_argument("upload_id", help="Upload id of the session to discard")

    return parser.parse_args(argv)


def _load(args: argparse.Namespace) -> CosConfig:
    if args.config is not None:
        return load_config(args.config)
    return CosConfig.from_env()


async def _run(args: argparse.Namespace, config: CosConfig) -> None:
    async with Uploader(config) as uploader:
        if args.command == "upload":
            url = await uploader.upload_file(
                args.path, args.key, dict(args.meta), concurrency=args.concurrency
            )
            print(url)
        elif args.command == "head":
            headers = await uploader.get_object_metadata(args.key)
            print(json.dumps(headers, indent=2, sort_keys=True))
        elif args.command == "delete":
            await uploader.delete_object(args.key)
        elif args.command == "abort":
            await uploader.abort_upload(args.key, args.upload_id)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the cos-upload CLI.

    Loads configuration from a YAML file or the environment, configures
    logging, and runs one command. Exits with status 1 on any COS error.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = _load(args)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except CosError as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    configure_logging(
        level=args.log_level or config.logging.level,
        fmt=args.log_format or config.logging.format,
    )
    if config.metrics.enabled:
        metrics.init_metrics()

    try:
        asyncio.run(_run(args, config))
    except CosError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
