"""Command-line entry point: compress a set of images and export the results."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from image_compressor.format_utils import format_size
from image_compressor.logger import get_logger
from image_compressor.settings_manager import DEFAULT_SETTINGS_PATH


def _apply_cli_logging_options(argv: list[str]) -> list[str]:
    """Mirror --log-level/--log-cats into env vars so every logger picks them up."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    args, remaining = parser.parse_known_args(argv)
    if args.log_level:
        os.environ["IMAGE_COMPRESSOR_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["IMAGE_COMPRESSOR_LOG_CATS"] = args.log_cats
    return remaining


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-compressor",
        description="Compress images towards a target size and export the results.",
    )
    parser.add_argument("paths", nargs="+", help="Image files to compress")
    parser.add_argument("--target-kb", type=int, default=None, help="Target size per image in KB")
    parser.add_argument("--concurrency", type=int, default=None, help="Maximum parallel jobs")
    out = parser.add_mutually_exclusive_group()
    out.add_argument("--zip", dest="zip_path", help="Write all results into this ZIP archive")
    out.add_argument("--out-dir", help="Write each result as compressed_<name> into this folder")
    parser.add_argument("--settings", default=DEFAULT_SETTINGS_PATH, help="Settings JSON path")
    return parser


def _make_service():
    # Imported lazily so --help works without libvips installed.
    from image_compressor.pipeline.local_service import LocalProcessingService

    return LocalProcessingService()


async def _run(args: argparse.Namespace) -> int:
    from image_compressor.app.session import CompressorSession
    from image_compressor.pipeline import AssetStatus, ExportError, default_export_name, unique_names
    from image_compressor.settings_manager import SettingsManager

    logger = get_logger("main")
    service = _make_service()
    session = CompressorSession(
        service,
        SettingsManager(args.settings),
        target_size_kb=args.target_kb,
        concurrency=args.concurrency,
    )
    try:
        session.add_files([os.path.abspath(p) for p in args.paths])
        await session.ingestor.wait_hydrated()
        await session.start_compression()

        records = session.store.records()
        for r in records:
            if r.status is AssetStatus.SUCCEEDED:
                logger.info(
                    "%s: %s -> %s",
                    r.display_name,
                    format_size(r.original_size_bytes or 0),
                    format_size(r.result_size_bytes or 0),
                )
            else:
                logger.warning("%s: %s", r.display_name, r.error_message or r.status.value)

        try:
            if args.zip_path:
                await session.export_all(os.path.abspath(args.zip_path))
            elif args.out_dir:
                os.makedirs(args.out_dir, exist_ok=True)
                done = [r for r in records if r.status is AssetStatus.SUCCEEDED]
                # inputs from different folders may share a file name
                names = unique_names([default_export_name(r) for r in done])
                for r, name in zip(done, names):
                    await session.export_one(r.asset_id, os.path.join(args.out_dir, name))
        except ExportError as e:
            logger.error("export failed: %s", e)
            return 2

        return 0 if all(r.status is AssetStatus.SUCCEEDED for r in records) else 1
    finally:
        service.shutdown()


def main(argv: list[str] | None = None) -> int:
    remaining = _apply_cli_logging_options(list(sys.argv[1:] if argv is None else argv))
    args = build_parser().parse_args(remaining)
    if args.target_kb is not None and args.target_kb < 1:
        build_parser().error("--target-kb must be >= 1")
    if args.concurrency is not None and args.concurrency < 1:
        build_parser().error("--concurrency must be >= 1")
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
