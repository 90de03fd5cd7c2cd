# src/main.py — v1
"""CLI entry point — preview and signature commands.

Usage:
    permitpreview preview <records.json> <record_id> [-o out.pdf] [options]
    permitpreview signature <records.json> <record_id>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from permitpreview.version import __version__

if TYPE_CHECKING:
    from permitpreview.api.models import PreviewResult

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="permitpreview",
        description=f"permitpreview v{__version__} — Permit application preview builder",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- preview ---
    p_preview = subparsers.add_parser(
        "preview", help="Build the preview document of one record",
    )
    p_preview.add_argument("records", type=Path, help="JSON file with records")
    p_preview.add_argument("record_id", help="Record identifier")
    p_preview.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output PDF path (default: ./<record_id>.pdf)",
    )
    p_preview.add_argument(
        "--converter-url", default=None,
        help="Override CONVERTER_URL (empty string forces the fallback)",
    )
    p_preview.add_argument(
        "--fallback-url", default=None,
        help="Override FALLBACK_DOCX_URL",
    )
    p_preview.add_argument(
        "--proxy-url", default=None,
        help="Override ATTACHMENT_PROXY_URL",
    )
    p_preview.set_defaults(func=_cmd_preview)

    # --- signature ---
    p_signature = subparsers.add_parser(
        "signature", help="Print the cache signature of one record",
    )
    p_signature.add_argument("records", type=Path, help="JSON file with records")
    p_signature.add_argument("record_id", help="Record identifier")
    p_signature.set_defaults(func=_cmd_signature)

    return parser


async def _cmd_preview(args: argparse.Namespace) -> int:
    """Generate one preview and write its deliverable."""
    from permitpreview.api.facade import create_preview_service
    from permitpreview.config.settings import load_settings
    from permitpreview.pipeline.orchestrator import PreviewUnavailableError
    from permitpreview.records.source import JsonFileRecordSource, RecordNotFoundError

    records_path: Path = args.records
    if not records_path.exists():
        logger.error("File not found: %s", records_path)
        return 1

    overrides: dict[str, object] = {}
    if args.converter_url is not None:
        overrides["converter_url"] = args.converter_url
    if args.fallback_url is not None:
        overrides["fallback_docx_url"] = args.fallback_url
    if args.proxy_url is not None:
        overrides["attachment_proxy_url"] = args.proxy_url
    settings = load_settings(**overrides)

    service = create_preview_service(settings, records=JsonFileRecordSource(records_path))
    output: Path = args.output or Path(f"{args.record_id}.pdf")
    try:
        async with service.open_session(view_id="cli", on_notice=_print_notice) as session:
            try:
                result = await session.request_preview(args.record_id)
            except RecordNotFoundError as e:
                logger.error("%s", e)
                return 1
            except PreviewUnavailableError as e:
                logger.error("Unable to produce preview: %s", e)
                return 2

            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(result.deliverable.read())
            _print_result_summary(result, output)
    finally:
        service.shutdown()
    return 0


async def _cmd_signature(args: argparse.Namespace) -> int:
    """Print the signature of one record."""
    from permitpreview.cache.signature import compute_signature
    from permitpreview.records.source import JsonFileRecordSource

    records_path: Path = args.records
    if not records_path.exists():
        logger.error("File not found: %s", records_path)
        return 1

    record = await JsonFileRecordSource(records_path).get(args.record_id)
    if record is None:
        logger.error("Record not found: %s", args.record_id)
        return 1
    print(compute_signature(record))
    return 0


def _print_notice(notice: str) -> None:
    print(f"Note: {notice}", file=sys.stderr)


def _print_result_summary(result: PreviewResult, output: Path) -> None:
    """Print a human-readable summary of a PreviewResult."""
    deliverable = result.deliverable
    source = "fallback" if result.used_fallback else "primary"
    print("\nPreview written:")
    print(f"  Record:       {result.record_id}")
    print(f"  Renderer:     {source}")
    print(f"  Attachments:  {result.attachment_count}")
    print(f"  Pages:        {deliverable.page_count}")
    print(f"  Output:       {output}")


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from permitpreview.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "INFO", log_format="text")
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
