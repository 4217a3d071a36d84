"""Main entry point for RoleOut."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from roleout.config import ConfigLoader, ConfigLoadError, SystemConfig
from roleout.services.catalog import Catalog
from roleout.services.export import BatchExportError, ExportError, ExportResult
from roleout.services.export_service import ExportOutcome, ExportService
from roleout.services.png_metadata import (
    CHARACTER_KEYWORD,
    MISSING,
    FormatDetector,
    PNGMetadataHandler,
    PngFormatError,
    parse_chunks,
)
from roleout.services.sillytavern_client import HostAPIError, SillyTavernClient

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(debug: bool = False, log_dir: Path = Path("data/debug_logs")):
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO

    # Setup handlers
    handlers = [logging.StreamHandler(sys.stdout)]

    log_file = None

    # Add file handler if debug mode is enabled
    if debug:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        # Create timestamped log file
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"roleout_{timestamp}.log"

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    # Set root logger to INFO to avoid verbose library logs
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True  # Force reconfiguration even if already configured
    )

    # Only set DEBUG for our app loggers, not third-party libraries
    logging.getLogger('roleout').setLevel(level)

    # Silence noisy third-party loggers
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    if log_file:
        logger.info(f"[STARTUP] Log file: {log_file}")

    return log_file


def load_config(path: Optional[str]) -> SystemConfig:
    loader = ConfigLoader()
    return loader.load_system_config(Path(path) if path else None)


# ---------------------------------------------------------------------------
# PNG commands
# ---------------------------------------------------------------------------

def cmd_embed(args: argparse.Namespace, config: SystemConfig) -> int:
    if args.json_file:
        value = json.loads(Path(args.json_file).read_text(encoding='utf-8'))
    else:
        value = json.loads(args.json)

    png_data = PNGMetadataHandler.read_image(args.input)
    result = PNGMetadataHandler.write_metadata(png_data, args.keyword, value, replace=not args.append)

    output = args.output or args.input
    PNGMetadataHandler.save_image(result, output)
    logger.info(f"Embedded '{args.keyword}' metadata into {output}")
    return 0


def cmd_extract(args: argparse.Namespace, config: SystemConfig) -> int:
    png_data = PNGMetadataHandler.read_image(args.input)
    value = PNGMetadataHandler.read_metadata(png_data, args.keyword, MISSING)
    if value is MISSING:
        logger.error(f"No '{args.keyword}' metadata found in {args.input}")
        return 1

    text = json.dumps(value, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text, encoding='utf-8')
        logger.info(f"Wrote '{args.keyword}' metadata to {args.output}")
    else:
        print(text)
    return 0


def cmd_inspect(args: argparse.Namespace, config: SystemConfig) -> int:
    png_data = PNGMetadataHandler.read_image(args.input)
    for chunk in parse_chunks(png_data):
        print(f"{chunk.offset:>10}  {chunk.chunk_type}  {chunk.length} bytes")

    keywords = PNGMetadataHandler.list_text_keywords(png_data)
    if keywords:
        print(f"tEXt keywords: {', '.join(keywords)}")

    card_format, data = FormatDetector.detect(png_data)
    print(FormatDetector.describe(card_format, data))
    return 0


# ---------------------------------------------------------------------------
# Host commands
# ---------------------------------------------------------------------------

def log_result(result: ExportResult) -> None:
    if result.succeeded:
        names = ", ".join(a.filename for a in result.artifacts)
        logger.info(f"Exported {result.label}: {names}")
    for warning in result.warnings:
        logger.warning(f"{result.label}: {warning}")


def report_outcome(outcome: ExportOutcome, noun: str) -> int:
    logger.info(f"{outcome.report.summary(noun)} -> {outcome.archive_path}")
    for reason in outcome.report.failure_reasons:
        logger.warning(reason)
    return 0


async def run_list(args: argparse.Namespace, config: SystemConfig) -> int:
    async with SillyTavernClient.from_config(config.host) as client:
        catalog = Catalog(client)
        if args.kind == "characters":
            for c in await catalog.characters():
                extras = []
                if c.has_lorebook:
                    extras.append(f"lorebook: {c.lorebook_name}")
                if c.has_alt_greetings:
                    extras.append("alt greetings")
                suffix = f" ({', '.join(extras)})" if extras else ""
                print(f"{c.id:>4}  {c.name}  [{c.avatar}]{suffix}")
        elif args.kind == "chats":
            for chat in await catalog.chats():
                print(f"{chat.id:>4}  {chat.name}  ({chat.character}, {chat.message_count} messages, {chat.file_size})")
        else:
            for p in await catalog.personas():
                default = " *default*" if p.is_default else ""
                print(f"{p.id:>4}  {p.name}  [{p.avatar}]{default}")
    return 0


async def run_export(args: argparse.Namespace, config: SystemConfig) -> int:
    async with SillyTavernClient.from_config(config.host) as client:
        service = ExportService(client, config.export, on_result=log_result)

        if args.kind == "characters":
            ids = await resolve_ids(args, service.catalog.characters)
            if args.single:
                path = await service.export_character(ids[0], args.format)
                logger.info(f"Exported {path}")
                return 0
            return report_outcome(await service.export_characters(ids, args.format), "character")

        if args.kind == "chats":
            ids = await resolve_ids(args, service.catalog.chats)
            include = config.export.include_character_with_chats and not args.no_character
            if args.single:
                path = await service.export_chat(ids[0], include)
                logger.info(f"Exported {path}")
                return 0
            return report_outcome(await service.export_chats([(i, include) for i in ids]), "chat")

        ids = await resolve_ids(args, service.catalog.personas)
        if args.single:
            path = await service.export_persona(ids[0])
            logger.info(f"Exported {path}")
            return 0
        return report_outcome(await service.export_personas(ids), "persona")


async def resolve_ids(args: argparse.Namespace, lister) -> List[int]:
    ids = [item.id for item in await lister()] if args.all else list(args.ids or [])
    if not ids:
        raise BatchExportError("Nothing to export (pass ids or --all)")
    if args.single and len(ids) != 1:
        raise BatchExportError("--single takes exactly one id")
    return ids


def cmd_list(args: argparse.Namespace, config: SystemConfig) -> int:
    return asyncio.run(run_list(args, config))


def cmd_export(args: argparse.Namespace, config: SystemConfig) -> int:
    return asyncio.run(run_export(args, config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roleout",
        description="Export SillyTavern characters, chats and personas"
    )
    parser.add_argument("--config", help="Path to system.yaml (default: config/system.yaml)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging with a log file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    embed = subparsers.add_parser("embed", help="Embed JSON metadata in a PNG")
    embed.add_argument("input", help="PNG file")
    embed.add_argument("-k", "--keyword", default=CHARACTER_KEYWORD)
    source = embed.add_mutually_exclusive_group(required=True)
    source.add_argument("--json", help="JSON text to embed")
    source.add_argument("--json-file", help="File containing JSON to embed")
    embed.add_argument("-o", "--output", help="Output PNG (default: overwrite input)")
    embed.add_argument("--append", action="store_true",
                       help="Keep existing chunks with the same keyword instead of replacing them")
    embed.set_defaults(handler=cmd_embed)

    extract = subparsers.add_parser("extract", help="Extract JSON metadata from a PNG")
    extract.add_argument("input", help="PNG file")
    extract.add_argument("-k", "--keyword", default=CHARACTER_KEYWORD)
    extract.add_argument("-o", "--output", help="Write JSON here instead of stdout")
    extract.set_defaults(handler=cmd_extract)

    inspect = subparsers.add_parser("inspect", help="List PNG chunks and detect card format")
    inspect.add_argument("input", help="PNG file")
    inspect.set_defaults(handler=cmd_inspect)

    listing = subparsers.add_parser("list", help="List exportable items on the host")
    listing.add_argument("kind", choices=["characters", "chats", "personas"])
    listing.set_defaults(handler=cmd_list)

    export = subparsers.add_parser("export", help="Export items from the host")
    export.add_argument("kind", choices=["characters", "chats", "personas"])
    export.add_argument("ids", nargs="*", type=int, help="Item ids (see 'roleout list')")
    export.add_argument("--all", action="store_true", help="Export every item of this kind")
    export.add_argument("--single", action="store_true", help="Export one item without a ZIP")
    export.add_argument("--format", choices=["png", "json"], help="Character export format")
    export.add_argument("--no-character", action="store_true", help="Export chats without character cards")
    export.set_defaults(handler=cmd_export)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the RoleOut command line."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigLoadError as e:
        # Use basic logging since logger isn't configured yet
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(str(e))
        return 1

    setup_logging(debug=args.debug or config.debug, log_dir=config.log_dir)

    try:
        return args.handler(args, config)
    except BatchExportError as e:
        logger.error(f"Batch export failed: {e}")
        if e.report:
            for reason in e.report.failure_reasons:
                logger.error(f"  {reason}")
        return 1
    except (ExportError, HostAPIError, PngFormatError) as e:
        logger.error(str(e))
        return 1
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
